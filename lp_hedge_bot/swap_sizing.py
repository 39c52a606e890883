"""
Swap sizing: how much of which token to sell so that wallet holdings hit a
target value split before a new position is minted.

This is a single-shot correction at the current price. It ignores the swap's
own price impact, which is acceptable while trade sizes stay small relative
to pool depth.
"""
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from lp_hedge_bot.chain import WalletHoldings
from lp_hedge_bot.pool import Pool, Token


@dataclass(frozen=True)
class SwapPlan:
    token_in: Token
    token_out: Token
    amount_in: int
    zero_for_one: bool


def ratio_weight_from_ratio(ratio) -> Decimal:
    """0.98 token0-value per 1.0 token1-value -> 0.98 / 1.98 of the total in token0."""
    ratio = Decimal(ratio)
    return ratio / (1 + ratio)


def _to_native(amount: Decimal, token: Token) -> int:
    scaled = amount * Decimal(10) ** token.decimals
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def plan_swap(
    pool: Pool,
    holdings: WalletHoldings,
    price: Decimal,
    ratio_weight: Decimal,
    min_amount0: int,
    min_amount1: int,
) -> Optional[SwapPlan]:
    """Plan the swap that moves ``holdings`` toward ``ratio_weight`` of the value in token0.

    Values are expressed in token1 units at ``price`` (token1 per token0).
    Returns None when the holdings are already on target or the amount to sell
    is below the per-token minimum. The amount is never more than the balance
    it was computed from.
    """
    price = Decimal(price)
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")

    value0 = pool.to_human(holdings.balance0, pool.token0) * price
    value1 = pool.to_human(holdings.balance1, pool.token1)
    total_value = value0 + value1
    target_value0 = total_value * Decimal(ratio_weight)
    target_value1 = total_value - target_value0

    if value0 > target_value0:
        # Sell the excess token0 for token1
        amount_in = min(_to_native((value0 - target_value0) / price, pool.token0), holdings.balance0)
        if amount_in < min_amount0 or amount_in == 0:
            return None
        return SwapPlan(pool.token0, pool.token1, amount_in, zero_for_one=True)

    if value1 > target_value1:
        amount_in = min(_to_native(value1 - target_value1, pool.token1), holdings.balance1)
        if amount_in < min_amount1 or amount_in == 0:
            return None
        return SwapPlan(pool.token1, pool.token0, amount_in, zero_for_one=False)

    return None


def min_amount_out(plan: SwapPlan, pool: Pool, price: Decimal, slippage_bps: Optional[int]) -> int:
    """Minimum acceptable output for ``plan`` at ``price``; 0 when slippage is unbounded."""
    if slippage_bps is None:
        return 0
    amount_in = pool.to_human(plan.amount_in, plan.token_in)
    expected = amount_in * price if plan.zero_for_one else amount_in / price
    bounded = expected * (Decimal(10_000) - Decimal(slippage_bps)) / Decimal(10_000)
    return _to_native(bounded, plan.token_out)
