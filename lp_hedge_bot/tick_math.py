"""
Tick and price conversions for a Uniswap V3 style pool.

Prices are token1 per token0 in human units, i.e.
price = 1.0001**tick * 10**(decimals0 - decimals1).
"""
import math
from decimal import Decimal, getcontext

# Set precision for financial calculations
getcontext().prec = 50

MIN_TICK = -887272
MAX_TICK = 887272
Q96 = 2**96

TICK_BASE = Decimal("1.0001")


def price_from_tick(tick: int, decimals0: int, decimals1: int) -> Decimal:
    """Human price of token0 in token1 at ``tick``."""
    return TICK_BASE**tick * Decimal(10) ** (decimals0 - decimals1)


def tick_from_price(price: Decimal, decimals0: int, decimals1: int) -> int:
    """Largest tick whose price does not exceed ``price``."""
    price = Decimal(price)
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    raw = price / Decimal(10) ** (decimals0 - decimals1)
    tick = math.floor(raw.ln() / TICK_BASE.ln())
    # ln rounding can land one tick off in either direction
    while price_from_tick(tick + 1, decimals0, decimals1) <= price:
        tick += 1
    while price_from_tick(tick, decimals0, decimals1) > price:
        tick -= 1
    return max(MIN_TICK, min(MAX_TICK, tick))


def valid_tick(raw_tick: int, spacing: int) -> int:
    """Round ``raw_tick`` to the nearest multiple of ``spacing``.

    Ties go toward zero, and the result is clamped to the outermost multiples
    that still fit inside [MIN_TICK, MAX_TICK]. Already-valid ticks come back
    unchanged.
    """
    if spacing <= 0:
        raise ValueError(f"tick spacing must be positive, got {spacing}")
    quotient, remainder = divmod(abs(int(raw_tick)), spacing)
    if remainder * 2 > spacing:
        quotient += 1
    tick = quotient * spacing if raw_tick >= 0 else -quotient * spacing
    highest = (MAX_TICK // spacing) * spacing
    return max(-highest, min(highest, tick))


def tick_range(current_tick: int, half_width: int, spacing: int) -> tuple[int, int]:
    """Boundaries ``current_tick -/+ half_width``, each snapped with valid_tick."""
    lower = valid_tick(current_tick - half_width, spacing)
    upper = valid_tick(current_tick + half_width, spacing)
    if lower >= upper:
        if lower + spacing <= (MAX_TICK // spacing) * spacing:
            upper = lower + spacing
        else:
            lower = upper - spacing
    return lower, upper


def sqrt_price_x96_from_tick(tick: int) -> int:
    return int((TICK_BASE**tick).sqrt() * Q96)


def amounts_for_liquidity(liquidity: int, sqrt_price_x96: int, tick_lower: int, tick_upper: int) -> tuple[int, int]:
    """Token amounts (native units) represented by ``liquidity`` at the given price.

    Below the range the position is all token0, above it all token1.
    """
    if liquidity == 0:
        return 0, 0
    sqrt_a = Decimal(sqrt_price_x96_from_tick(tick_lower)) / Q96
    sqrt_b = Decimal(sqrt_price_x96_from_tick(tick_upper)) / Q96
    sqrt_p = Decimal(sqrt_price_x96) / Q96
    liq = Decimal(liquidity)

    if sqrt_p <= sqrt_a:
        amount0 = liq * (sqrt_b - sqrt_a) / (sqrt_a * sqrt_b)
        amount1 = Decimal(0)
    elif sqrt_p >= sqrt_b:
        amount0 = Decimal(0)
        amount1 = liq * (sqrt_b - sqrt_a)
    else:
        amount0 = liq * (sqrt_b - sqrt_p) / (sqrt_p * sqrt_b)
        amount1 = liq * (sqrt_p - sqrt_a)
    return int(amount0), int(amount1)
