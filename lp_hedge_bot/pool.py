"""
Pool and token model, plus fresh reads of pool state (slot0, fee growth).
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import structlog
from web3 import Web3

from lp_hedge_bot.errors import ConfigError
from lp_hedge_bot.tick_math import price_from_tick

log = structlog.get_logger()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Fee tier -> tick spacing as enabled on the Uniswap V3 factory
TICK_SPACING = {
    100: 1,
    500: 10,
    3000: 60,
    10000: 200,
}


@dataclass(frozen=True)
class Token:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class Pool:
    """A token pair and fee tier.

    token0 must be the token with the lexicographically smaller address; the
    AMM enforces the same ordering. Use ``Pool.from_tokens`` to get it right.
    """

    token0: Token
    token1: Token
    fee: int
    tick_spacing: int = field(default=0)

    def __post_init__(self):
        if self.token0.address.lower() >= self.token1.address.lower():
            raise ValueError(
                f"token0 {self.token0.address} must sort before token1 {self.token1.address}"
            )
        if not self.tick_spacing:
            if self.fee not in TICK_SPACING:
                raise ValueError(f"unknown fee tier {self.fee}, pass tick_spacing explicitly")
            object.__setattr__(self, "tick_spacing", TICK_SPACING[self.fee])

    @classmethod
    def from_tokens(cls, token_a: Token, token_b: Token, fee: int, tick_spacing: int = 0) -> "Pool":
        if token_a.address.lower() < token_b.address.lower():
            return cls(token_a, token_b, fee, tick_spacing)
        return cls(token_b, token_a, fee, tick_spacing)

    @property
    def name(self) -> str:
        return f"{self.token0.symbol}/{self.token1.symbol}/{self.fee}"

    def price_at(self, tick: int) -> Decimal:
        return price_from_tick(tick, self.token0.decimals, self.token1.decimals)

    def to_human(self, amount: int, token: Token) -> Decimal:
        return Decimal(amount) / Decimal(10) ** token.decimals


@dataclass(frozen=True)
class PoolState:
    tick: int
    sqrt_price_x96: int


class PoolStateClient:
    """Reads pool slot0 and fee-growth accumulators. Never caches state, only addresses."""

    def __init__(self, client, factory_address: str):
        self.client = client
        self.factory = client.get_contract(factory_address, client.load_abi("UniswapV3Factory"))
        self._pool_abi = client.load_abi("UniswapV3Pool")
        self._addresses: dict[tuple[str, str, int], str] = {}
        self._log = log.bind(component="pool_state")

    def pool_address(self, token0: str, token1: str, fee: int) -> str:
        key = (token0.lower(), token1.lower(), int(fee))
        if key not in self._addresses:
            address = self.client.call(
                self.factory.functions.getPool(
                    Web3.to_checksum_address(token0),
                    Web3.to_checksum_address(token1),
                    int(fee),
                )
            )
            if address == ZERO_ADDRESS:
                raise ConfigError(f"pool not found for {token0}/{token1} fee {fee}")
            self._log.debug("pool_address_resolved", pool=address, fee=fee)
            self._addresses[key] = address
        return self._addresses[key]

    def _contract(self, address: str):
        return self.client.get_contract(address, self._pool_abi)

    def state_of(self, token0: str, token1: str, fee: int) -> PoolState:
        contract = self._contract(self.pool_address(token0, token1, fee))
        slot0 = self.client.call(contract.functions.slot0())
        return PoolState(tick=int(slot0[1]), sqrt_price_x96=int(slot0[0]))

    def state(self, pool: Pool) -> PoolState:
        return self.state_of(pool.token0.address, pool.token1.address, pool.fee)

    def fee_growth_global(self, pool: Pool, block_identifier: Optional[int] = None) -> tuple[int, int]:
        contract = self._contract(self.pool_address(pool.token0.address, pool.token1.address, pool.fee))
        kwargs = {} if block_identifier is None else {"block_identifier": block_identifier}
        growth0 = self.client.call(contract.functions.feeGrowthGlobal0X128(), **kwargs)
        growth1 = self.client.call(contract.functions.feeGrowthGlobal1X128(), **kwargs)
        return int(growth0), int(growth1)
