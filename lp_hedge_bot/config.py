"""
Static startup configuration.

Everything the controller tunes on (range width, thresholds, hedge ratio,
poll delay) lives in ``StrategyConfig`` and is passed in at construction, so
tests can build deterministic instances without touching the environment.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

from lp_hedge_bot.errors import ConfigError
from lp_hedge_bot.pool import TICK_SPACING, Pool, Token

MAX_UINT128 = 2**128 - 1
MAX_UINT256 = 2**256 - 1

# Base mainnet defaults
DEFAULT_POSITION_MANAGER = "0x03a520b32C04BF3bEEf7BEb72E919cf822Ed34f1"
DEFAULT_SWAP_ROUTER = "0x2626664c2603336E57B271c5C0b26F421741e481"  # SwapRouter02
DEFAULT_FACTORY = "0x33128a8fC17869897dcE68Ed026d694621f6FDfD"
DEFAULT_TOKEN_A = ("0x4200000000000000000000000000000000000006", "WETH", 18)
DEFAULT_TOKEN_B = ("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "USDC", 6)


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def env_int(key: str, default: Optional[int]) -> Optional[int]:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    if val.lower() == "none":
        return None
    return int(val)


def env_decimal(key: str, default: Decimal) -> Decimal:
    val = os.getenv(key)
    return default if val is None or val == "" else Decimal(val)


def _require(key: str) -> str:
    val = os.getenv(key)
    if not val:
        raise ConfigError(f"missing required environment variable {key}")
    return val


@dataclass(frozen=True)
class ChainSettings:
    node_url: str
    private_key: str = field(repr=False)
    position_manager_address: str = DEFAULT_POSITION_MANAGER
    swap_router_address: str = DEFAULT_SWAP_ROUTER
    factory_address: str = DEFAULT_FACTORY
    poa: bool = False
    rpc_timeout: float = 30.0
    receipt_timeout: float = 180.0


@dataclass(frozen=True)
class HedgeSettings:
    api_key: str = field(repr=False)
    api_secret: str = field(repr=False)
    passphrase: str = field(repr=False)
    hostname: str = "www.okx.com"
    instrument: str = "ETH-USDT-SWAP"
    leverage: int = 3
    margin_mode: str = "cross"
    position_mode: str = "net"
    # contracts per whole token0 (ETH-USDT-SWAP has a 0.1 ETH contract value)
    contracts_per_token0: Decimal = Decimal("10")
    size_increment: Decimal = Decimal("0.01")
    hedge_ratio: Decimal = Decimal("1")
    simulated: bool = False
    timeout: float = 10.0


@dataclass(frozen=True)
class StrategyConfig:
    """Tunables of the rebalancing loop.

    target_ratio is token0 value per 1.0 of token1 value after the swap; a bit
    under 1.0 keeps spare token0 from sitting unhedged in the wallet.
    swap_slippage_bps of None means no minimum output on swaps, which has to
    be chosen explicitly.
    """

    range_half_width: int = 250
    target_ratio: Decimal = Decimal("0.98")
    min_swap_amount0: int = 10**14
    min_swap_amount1: int = 10**4
    # swap-leg fee tier per direction; None routes through the LP pool's own tier
    swap_fee_tier_zero_for_one: Optional[int] = 500
    swap_fee_tier_one_for_zero: Optional[int] = None
    swap_slippage_bps: Optional[int] = 50
    poll_interval: float = 30.0
    burn_closed_positions: bool = True
    approval_threshold: int = MAX_UINT256 * 9 // 10
    read_retry_attempts: int = 3
    tx_deadline_seconds: int = 20 * 60

    @property
    def ratio_weight(self) -> Decimal:
        return self.target_ratio / (1 + self.target_ratio)

    def swap_fee_tier(self, pool: Pool, zero_for_one: bool) -> int:
        tier = self.swap_fee_tier_zero_for_one if zero_for_one else self.swap_fee_tier_one_for_zero
        return pool.fee if tier is None else tier

    def validate(self, pool: Pool) -> None:
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        if self.range_half_width < pool.tick_spacing:
            raise ConfigError(
                f"range_half_width {self.range_half_width} is narrower than tick spacing {pool.tick_spacing}"
            )
        if self.target_ratio <= 0:
            raise ConfigError("target_ratio must be positive")
        if self.min_swap_amount0 < 0 or self.min_swap_amount1 < 0:
            raise ConfigError("minimum swap amounts cannot be negative")
        if self.swap_slippage_bps is not None and not 0 <= self.swap_slippage_bps < 10_000:
            raise ConfigError("swap_slippage_bps must be within [0, 10000)")
        for tier in (self.swap_fee_tier_zero_for_one, self.swap_fee_tier_one_for_zero):
            if tier is not None and tier not in TICK_SPACING:
                raise ConfigError(f"unknown swap fee tier {tier}")
        if self.read_retry_attempts < 1:
            raise ConfigError("read_retry_attempts must be at least 1")


@dataclass(frozen=True)
class Settings:
    pool: Pool
    chain: ChainSettings
    hedge: HedgeSettings
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    initial_position_id: Optional[int] = None
    fee_log_dir: str = "./data/feeGrowthGlobal"
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        token_a = Token(
            os.getenv("TOKEN_A_ADDRESS", DEFAULT_TOKEN_A[0]),
            os.getenv("TOKEN_A_SYMBOL", DEFAULT_TOKEN_A[1]),
            env_int("TOKEN_A_DECIMALS", DEFAULT_TOKEN_A[2]),
        )
        token_b = Token(
            os.getenv("TOKEN_B_ADDRESS", DEFAULT_TOKEN_B[0]),
            os.getenv("TOKEN_B_SYMBOL", DEFAULT_TOKEN_B[1]),
            env_int("TOKEN_B_DECIMALS", DEFAULT_TOKEN_B[2]),
        )
        pool = Pool.from_tokens(token_a, token_b, env_int("POOL_FEE", 500))

        chain = ChainSettings(
            node_url=_require("NODE_URL"),
            private_key=_require("PRIVATE_KEY"),
            position_manager_address=os.getenv("POSITION_MANAGER_ADDRESS", DEFAULT_POSITION_MANAGER),
            swap_router_address=os.getenv("SWAP_ROUTER_ADDRESS", DEFAULT_SWAP_ROUTER),
            factory_address=os.getenv("FACTORY_ADDRESS", DEFAULT_FACTORY),
            poa=env_bool("CHAIN_POA", False),
            rpc_timeout=float(os.getenv("RPC_TIMEOUT", "30")),
            receipt_timeout=float(os.getenv("RECEIPT_TIMEOUT", "180")),
        )

        hedge = HedgeSettings(
            api_key=_require("OKX_API_KEY"),
            api_secret=_require("OKX_API_SECRET"),
            passphrase=_require("OKX_API_PASSPHRASE"),
            hostname=os.getenv("OKX_HOSTNAME", "www.okx.com"),
            instrument=os.getenv("HEDGE_INSTRUMENT", "ETH-USDT-SWAP"),
            leverage=env_int("HEDGE_LEVERAGE", 3),
            margin_mode=os.getenv("HEDGE_MARGIN_MODE", "cross"),
            contracts_per_token0=env_decimal("HEDGE_CONTRACTS_PER_TOKEN0", Decimal("10")),
            size_increment=env_decimal("HEDGE_SIZE_INCREMENT", Decimal("0.01")),
            hedge_ratio=env_decimal("HEDGE_RATIO", Decimal("1")),
            simulated=env_bool("OKX_SIMULATED", False),
        )

        strategy = StrategyConfig(
            range_half_width=env_int("RANGE_HALF_WIDTH", 250),
            target_ratio=env_decimal("TARGET_RATIO", Decimal("0.98")),
            min_swap_amount0=env_int("MIN_SWAP_AMOUNT0", 10**14),
            min_swap_amount1=env_int("MIN_SWAP_AMOUNT1", 10**4),
            swap_fee_tier_zero_for_one=env_int("SWAP_FEE_TIER_0_FOR_1", 500),
            swap_fee_tier_one_for_zero=env_int("SWAP_FEE_TIER_1_FOR_0", None),
            swap_slippage_bps=env_int("SWAP_SLIPPAGE_BPS", 50),
            poll_interval=float(os.getenv("POLL_INTERVAL", "30")),
            burn_closed_positions=env_bool("BURN_CLOSED_POSITIONS", True),
        )
        strategy.validate(pool)

        return cls(
            pool=pool,
            chain=chain,
            hedge=hedge,
            strategy=strategy,
            initial_position_id=env_int("POSITION_ID", None),
            fee_log_dir=os.getenv("FEE_LOG_DIR", "./data/feeGrowthGlobal"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=env_bool("JSON_LOGS", False),
            log_file=os.getenv("LOG_FILE") or None,
        )
