"""Shared pytest fixtures.

- A WETH/USDC 0.05% pool and an in-memory chain holding 1 WETH + 2500 USDC
- Real pool-state, wallet, position-manager and router clients bound to it
- A fake hedge venue and a controller factory wiring all of the above
"""

from decimal import Decimal

import pytest

from lp_hedge_bot.chain import Wallet
from lp_hedge_bot.config import HedgeSettings, StrategyConfig
from lp_hedge_bot.controller import RebalanceController
from lp_hedge_bot.pool import Pool, PoolStateClient
from lp_hedge_bot.position_manager import PositionManagerClient
from lp_hedge_bot.swap_router import SwapRouterClient
from tests.fixtures import (
    FACTORY_ADDRESS,
    NPM_ADDRESS,
    ROUTER_ADDRESS,
    USDC,
    WETH,
    FakeChain,
    FakeHedge,
)

# price ~2500 USDC per WETH
START_TICK = -198080


# =============================================================================
# Chain Fixtures
# =============================================================================

@pytest.fixture
def pool() -> Pool:
    return Pool.from_tokens(USDC, WETH, 500)


@pytest.fixture
def chain(pool) -> FakeChain:
    """Fresh chain at START_TICK with 1 WETH and 2500 USDC in the wallet."""
    return FakeChain(pool, tick=START_TICK, balance0=10**18, balance1=2500 * 10**6)


@pytest.fixture
def pool_state(chain) -> PoolStateClient:
    return PoolStateClient(chain, FACTORY_ADDRESS)


@pytest.fixture
def wallet(chain, pool) -> Wallet:
    return Wallet(chain, pool)


@pytest.fixture
def positions(chain, pool_state) -> PositionManagerClient:
    return PositionManagerClient(chain, pool_state, NPM_ADDRESS, clock=lambda: 1_700_000_000)


@pytest.fixture
def router(chain) -> SwapRouterClient:
    return SwapRouterClient(chain, ROUTER_ADDRESS)


# =============================================================================
# Strategy / Hedge Fixtures
# =============================================================================

@pytest.fixture
def strategy() -> StrategyConfig:
    return StrategyConfig(poll_interval=5.0)


@pytest.fixture
def hedge_settings() -> HedgeSettings:
    return HedgeSettings(api_key="key", api_secret="secret", passphrase="pass")


@pytest.fixture
def hedge() -> FakeHedge:
    return FakeHedge("ETH-USDT-SWAP")


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def make_controller(pool, strategy, hedge_settings, positions, pool_state, wallet, router, hedge, sleeps):
    """Build a RebalanceController over the fixtures; keyword overrides replace them."""

    def factory(**overrides) -> RebalanceController:
        kwargs = dict(
            pool=pool,
            config=strategy,
            hedge_settings=hedge_settings,
            positions=positions,
            pool_state=pool_state,
            wallet=wallet,
            router=router,
            hedge=hedge,
            initial_position_id=None,
            sleep=sleeps.append,
        )
        kwargs.update(overrides)
        return RebalanceController(**kwargs)

    return factory


def human(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / Decimal(10) ** decimals
