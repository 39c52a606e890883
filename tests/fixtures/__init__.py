"""Test doubles for the chain and the hedge venue.

- FakeChain: in-memory factory, pool, position manager, router and ERC-20s
- FakeHedge: venue with a single signed position per instrument
"""

from .fake_chain import (
    FACTORY_ADDRESS,
    NPM_ADDRESS,
    OTHER_OWNER,
    OWNER,
    POOL_ADDRESS,
    ROUTER_ADDRESS,
    USDC,
    WETH,
    FakeChain,
)
from .fake_hedge import FakeHedge
