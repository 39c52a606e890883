"""Delta-neutral concentrated liquidity bot: one Uniswap V3 position, one OKX hedge."""

__version__ = "0.1.0"
