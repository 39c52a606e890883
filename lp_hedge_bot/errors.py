"""
Error taxonomy for the rebalancing bot.

Every failure inside a control-loop iteration is one of these, so the loop
can log it by category and carry on with the next pass.
"""
from datetime import datetime, timezone
from typing import Optional


class LPHedgeError(Exception):
    """Base exception for all bot errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class ConfigError(LPHedgeError):
    """Startup configuration is missing or inconsistent."""


class TransientNetworkError(LPHedgeError):
    """RPC or venue API call failed or timed out. Safe to retry on a later pass."""


class TransactionReverted(LPHedgeError):
    """An on-chain call was mined but did not succeed."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, cause: Optional[Exception] = None):
        super().__init__(message, cause)
        self.tx_hash = tx_hash


class MintFailed(TransactionReverted):
    pass


class InvariantViolation(LPHedgeError):
    """An action was refused because on-chain state does not allow it."""


class BurnNotEmpty(InvariantViolation):
    def __init__(self, position_id: int, liquidity: int, owed0: int, owed1: int):
        super().__init__(
            f"position {position_id} is not empty "
            f"(liquidity={liquidity}, owed0={owed0}, owed1={owed1})"
        )
        self.position_id = position_id


class HedgeVenueError(LPHedgeError):
    """The derivatives venue answered but rejected the request."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class PositionNotFound(InvariantViolation):
    """The registry has no position under this id (burned, or never minted)."""

    def __init__(self, position_id: int, cause: Optional[Exception] = None):
        super().__init__(f"position {position_id} does not exist", cause)
        self.position_id = position_id
