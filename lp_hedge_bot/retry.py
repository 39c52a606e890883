"""
Bounded exponential backoff for read-only calls.

Only reads go through here. Mutating calls (mint, decrease, collect, burn,
swap, hedge orders) are never retried inside an iteration: the next pass of
the control loop re-reads state and decides again.
"""
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lp_hedge_bot.errors import TransientNetworkError

log = structlog.get_logger()


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    log.warning(
        "read_retry",
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )


def read_retrying(attempts: int = 3, min_wait: float = 0.5, max_wait: float = 4.0) -> Retrying:
    """Build a tenacity ``Retrying`` that retries only on TransientNetworkError.

    The last error is re-raised unchanged once attempts run out.
    """
    return Retrying(
        retry=retry_if_exception_type(TransientNetworkError),
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=min_wait, max=max_wait),
        before_sleep=_log_retry,
        reraise=True,
    )


def call_with_retry(func, *args, attempts: int = 3, min_wait: float = 0.5, max_wait: float = 4.0, **kwargs):
    return read_retrying(attempts, min_wait, max_wait)(func, *args, **kwargs)
