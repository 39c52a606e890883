"""
Hedge client for OKX perpetual swaps (v5 endpoints through ccxt), plus the
sizing rule that turns spot token0 holdings into a hedge order.

The account is expected to run in "net" position mode: one signed position
per instrument, negative meaning short.
"""
import json
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

import ccxt
import structlog

from lp_hedge_bot.config import HedgeSettings
from lp_hedge_bot.errors import HedgeVenueError, TransientNetworkError
from lp_hedge_bot.retry import call_with_retry

log = structlog.get_logger()

BUY = "buy"
SELL = "sell"


class HedgeSide(str, Enum):
    LONG = "long"
    SHORT = "short"
    FLAT = "flat"


@dataclass(frozen=True)
class HedgePosition:
    instrument: str
    side: HedgeSide
    size: Decimal
    leverage: Optional[Decimal] = None

    @classmethod
    def from_signed(cls, instrument: str, signed_size: Decimal, leverage: Optional[Decimal] = None) -> "HedgePosition":
        if signed_size > 0:
            side = HedgeSide.LONG
        elif signed_size < 0:
            side = HedgeSide.SHORT
        else:
            side = HedgeSide.FLAT
        return cls(instrument, side, abs(signed_size), leverage)

    @property
    def signed_size(self) -> Decimal:
        if self.side == HedgeSide.SHORT:
            return -self.size
        if self.side == HedgeSide.LONG:
            return self.size
        return Decimal(0)


@dataclass(frozen=True)
class HedgeOrder:
    instrument: str
    side: str
    size: Decimal

    @property
    def signed_size(self) -> Decimal:
        return self.size if self.side == BUY else -self.size


def compute_hedge_order(
    token0_holdings: Decimal,
    current: HedgePosition,
    hedge_ratio: Decimal,
    contracts_per_token: Decimal,
    size_increment: Decimal,
) -> Optional[HedgeOrder]:
    """Single order that moves the hedge from ``current`` to the target.

    target = -hedge_ratio * holdings * contracts_per_token (short against a
    long spot holding). The difference is rounded to the venue's size
    increment; None when it rounds to zero.
    """
    target = -Decimal(hedge_ratio) * Decimal(token0_holdings) * Decimal(contracts_per_token)
    difference = target - current.signed_size
    steps = (difference / size_increment).to_integral_value(rounding=ROUND_HALF_UP)
    rounded = (steps * size_increment).quantize(size_increment)
    if rounded == 0:
        return None
    return HedgeOrder(current.instrument, BUY if rounded > 0 else SELL, abs(rounded))


def _rejection_code(exc: Exception) -> Optional[str]:
    """sCode (or top-level code) from the body ccxt puts after the exchange id."""
    _, _, body = str(exc).partition(" ")
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    data = payload.get("data") or [{}]
    detail = data[0] if isinstance(data[0], dict) else {}
    code = detail.get("sCode") or payload.get("code")
    return str(code) if code is not None else None


@contextmanager
def venue_errors(action: str):
    """Map ccxt failures onto the bot's error taxonomy."""
    try:
        yield
    except ccxt.NetworkError as exc:
        # timeouts, rate limits, 5xx and maintenance
        raise TransientNetworkError(f"OKX {action} failed: {exc}", cause=exc) from exc
    except ccxt.BaseError as exc:
        raise HedgeVenueError(f"OKX {action} rejected: {exc}", code=_rejection_code(exc)) from exc


class OkxHedgeClient:
    """Position query, leverage and market orders through ccxt's OKX v5 endpoints.

    The implicit endpoint methods are used rather than the unified API so
    sizes stay in contracts and the account's "net" position mode is explicit.
    """

    def __init__(self, settings: HedgeSettings, exchange: Optional[ccxt.okx] = None, read_attempts: int = 3):
        self.settings = settings
        self.exchange = exchange or build_exchange(settings)
        self.read_attempts = read_attempts
        self._log = log.bind(component="okx", instrument=settings.instrument)

    def close(self) -> None:
        session = getattr(self.exchange, "session", None)
        if session is not None:
            session.close()

    def __enter__(self) -> "OkxHedgeClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _request(self, action: str, endpoint, params: dict) -> list:
        with venue_errors(action):
            payload = endpoint(params)
        code = str(payload.get("code", "0"))
        if code != "0":
            raise HedgeVenueError(f"OKX {action} rejected: {payload.get('msg') or code}", code=code)
        return payload.get("data") or []

    def get_position(self, instrument: Optional[str] = None) -> HedgePosition:
        instrument = instrument or self.settings.instrument
        data = call_with_retry(
            self._request,
            "positions",
            self.exchange.private_get_account_positions,
            {"instType": "SWAP", "instId": instrument},
            attempts=self.read_attempts,
        )
        for entry in data:
            if entry.get("instId") == instrument and entry.get("posSide") == self.settings.position_mode:
                leverage = Decimal(entry["lever"]) if entry.get("lever") else None
                return HedgePosition.from_signed(instrument, Decimal(entry.get("pos") or "0"), leverage)
        return HedgePosition.from_signed(instrument, Decimal(0))

    def set_leverage(self, instrument: Optional[str] = None, leverage: Optional[int] = None, margin_mode: Optional[str] = None) -> None:
        params = {
            "instId": instrument or self.settings.instrument,
            "lever": str(leverage or self.settings.leverage),
            "mgnMode": margin_mode or self.settings.margin_mode,
        }
        self._request("set-leverage", self.exchange.private_post_account_set_leverage, params)
        self._log.info("leverage_set", lever=params["lever"], margin_mode=params["mgnMode"])

    def submit_market_order(self, instrument: str, side: str, size: Decimal, margin_mode: Optional[str] = None) -> str:
        if side not in (BUY, SELL):
            raise ValueError(f"unknown order side {side!r}")
        params = {
            "instId": instrument,
            "tdMode": margin_mode or self.settings.margin_mode,
            "side": side,
            "posSide": self.settings.position_mode,
            "ordType": "market",
            "sz": str(size),
        }
        data = self._request("order", self.exchange.private_post_trade_order, params)
        order_id = data[0].get("ordId", "") if data else ""
        self._log.info("hedge_order_submitted", side=side, size=str(size), order_id=order_id)
        return order_id


def build_exchange(settings: HedgeSettings) -> ccxt.okx:
    config = {
        "apiKey": settings.api_key,
        "secret": settings.api_secret,
        "password": settings.passphrase,
        "hostname": settings.hostname,
        "enableRateLimit": True,
        "timeout": int(settings.timeout * 1000),
        "options": {"defaultType": "swap"},
    }
    if settings.simulated:
        # demo trading account
        config["headers"] = {"x-simulated-trading": "1"}
    return ccxt.okx(config)
