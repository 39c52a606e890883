"""
Append-only fee-growth log for offline fee analysis.

Each line is a JSON object {"timestamp", "feeGrowthGlobal0X128",
"feeGrowthGlobal1X128"}. The rebalancing controller never reads it.
"""
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional, Union

import structlog

from lp_hedge_bot.pool import Pool

log = structlog.get_logger()

Q128 = 2**128
UINT256 = 2**256
SECONDS_PER_YEAR = 365 * 24 * 60 * 60


@dataclass(frozen=True)
class FeeGrowthRecord:
    timestamp: datetime
    fee_growth_global0_x128: int
    fee_growth_global1_x128: int

    def to_json(self) -> str:
        return json.dumps({
            "timestamp": self.timestamp.isoformat(),
            "feeGrowthGlobal0X128": str(self.fee_growth_global0_x128),
            "feeGrowthGlobal1X128": str(self.fee_growth_global1_x128),
        })

    @classmethod
    def from_json(cls, line: str) -> "FeeGrowthRecord":
        data = json.loads(line)
        timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        return cls(timestamp, int(data["feeGrowthGlobal0X128"]), int(data["feeGrowthGlobal1X128"]))


def log_path(directory: Union[str, Path], pool: Pool) -> Path:
    return Path(directory) / f"{pool.token0.symbol}_{pool.token1.symbol}_{pool.fee}.jsonl"


def read_records(path: Union[str, Path]) -> list[FeeGrowthRecord]:
    path = Path(path)
    if not path.exists():
        log.warning("fee_log_missing", path=str(path))
        return []
    with open(path) as f:
        return [FeeGrowthRecord.from_json(line) for line in f if line.strip()]


def estimate_annualized_fee(records: list[FeeGrowthRecord], window: timedelta) -> tuple[Decimal, Decimal]:
    """Annualised fee earned per unit of liquidity, for token0 and token1.

    Compares the latest record with the newest one at least ``window`` older.
    Accumulators are uint256 and may wrap, so differences are taken mod 2**256.
    """
    if not records:
        raise ValueError("no fee growth records")
    latest = records[-1]
    cutoff = latest.timestamp - window
    previous = next((rec for rec in reversed(records) if rec.timestamp <= cutoff), None)
    if previous is None:
        raise ValueError(f"no record older than {window} before {latest.timestamp.isoformat()}")

    elapsed = Decimal((latest.timestamp - previous.timestamp).total_seconds())
    if elapsed <= 0:
        raise ValueError("records do not span any time")
    growth0 = Decimal((latest.fee_growth_global0_x128 - previous.fee_growth_global0_x128) % UINT256) / Q128
    growth1 = Decimal((latest.fee_growth_global1_x128 - previous.fee_growth_global1_x128) % UINT256) / Q128
    return growth0 / elapsed * SECONDS_PER_YEAR, growth1 / elapsed * SECONDS_PER_YEAR


class FeeGrowthRecorder:
    def __init__(
        self,
        pool_state,
        pool: Pool,
        directory: Union[str, Path],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.pool_state = pool_state
        self.pool = pool
        self.path = log_path(directory, pool)
        self._clock = clock
        self._log = log.bind(component="fee_recorder", path=str(self.path))

    def record(self) -> FeeGrowthRecord:
        growth0, growth1 = self.pool_state.fee_growth_global(self.pool)
        record = FeeGrowthRecord(self._clock(), growth0, growth1)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(record.to_json() + "\n")
        self._log.info("fee_growth_recorded", growth0=str(growth0), growth1=str(growth1))
        return record

    def run_forever(self, interval: float, sleep: Callable[[float], None] = time.sleep, max_iterations: Optional[int] = None) -> None:
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            iteration += 1
            try:
                self.record()
            except Exception:
                self._log.exception("fee_growth_record_failed")
            sleep(interval)
