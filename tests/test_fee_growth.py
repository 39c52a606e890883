"""Tests for the fee-growth JSONL log and annualised estimate."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from lp_hedge_bot.fee_growth import (
    Q128,
    FeeGrowthRecord,
    FeeGrowthRecorder,
    estimate_annualized_fee,
    log_path,
    read_records,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def close(value: Decimal, expected: Decimal) -> bool:
    return abs(value - expected) < Decimal("1e-20")


def test_log_path_names_pool(pool, tmp_path):
    assert log_path(tmp_path, pool) == tmp_path / "WETH_USDC_500.jsonl"


def test_record_json_keys():
    record = FeeGrowthRecord(T0, 2**200, 5)
    line = record.to_json()
    assert '"feeGrowthGlobal0X128": "%d"' % 2**200 in line
    assert FeeGrowthRecord.from_json(line) == record


def test_from_json_accepts_zulu_timestamps():
    record = FeeGrowthRecord.from_json(
        '{"timestamp": "2024-01-01T00:00:00.000Z", "feeGrowthGlobal0X128": "1", "feeGrowthGlobal1X128": "2"}'
    )
    assert record.timestamp == T0


def test_read_missing_file_is_empty(tmp_path):
    assert read_records(tmp_path / "missing.jsonl") == []


def test_recorder_appends(chain, pool, pool_state, tmp_path):
    times = iter([T0, T0 + timedelta(hours=1)])
    recorder = FeeGrowthRecorder(pool_state, pool, tmp_path / "fees", clock=lambda: next(times))

    chain.fee_growth = [10, 20]
    recorder.record()
    chain.fee_growth = [15, 40]
    recorder.record()

    records = read_records(log_path(tmp_path / "fees", pool))
    assert records == [
        FeeGrowthRecord(T0, 10, 20),
        FeeGrowthRecord(T0 + timedelta(hours=1), 15, 40),
    ]


def test_recorder_loop_keeps_going_after_errors(pool, tmp_path):
    class BrokenPoolState:
        def fee_growth_global(self, pool):
            raise RuntimeError("rpc down")

    sleeps = []
    recorder = FeeGrowthRecorder(BrokenPoolState(), pool, tmp_path)
    recorder.run_forever(60.0, sleep=sleeps.append, max_iterations=2)
    assert sleeps == [60.0, 60.0]


class TestEstimate:
    def test_annualises_growth(self):
        records = [
            FeeGrowthRecord(T0, 0, 0),
            FeeGrowthRecord(T0 + timedelta(days=1), Q128, 2 * Q128),
        ]
        growth0, growth1 = estimate_annualized_fee(records, timedelta(days=1))
        assert close(growth0, Decimal(365))
        assert close(growth1, Decimal(730))

    def test_uses_newest_record_old_enough(self):
        records = [
            FeeGrowthRecord(T0, 0, 0),
            FeeGrowthRecord(T0 + timedelta(hours=12), Q128, Q128),
            FeeGrowthRecord(T0 + timedelta(days=1, hours=12), 3 * Q128, 3 * Q128),
        ]
        growth0, _ = estimate_annualized_fee(records, timedelta(days=1))
        assert close(growth0, Decimal(730))

    def test_accumulator_wraparound(self):
        records = [
            FeeGrowthRecord(T0, 2**256 - Q128, 0),
            FeeGrowthRecord(T0 + timedelta(days=1), Q128, 0),
        ]
        growth0, _ = estimate_annualized_fee(records, timedelta(days=1))
        assert close(growth0, Decimal(730))

    def test_requires_records(self):
        with pytest.raises(ValueError):
            estimate_annualized_fee([], timedelta(days=1))

    def test_requires_window_of_history(self):
        records = [FeeGrowthRecord(T0, 0, 0), FeeGrowthRecord(T0 + timedelta(hours=1), 1, 1)]
        with pytest.raises(ValueError):
            estimate_annualized_fee(records, timedelta(days=1))
