from datetime import timedelta

import pytest

from risk_monitor.config import SignalType
from risk_monitor.deduplicator import SignalDeduplicator
from risk_monitor.error_handling import error_collector
from risk_monitor.models import Signal
from risk_monitor.signal_engine import SignalEngine
from risk_monitor.signal_registry import SignalRegistry, signal_registry
from risk_monitor.snapshot_buffer import SnapshotBuffer

TREND_TYPES = {
    SignalType.HEALTH_FACTOR_TREND,
    SignalType.COLLATERAL_VALUE_DRIFT,
    SignalType.DEBT_ACCRETION,
}


@pytest.fixture
def engine():
    return SignalEngine(SignalDeduplicator(suppression_window_seconds=300, severity_threshold=0.10))


def run(engine, buffer, snapshot, dedup=True):
    buffer.push(snapshot)
    if dedup:
        return engine.compute_all_signals(snapshot, buffer)
    return engine.evaluate(snapshot, buffer)


class TestSignalRegistry:
    """Evaluator registration"""

    def test_all_signal_types_registered(self):
        registered = {spec.signal_type for spec in signal_registry.instant_specs}
        registered |= {spec.signal_type for spec in signal_registry.trend_specs}

        assert registered == set(SignalType) - {SignalType.COMPOSITE_RISK}

    def test_trend_lookbacks(self):
        lookbacks = {spec.signal_type: spec.lookback_minutes for spec in signal_registry.trend_specs}

        assert lookbacks[SignalType.HEALTH_FACTOR_TREND] == 10
        assert lookbacks[SignalType.COLLATERAL_VALUE_DRIFT] is None
        assert lookbacks[SignalType.DEBT_ACCRETION] is None

    def test_duplicate_registration_rejected(self):
        registry = SignalRegistry()
        registry.instant(SignalType.DEBT_RATIO)(lambda snapshot: None)

        with pytest.raises(ValueError):
            registry.trend(SignalType.DEBT_RATIO)(lambda current, previous: None)


class TestSignalEngine:
    """Tests for the full evaluation pass"""

    def test_healthy_account_emits_nothing(self, engine, make_snapshot):
        buffer = SnapshotBuffer(10)

        assert run(engine, buffer, make_snapshot()) == []
        assert engine.last_composite.score == 0.0

    def test_emergency_scenario(self, engine, make_snapshot):
        buffer = SnapshotBuffer(10)
        snapshot = make_snapshot(
            health_factor=1.05,
            available_borrows_usd=0,
            total_debt_usd=800,
            total_collateral_usd=1000,
            net_worth_usd=200
        )

        signals = {s.type: s for s in run(engine, buffer, snapshot)}

        assert signals[SignalType.EMERGENCY_RISK_FLAG].severity == 1.0
        assert signals[SignalType.HEALTH_FACTOR_RISK].severity == pytest.approx(0.25)
        assert signals[SignalType.DEBT_RATIO].severity == pytest.approx(1 / 3)
        assert signals[SignalType.ZERO_BORROW_BUFFER].severity == 1.0
        assert not TREND_TYPES & set(signals)

    def test_order_is_instant_then_trend_then_composite(self, engine, make_snapshot):
        buffer = SnapshotBuffer(10)
        run(engine, buffer, make_snapshot(minutes=0, total_collateral_usd=11000, total_debt_usd=3000))
        snapshot = make_snapshot(
            minutes=1,
            health_factor=0.95,
            total_collateral_usd=10000,
            total_debt_usd=9500,
            net_worth_usd=500
        )

        signals = run(engine, buffer, snapshot, dedup=False)
        types = [s.type for s in signals]

        assert types[-1] == SignalType.COMPOSITE_RISK
        first_trend = min(i for i, t in enumerate(types) if t in TREND_TYPES)
        assert all(t not in TREND_TYPES for t in types[:first_trend])
        assert all(t in TREND_TYPES for t in types[first_trend:-1])
        assert SignalType.COLLATERAL_VALUE_DRIFT in types
        assert SignalType.DEBT_ACCRETION in types

    def test_health_factor_trend_uses_ten_minute_lookback(self, engine, make_snapshot):
        buffer = SnapshotBuffer(30)
        for minute in range(0, 10):
            run(engine, buffer, make_snapshot(minutes=minute, health_factor=2.0))

        # Only 9 minutes of history so far
        signals = run(engine, buffer, make_snapshot(minutes=9.5, health_factor=1.9))
        assert SignalType.HEALTH_FACTOR_TREND not in [s.type for s in signals]

        signals = run(engine, buffer, make_snapshot(minutes=10, health_factor=1.9))
        trend = [s for s in signals if s.type == SignalType.HEALTH_FACTOR_TREND]
        assert len(trend) == 1
        assert trend[0].metrics["previous_health_factor"] == 2.0

    def test_repeats_are_deduplicated(self, engine, make_snapshot):
        buffer = SnapshotBuffer(10)
        first = run(engine, buffer, make_snapshot(minutes=0, net_apy=-2.0))
        second = run(engine, buffer, make_snapshot(minutes=1, net_apy=-2.0))
        later = run(engine, buffer, make_snapshot(minutes=6, net_apy=-2.0))

        assert [s.type for s in first] == [SignalType.NET_APY_DRAG]
        assert second == []
        assert [s.type for s in later] == [SignalType.NET_APY_DRAG]

    def test_evaluate_skips_deduplication(self, engine, make_snapshot):
        buffer = SnapshotBuffer(10)
        run(engine, buffer, make_snapshot(minutes=0, net_apy=-2.0))

        assert len(run(engine, buffer, make_snapshot(minutes=1, net_apy=-2.0), dedup=False)) == 1

    def test_clear_state(self, engine, make_snapshot):
        buffer = SnapshotBuffer(10)
        run(engine, buffer, make_snapshot(minutes=0, net_apy=-2.0))
        engine.clear_state()

        assert engine.deduplicator.get_state() == {}
        assert engine.last_composite is None
        assert len(run(engine, buffer, make_snapshot(minutes=1, net_apy=-2.0))) == 1

    def test_failing_evaluator_is_skipped(self, make_snapshot, base_time):
        registry = SignalRegistry()

        @registry.instant(SignalType.DEBT_RATIO)
        def broken(snapshot):
            return 1 / 0

        @registry.instant(SignalType.NET_APY_DRAG)
        def always(snapshot):
            return Signal(type=SignalType.NET_APY_DRAG, severity=0.5, timestamp=snapshot.timestamp)

        engine = SignalEngine(registry=registry)
        buffer = SnapshotBuffer(10)

        signals = run(engine, buffer, make_snapshot())

        assert [s.type for s in signals] == [SignalType.NET_APY_DRAG]
        assert engine.evaluation_error_count == 1
        assert error_collector.error_counts["EvaluationError"] == 1

    def test_history_snapshots_are_not_reevaluated(self, engine, make_snapshot, base_time):
        buffer = SnapshotBuffer(10)
        run(engine, buffer, make_snapshot(minutes=0, net_apy=-2.0))
        signals = run(engine, buffer, make_snapshot(minutes=1))

        assert signals == []
        assert engine.last_composite.timestamp == base_time + timedelta(minutes=1)
