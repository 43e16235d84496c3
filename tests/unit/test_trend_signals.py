import pytest

from risk_monitor.config import SignalType
from risk_monitor.trend_signals import collateral_value_drift, debt_accretion, health_factor_trend


class TestHealthFactorTrend:
    """Health factor decline against the snapshot ten minutes earlier"""

    def test_no_history(self, make_snapshot):
        assert health_factor_trend(make_snapshot(), None) is None

    def test_decline_triggers(self, make_snapshot):
        historical = make_snapshot(minutes=0, health_factor=1.50)
        current = make_snapshot(minutes=10, health_factor=1.45)

        signal = health_factor_trend(current, historical)

        assert signal.type == SignalType.HEALTH_FACTOR_TREND
        assert signal.severity == pytest.approx(0.5)
        assert signal.metrics["health_factor_delta"] == pytest.approx(-0.05)
        assert signal.timestamp == current.timestamp

    def test_exact_threshold_decline_triggers(self, make_snapshot):
        historical = make_snapshot(minutes=0, health_factor=2.0)
        current = make_snapshot(minutes=10, health_factor=1.98)

        assert health_factor_trend(current, historical) is not None

    def test_small_decline_or_improvement_is_quiet(self, make_snapshot):
        historical = make_snapshot(minutes=0, health_factor=1.50)

        assert health_factor_trend(make_snapshot(minutes=10, health_factor=1.49), historical) is None
        assert health_factor_trend(make_snapshot(minutes=10, health_factor=1.80), historical) is None

    def test_undefined_health_factor_is_ignored(self, make_snapshot):
        historical = make_snapshot(minutes=0, health_factor=0)
        current = make_snapshot(minutes=10, health_factor=1.2)

        assert health_factor_trend(current, historical) is None
        assert health_factor_trend(historical, current) is None


class TestCollateralValueDrift:
    """Collateral drop against the previous snapshot"""

    def test_drop_triggers(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_collateral_usd=10000)
        current = make_snapshot(minutes=1, total_collateral_usd=9500)

        signal = collateral_value_drift(current, previous)

        assert signal.severity == pytest.approx(0.5)
        assert signal.metrics["collateral_change_pct"] == pytest.approx(-5.0)
        assert signal.metrics["collateral_delta_usd"] == pytest.approx(-500.0)

    def test_three_percent_drop_triggers(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_collateral_usd=10000)
        current = make_snapshot(minutes=1, total_collateral_usd=9700)

        assert collateral_value_drift(current, previous).severity == pytest.approx(0.3)

    def test_small_drop_or_rise_is_quiet(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_collateral_usd=10000)

        assert collateral_value_drift(make_snapshot(minutes=1, total_collateral_usd=9800), previous) is None
        assert collateral_value_drift(make_snapshot(minutes=1, total_collateral_usd=12000), previous) is None

    def test_zero_previous_collateral_means_no_change(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_collateral_usd=0)
        current = make_snapshot(minutes=1, total_collateral_usd=5000)

        assert collateral_value_drift(current, previous) is None

    def test_no_previous(self, make_snapshot):
        assert collateral_value_drift(make_snapshot(), None) is None


class TestDebtAccretion:
    """USD debt growth against the previous snapshot"""

    def test_growth_triggers(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_debt_usd=3000)
        current = make_snapshot(minutes=1, total_debt_usd=8000)

        signal = debt_accretion(current, previous)

        assert signal.severity == pytest.approx(0.5)
        assert signal.metrics["debt_delta_usd"] == pytest.approx(5000.0)

    def test_threshold_is_inclusive(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_debt_usd=3000)
        current = make_snapshot(minutes=1, total_debt_usd=5000)

        assert debt_accretion(current, previous).severity == pytest.approx(0.2)

    def test_severity_is_clamped(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_debt_usd=0)
        current = make_snapshot(minutes=1, total_debt_usd=50000)

        assert debt_accretion(current, previous).severity == 1.0

    def test_small_growth_or_repayment_is_quiet(self, make_snapshot):
        previous = make_snapshot(minutes=0, total_debt_usd=3000)

        assert debt_accretion(make_snapshot(minutes=1, total_debt_usd=4999), previous) is None
        assert debt_accretion(make_snapshot(minutes=1, total_debt_usd=1000), previous) is None
        assert debt_accretion(make_snapshot(), None) is None
