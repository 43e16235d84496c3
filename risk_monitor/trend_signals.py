"""
Trend signals: compare the current snapshot with a historical one.

A missing historical snapshot is expected while the buffer warms up and
always yields no signal.
"""
from typing import Optional

from .config import SignalType
from .models import Signal, WalletSnapshot
from .signal_registry import signal_registry

HEALTH_FACTOR_LOOKBACK_MINUTES = 10
HEALTH_FACTOR_DECLINE_THRESHOLD = 0.02
COLLATERAL_DRIFT_THRESHOLD_PCT = 3.0
DEBT_ACCRETION_THRESHOLD_USD = 2000.0


@signal_registry.trend(SignalType.HEALTH_FACTOR_TREND, lookback_minutes=HEALTH_FACTOR_LOOKBACK_MINUTES)
def health_factor_trend(current: WalletSnapshot, historical: Optional[WalletSnapshot]) -> Optional[Signal]:
    if historical is None:
        return None
    # An undefined health factor on either side makes the delta meaningless
    if current.health_factor <= 0 or historical.health_factor <= 0:
        return None

    delta = current.health_factor - historical.health_factor
    if delta > -HEALTH_FACTOR_DECLINE_THRESHOLD:
        return None

    return Signal(
        type=SignalType.HEALTH_FACTOR_TREND,
        severity=abs(delta) / 0.1,
        metrics={
            "health_factor_delta": delta,
            "current_health_factor": current.health_factor,
            "previous_health_factor": historical.health_factor,
            "lookback_minutes": HEALTH_FACTOR_LOOKBACK_MINUTES,
        },
        timestamp=current.timestamp,
    )


@signal_registry.trend(SignalType.COLLATERAL_VALUE_DRIFT)
def collateral_value_drift(current: WalletSnapshot, previous: Optional[WalletSnapshot]) -> Optional[Signal]:
    if previous is None:
        return None

    delta = current.total_collateral_usd - previous.total_collateral_usd
    if previous.total_collateral_usd == 0:
        pct_change = 0.0
    else:
        pct_change = delta * 100 / previous.total_collateral_usd

    if pct_change > -COLLATERAL_DRIFT_THRESHOLD_PCT:
        return None

    return Signal(
        type=SignalType.COLLATERAL_VALUE_DRIFT,
        severity=abs(pct_change) / 10,
        metrics={
            "collateral_delta_usd": delta,
            "collateral_change_pct": pct_change,
            "current_collateral_usd": current.total_collateral_usd,
        },
        timestamp=current.timestamp,
    )


@signal_registry.trend(SignalType.DEBT_ACCRETION)
def debt_accretion(current: WalletSnapshot, previous: Optional[WalletSnapshot]) -> Optional[Signal]:
    if previous is None:
        return None

    delta = current.total_debt_usd - previous.total_debt_usd
    if delta < DEBT_ACCRETION_THRESHOLD_USD:
        return None

    return Signal(
        type=SignalType.DEBT_ACCRETION,
        severity=delta / 10000,
        metrics={
            "debt_delta_usd": delta,
            "current_debt_usd": current.total_debt_usd,
        },
        timestamp=current.timestamp,
    )
