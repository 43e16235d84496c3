from datetime import datetime
from typing import Dict, Iterable, Optional

from .config import SignalType
from .models import CompositeRiskScore, Signal, utcnow

COMPOSITE_WEIGHTS: Dict[SignalType, float] = {
    SignalType.HEALTH_FACTOR_RISK: 0.35,
    SignalType.DISTANCE_TO_LIQUIDATION: 0.30,
    SignalType.DEBT_RATIO: 0.15,
    SignalType.HIGH_LEVERAGE: 0.10,
    SignalType.COLLATERAL_CONCENTRATION: 0.10,
}

COMPOSITE_EMIT_THRESHOLD = 0.6


def calculate_composite_risk(
    signals: Iterable[Signal],
    timestamp: Optional[datetime] = None
) -> CompositeRiskScore:
    """Weighted sum of the key signal severities.

    Signals outside COMPOSITE_WEIGHTS are informational and never contribute.
    """
    severities: Dict[SignalType, float] = {}
    for signal in signals:
        if signal.type in COMPOSITE_WEIGHTS and signal.type not in severities:
            severities[signal.type] = signal.severity

    contributors = {
        signal_type.value: severities.get(signal_type, 0.0)
        for signal_type in COMPOSITE_WEIGHTS
    }
    score = sum(
        weight * severities.get(signal_type, 0.0)
        for signal_type, weight in COMPOSITE_WEIGHTS.items()
    )

    return CompositeRiskScore(
        score=min(1.0, max(0.0, score)),
        contributors=contributors,
        timestamp=timestamp or utcnow(),
    )


def composite_risk_signal(composite: CompositeRiskScore) -> Optional[Signal]:
    if composite.score < COMPOSITE_EMIT_THRESHOLD:
        return None

    return Signal(
        type=SignalType.COMPOSITE_RISK,
        severity=composite.score,
        metrics={"score": composite.score, **composite.contributors},
        timestamp=composite.timestamp,
    )
