from typing import Iterable, List, Protocol

import structlog

from .config import RiskSeverity, SignalType
from .models import Signal

logger = structlog.get_logger()


class AlertSink(Protocol):
    def emit(self, signals: List[Signal]) -> None:
        ...


def format_signal(signal: Signal) -> str:
    """Single-line human readable rendering of a signal"""
    level = RiskSeverity.from_score(signal.severity)
    metrics = " ".join(
        f"{key}={value:.2f}" if isinstance(value, float) else f"{key}={value}"
        for key, value in signal.metrics.items()
    )
    if signal.type == SignalType.COMPOSITE_RISK:
        return f"COMPOSITE RISK SCORE {signal.severity:.2f} ({level}) {metrics}".rstrip()
    return f"{signal.type.value} severity={signal.severity:.2f} ({level}) {metrics}".rstrip()


def order_for_display(signals: Iterable[Signal]) -> List[Signal]:
    """Regular signals first, the composite last"""
    signals = list(signals)
    regular = [s for s in signals if s.type != SignalType.COMPOSITE_RISK]
    composite = [s for s in signals if s.type == SignalType.COMPOSITE_RISK]
    return regular + composite


class LogAlertSink:
    """Alert sink that writes signals to the structured log"""

    def emit(self, signals: List[Signal]):
        if not signals:
            return

        for signal in order_for_display(signals):
            level = RiskSeverity.from_score(signal.severity)
            log = logger.warning if level in (RiskSeverity.HIGH, RiskSeverity.CRITICAL) else logger.info
            log(
                "Risk signal",
                signal_type=signal.type.value,
                severity=round(signal.severity, 4),
                level=level,
                summary=format_signal(signal),
                metrics=signal.metrics,
                timestamp=signal.timestamp.isoformat()
            )
