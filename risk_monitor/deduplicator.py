from datetime import timedelta
from typing import Dict, Iterable, List

import structlog

from .config import SignalType
from .models import DeduplicationRecord, Signal

logger = structlog.get_logger()

# Absorbs float error so an exact threshold step still counts as escalation
SEVERITY_TOLERANCE = 1e-9


class SignalDeduplicator:
    """Suppresses repeats of a signal type unless it escalates or the window expires.

    State only changes when a signal is emitted.
    """

    def __init__(self, suppression_window_seconds: float = 300.0, severity_threshold: float = 0.10):
        self.suppression_window = timedelta(seconds=suppression_window_seconds)
        self.severity_threshold = severity_threshold
        self._state: Dict[SignalType, DeduplicationRecord] = {}

    def should_emit(self, signal: Signal) -> bool:
        record = self._state.get(signal.type)
        if record is None:
            return True

        if signal.severity - record.last_severity >= self.severity_threshold - SEVERITY_TOLERANCE:
            return True

        return signal.timestamp - record.last_emit_time >= self.suppression_window

    def filter(self, signals: Iterable[Signal]) -> List[Signal]:
        emitted = []
        for signal in signals:
            if self.should_emit(signal):
                self._state[signal.type] = DeduplicationRecord(
                    last_severity=signal.severity,
                    last_emit_time=signal.timestamp,
                )
                emitted.append(signal)
            else:
                logger.debug("Signal suppressed", signal_type=signal.type.value, severity=signal.severity)
        return emitted

    def clear(self):
        self._state.clear()

    def get_state(self) -> Dict[SignalType, DeduplicationRecord]:
        return dict(self._state)
