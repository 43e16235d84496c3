from typing import Callable, List, Optional

import structlog

# Importing the evaluator modules registers them
from . import instant_signals, trend_signals  # noqa: F401
from .composite import calculate_composite_risk, composite_risk_signal
from .config import SignalType
from .deduplicator import SignalDeduplicator
from .error_handling import EvaluationError, error_collector
from .models import CompositeRiskScore, Signal, WalletSnapshot
from .signal_registry import SignalRegistry, signal_registry
from .snapshot_buffer import SnapshotBuffer

logger = structlog.get_logger()


class SignalEngine:
    """Runs every registered evaluator for a snapshot and deduplicates the result.

    Output order is instant signals, then trend signals, then the composite.
    """

    def __init__(
        self,
        deduplicator: Optional[SignalDeduplicator] = None,
        registry: SignalRegistry = signal_registry
    ):
        self.deduplicator = deduplicator or SignalDeduplicator()
        self.registry = registry
        self.last_composite: Optional[CompositeRiskScore] = None
        self.evaluation_error_count = 0

    def _run(self, signal_type: SignalType, evaluate: Callable, *args) -> Optional[Signal]:
        try:
            return evaluate(*args)
        except (ArithmeticError, TypeError, ValueError) as e:
            self.evaluation_error_count += 1
            error = EvaluationError(signal_type.value, e)
            error_collector.record_error(error, {"signal_type": signal_type.value})
            logger.error("Signal evaluation failed", signal_type=signal_type.value, error=str(e))
            return None

    def evaluate(self, snapshot: WalletSnapshot, buffer: SnapshotBuffer) -> List[Signal]:
        """All active signals for the snapshot, before deduplication"""
        signals: List[Signal] = []

        for spec in self.registry.instant_specs:
            signal = self._run(spec.signal_type, spec.evaluate, snapshot)
            if signal is not None:
                signals.append(signal)

        for spec in self.registry.trend_specs:
            if spec.lookback_minutes is None:
                historical = buffer.previous()
            else:
                historical = buffer.n_minutes_ago(spec.lookback_minutes, now=snapshot.timestamp)
            signal = self._run(spec.signal_type, spec.evaluate, snapshot, historical)
            if signal is not None:
                signals.append(signal)

        composite = calculate_composite_risk(signals, timestamp=snapshot.timestamp)
        self.last_composite = composite
        composite_signal = composite_risk_signal(composite)
        if composite_signal is not None:
            signals.append(composite_signal)

        return signals

    def compute_all_signals(self, snapshot: WalletSnapshot, buffer: SnapshotBuffer) -> List[Signal]:
        """Evaluate the snapshot and return only the signals that pass deduplication"""
        signals = self.evaluate(snapshot, buffer)
        emitted = self.deduplicator.filter(signals)

        logger.debug(
            "Signals computed",
            wallet=snapshot.wallet_address,
            active=len(signals),
            emitted=len(emitted),
            composite_score=round(self.last_composite.score, 4) if self.last_composite else None
        )
        return emitted

    def clear_state(self):
        self.deduplicator.clear()
        self.last_composite = None
