"""
Registry of signal evaluators.

Evaluators register themselves with a decorator; the engine walks the
registry in registration order, so adding a signal never touches the engine.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .config import SignalType
from .models import Signal, WalletSnapshot

InstantEvaluator = Callable[[WalletSnapshot], Optional[Signal]]
TrendEvaluator = Callable[[WalletSnapshot, Optional[WalletSnapshot]], Optional[Signal]]


@dataclass(frozen=True)
class InstantSpec:
    signal_type: SignalType
    evaluate: InstantEvaluator


@dataclass(frozen=True)
class TrendSpec:
    signal_type: SignalType
    evaluate: TrendEvaluator
    # None compares against the previous snapshot
    lookback_minutes: Optional[float] = None


class SignalRegistry:
    def __init__(self):
        self._instant: Dict[SignalType, InstantSpec] = {}
        self._trend: Dict[SignalType, TrendSpec] = {}

    def instant(self, signal_type: SignalType):
        def decorator(func: InstantEvaluator) -> InstantEvaluator:
            self._register(self._instant, InstantSpec(signal_type, func))
            return func
        return decorator

    def trend(self, signal_type: SignalType, lookback_minutes: Optional[float] = None):
        def decorator(func: TrendEvaluator) -> TrendEvaluator:
            self._register(self._trend, TrendSpec(signal_type, func, lookback_minutes))
            return func
        return decorator

    def _register(self, table: Dict, spec):
        if spec.signal_type in self._instant or spec.signal_type in self._trend:
            raise ValueError(f"Evaluator already registered for {spec.signal_type.value}")
        table[spec.signal_type] = spec

    @property
    def instant_specs(self) -> List[InstantSpec]:
        return list(self._instant.values())

    @property
    def trend_specs(self) -> List[TrendSpec]:
        return list(self._trend.values())


# Global registry populated by instant_signals and trend_signals
signal_registry = SignalRegistry()
