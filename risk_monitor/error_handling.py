"""
Error taxonomy, retry helpers and error collection for the risk signal pipeline
"""
import logging
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from tenacity import (
    AsyncRetrying, stop_after_attempt, wait_exponential,
    retry_if_exception_type, before_sleep_log
)

logger = structlog.get_logger()


class RiskMonitorError(Exception):
    """Base class for all risk monitor errors"""
    pass


class ProviderError(RiskMonitorError):
    """Raised when the position provider cannot deliver a payload"""
    pass


class NormalizationError(ProviderError):
    """Raised when a provider payload cannot be turned into a snapshot"""
    pass


class PersistenceError(RiskMonitorError):
    """Raised when a snapshot cannot be stored or queried"""
    pass


class EvaluationError(RiskMonitorError):
    """Raised when a signal evaluator fails on a snapshot"""

    def __init__(self, signal_type: str, cause: Exception):
        super().__init__(f"{signal_type} evaluation failed: {cause}")
        self.signal_type = signal_type
        self.cause = cause


class ConfigurationError(RiskMonitorError):
    """Raised when configuration is invalid"""
    pass


def async_retrying(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exceptions: tuple = (Exception,)
) -> AsyncRetrying:
    """Async retry controller with exponential backoff"""
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


class ErrorCollector:
    """Collects and analyzes errors for better observability"""

    def __init__(self, max_errors: int = 1000):
        self.errors: deque = deque(maxlen=max_errors)
        self.error_counts: Dict[str, int] = {}

    def record_error(self, error: Exception, context: Optional[Dict[str, Any]] = None):
        """Record an error with context"""
        error_type = type(error).__name__
        self.errors.append({
            "timestamp": datetime.now(timezone.utc),
            "type": error_type,
            "message": str(error),
            "context": context or {},
        })
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        logger.error(
            "Error recorded",
            error_type=error_type,
            error_message=str(error),
            context=context
        )

    def get_error_summary(self, hours: int = 24) -> Dict:
        """Get error summary for the last N hours"""
        cutoff_time = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent_errors = [error for error in self.errors if error["timestamp"] > cutoff_time]

        error_types: Dict[str, Dict] = {}
        for error in recent_errors:
            entry = error_types.setdefault(error["type"], {"count": 0, "examples": []})
            entry["count"] += 1
            if len(entry["examples"]) < 3:
                entry["examples"].append({
                    "message": error["message"],
                    "timestamp": error["timestamp"].isoformat(),
                    "context": error["context"]
                })

        return {
            "time_window_hours": hours,
            "total_errors": len(recent_errors),
            "error_types": error_types,
            "most_common_errors": [
                name for name, _ in sorted(
                    error_types.items(),
                    key=lambda x: x[1]["count"],
                    reverse=True
                )[:5]
            ]
        }

    def clear(self):
        self.errors.clear()
        self.error_counts.clear()


# Global error collector
error_collector = ErrorCollector()
