"""
Aave Risk Signals - lending account risk monitoring service

Samples Aave v3 account state on a fixed interval, keeps a bounded history
per account and evaluates a library of threshold-based risk signals:

- Instant signals computed from a single snapshot (health factor, LTV
  pressure, leverage, concentration, carry, ...)
- Trend signals comparing against earlier snapshots (health factor decline,
  collateral drift, debt accretion)
- A weighted composite risk score
- Per-signal-type deduplication of repeated alerts

Snapshots are persisted to MongoDB and a read-only FastAPI surface exposes
poller status, latest snapshots and recent signals.
"""

__version__ = "1.0.0"

from .main import app
from .config import settings

__all__ = ["app", "settings"]
