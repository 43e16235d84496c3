from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, List, Optional

from .models import WalletSnapshot


class SnapshotBuffer:
    """Bounded, time-ordered history of snapshots for one account.

    Oldest entries are evicted first once ``max_size`` is reached. Only the
    account's poller writes to it.
    """

    def __init__(self, max_size: int = 120):
        if max_size < 2:
            raise ValueError("max_size must be at least 2")
        self.max_size = max_size
        self._snapshots: Deque[WalletSnapshot] = deque(maxlen=max_size)

    def push(self, snapshot: WalletSnapshot):
        self._snapshots.append(snapshot)

    def latest(self) -> Optional[WalletSnapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def previous(self) -> Optional[WalletSnapshot]:
        """Second most recent snapshot, if at least two are buffered"""
        if len(self._snapshots) < 2:
            return None
        return self._snapshots[-2]

    def n_minutes_ago(self, minutes: float, now: Optional[datetime] = None) -> Optional[WalletSnapshot]:
        """Newest snapshot taken at or before ``now - minutes``"""
        now = now or datetime.now(timezone.utc)
        target = now - timedelta(minutes=minutes)
        for snapshot in reversed(self._snapshots):
            if snapshot.timestamp <= target:
                return snapshot
        return None

    def all(self) -> List[WalletSnapshot]:
        return list(self._snapshots)

    def size(self) -> int:
        return len(self._snapshots)

    def clear(self):
        self._snapshots.clear()

    def __len__(self) -> int:
        return len(self._snapshots)
