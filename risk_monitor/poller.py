import asyncio
import inspect
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

import structlog

from .error_handling import NormalizationError, PersistenceError, ProviderError, error_collector
from .models import PollerStats, Signal, WalletSnapshot, utcnow
from .normalizer import normalize_position
from .signal_engine import SignalEngine
from .snapshot_buffer import SnapshotBuffer

logger = structlog.get_logger()


class PositionProvider(Protocol):
    async def fetch_position(self, wallet_address: str) -> Dict[str, Any]:
        ...


class SnapshotSink(Protocol):
    async def store(self, snapshot: WalletSnapshot) -> None:
        ...


SignalCallback = Callable[[WalletSnapshot, List[Signal]], Union[None, Awaitable[None]]]


class PollerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    FETCHING = "fetching"


class Poller:
    """Periodically samples one account and feeds the signal pipeline.

    Each cycle fetches the position, normalizes it, pushes it to the buffer,
    persists it (best effort), evaluates signals and hands them to the
    callback. The next cycle is scheduled whatever the outcome.
    """

    def __init__(
        self,
        wallet_address: str,
        provider: PositionProvider,
        buffer: SnapshotBuffer,
        engine: SignalEngine,
        interval_ms: int = 5000,
        sink: Optional[SnapshotSink] = None,
        on_signals: Optional[SignalCallback] = None,
        fetch_timeout: Optional[float] = None,
        metrics=None
    ):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        self.wallet_address = wallet_address.lower()
        self.provider = provider
        self.buffer = buffer
        self.engine = engine
        self.interval_ms = interval_ms
        self.sink = sink
        self.on_signals = on_signals
        self.fetch_timeout = fetch_timeout
        self.metrics = metrics

        self.state = PollerState.IDLE
        self.is_running = False
        self.poll_count = 0
        self.error_count = 0
        self.persistence_error_count = 0
        self.callback_error_count = 0
        self.last_poll_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

        self._task: Optional[asyncio.Task] = None
        self._sleeping = False

    async def start(self):
        if self.is_running:
            logger.warning("Poller already running", wallet=self.wallet_address)
            return

        self.is_running = True
        self.state = PollerState.SCHEDULED
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Poller started", wallet=self.wallet_address, interval_ms=self.interval_ms)

    async def stop(self):
        """Stop polling. An in-flight cycle finishes; a pending wait is cancelled."""
        if not self.is_running:
            return

        self.is_running = False
        task, self._task = self._task, None

        if task is not None and task is not asyncio.current_task():
            if self._sleeping:
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self.state = PollerState.IDLE
        logger.info(
            "Poller stopped",
            wallet=self.wallet_address,
            polls=self.poll_count,
            errors=self.error_count
        )

    async def _poll_loop(self):
        try:
            # First cycle runs immediately
            while self.is_running:
                try:
                    await self.run_cycle()
                except Exception as e:
                    self.error_count += 1
                    self.last_error = str(e)
                    error_collector.record_error(e, {"wallet": self.wallet_address, "poll": self.poll_count})
                    logger.error("Unexpected poll failure", wallet=self.wallet_address, error=str(e))
                if not self.is_running:
                    break

                self.state = PollerState.SCHEDULED
                self._sleeping = True
                try:
                    await asyncio.sleep(self.interval_ms / 1000)
                finally:
                    self._sleeping = False
        except asyncio.CancelledError:
            pass
        finally:
            self.state = PollerState.IDLE

    async def _fetch_snapshot(self) -> WalletSnapshot:
        try:
            if self.fetch_timeout:
                payload = await asyncio.wait_for(
                    self.provider.fetch_position(self.wallet_address),
                    timeout=self.fetch_timeout
                )
            else:
                payload = await self.provider.fetch_position(self.wallet_address)
        except asyncio.TimeoutError:
            raise ProviderError(f"Position fetch timed out after {self.fetch_timeout}s")

        try:
            return normalize_position(self.wallet_address, payload)
        except (TypeError, ValueError) as e:
            raise NormalizationError(f"Could not normalize position: {e}") from e

    async def _persist(self, snapshot: WalletSnapshot):
        if self.sink is None:
            return
        try:
            await self.sink.store(snapshot)
        except Exception as e:
            error = e if isinstance(e, PersistenceError) else PersistenceError(
                f"Snapshot sink failed: {type(e).__name__}: {e}"
            )
            self.persistence_error_count += 1
            error_collector.record_error(error, {"wallet": self.wallet_address, "stage": "persist"})
            logger.error("Snapshot persistence failed", wallet=self.wallet_address, error=str(error))

    async def _notify(self, snapshot: WalletSnapshot, signals: List[Signal]):
        if self.on_signals is None:
            return
        try:
            result = self.on_signals(snapshot, signals)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.callback_error_count += 1
            error_collector.record_error(e, {"wallet": self.wallet_address, "stage": "callback"})
            logger.error("Signal callback failed", wallet=self.wallet_address, error=str(e))

    async def run_cycle(self) -> Optional[List[Signal]]:
        """Execute one poll cycle. Returns the emitted signals, or None if the fetch failed."""
        self.state = PollerState.FETCHING
        try:
            return await self._execute_cycle()
        finally:
            self.state = self._idle_state()

    def _idle_state(self) -> PollerState:
        return PollerState.SCHEDULED if self.is_running else PollerState.IDLE

    async def _execute_cycle(self) -> Optional[List[Signal]]:
        start_time = time.monotonic()
        self.poll_count += 1
        self.last_poll_at = utcnow()

        try:
            snapshot = await self._fetch_snapshot()
        except ProviderError as e:
            self.error_count += 1
            self.last_error = str(e)
            error_collector.record_error(e, {"wallet": self.wallet_address, "poll": self.poll_count})
            logger.error("Poll failed", wallet=self.wallet_address, poll=self.poll_count, error=str(e))
            if self.metrics:
                self.metrics.increment("poller.cycles.failed")
            return None

        # Only the fetch counts as fetching
        self.state = self._idle_state()
        self.buffer.push(snapshot)
        await self._persist(snapshot)

        signals = self.engine.compute_all_signals(snapshot, self.buffer)
        await self._notify(snapshot, signals)

        duration = time.monotonic() - start_time
        if self.metrics:
            self.metrics.increment("poller.cycles.completed")
            self.metrics.increment("signals.emitted", len(signals))
            self.metrics.record_histogram("poller.cycle.duration_seconds", duration)

        logger.info(
            "Poll completed",
            wallet=self.wallet_address,
            poll=self.poll_count,
            health_factor=round(snapshot.health_factor, 4),
            collateral_usd=round(snapshot.total_collateral_usd, 2),
            debt_usd=round(snapshot.total_debt_usd, 2),
            signals=len(signals),
            duration_seconds=round(duration, 3)
        )
        return signals

    def get_stats(self) -> PollerStats:
        return PollerStats(
            wallet_address=self.wallet_address,
            is_running=self.is_running,
            state=self.state.value,
            poll_count=self.poll_count,
            error_count=self.error_count,
            persistence_error_count=self.persistence_error_count,
            evaluation_error_count=self.engine.evaluation_error_count,
            callback_error_count=self.callback_error_count,
            buffer_size=self.buffer.size(),
            last_poll_at=self.last_poll_at,
            last_error=self.last_error,
        )
