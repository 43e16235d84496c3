import asyncio
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional

import structlog

from .alerts import AlertSink, LogAlertSink
from .config import settings, verify_wallet_address
from .database import SnapshotRepository
from .deduplicator import SignalDeduplicator
from .error_handling import ConfigurationError, PersistenceError, error_collector
from .external_apis import AaveClient
from .models import CompositeRiskScore, PollerStats, Signal, WalletSnapshot, utcnow
from .monitoring import MetricsCollector, metrics_collector
from .poller import Poller, PositionProvider
from .signal_engine import SignalEngine
from .snapshot_buffer import SnapshotBuffer

logger = structlog.get_logger()


class AccountMonitor:
    """Owns the buffer, deduplicator, engine and poller of one account"""

    def __init__(
        self,
        wallet_address: str,
        provider: PositionProvider,
        sink: Optional[SnapshotRepository] = None,
        alert_sink: Optional[AlertSink] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.wallet_address = wallet_address.lower()
        self.alert_sink = alert_sink
        self.buffer = SnapshotBuffer(settings.BUFFER_SIZE)
        self.deduplicator = SignalDeduplicator(
            suppression_window_seconds=settings.DEDUP_SUPPRESSION_WINDOW_SECONDS,
            severity_threshold=settings.DEDUP_SEVERITY_THRESHOLD
        )
        self.engine = SignalEngine(self.deduplicator)
        self.recent_signals: Deque[Signal] = deque(maxlen=settings.RECENT_SIGNALS_LIMIT)
        self.poller = Poller(
            self.wallet_address,
            provider,
            self.buffer,
            self.engine,
            interval_ms=settings.POLL_INTERVAL_MS,
            sink=sink,
            on_signals=self._handle_signals,
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
            metrics=metrics
        )

    def _handle_signals(self, snapshot: WalletSnapshot, signals: List[Signal]):
        if not signals:
            return
        self.recent_signals.extend(signals)
        if self.alert_sink is not None:
            self.alert_sink.emit(signals)

    async def start(self):
        await self.poller.start()

    async def stop(self):
        await self.poller.stop()

    @property
    def latest_snapshot(self) -> Optional[WalletSnapshot]:
        return self.buffer.latest()

    @property
    def last_composite(self) -> Optional[CompositeRiskScore]:
        return self.engine.last_composite

    def get_stats(self) -> PollerStats:
        return self.poller.get_stats()


class MonitoringService:
    """Runs one AccountMonitor per wallet plus the snapshot retention loop"""

    def __init__(
        self,
        provider: Optional[PositionProvider] = None,
        repository: Optional[SnapshotRepository] = None,
        alert_sink: Optional[AlertSink] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.provider = provider
        self.repository = repository
        self.alert_sink = alert_sink or LogAlertSink()
        self.metrics = metrics or metrics_collector
        self.accounts: Dict[str, AccountMonitor] = {}
        self.is_running = False
        self.started_at = None
        self._retention_task: Optional[asyncio.Task] = None
        self._owns_provider = False

    async def start(self, wallet_addresses: Optional[Iterable[str]] = None):
        if self.is_running:
            logger.warning("Monitoring service already running")
            return

        if self.provider is None:
            self.provider = AaveClient()
            self._owns_provider = True

        self.is_running = True
        self.started_at = utcnow()

        wallets = list(wallet_addresses) if wallet_addresses is not None else settings.wallet_addresses
        if not wallets:
            logger.warning("No wallets configured for monitoring")
        for wallet in wallets:
            await self.add_account(wallet)

        if self.repository is not None:
            self._retention_task = asyncio.create_task(self._retention_loop())

        logger.info("Monitoring service started", accounts=len(self.accounts),
                    interval_ms=settings.POLL_INTERVAL_MS)

    async def stop(self):
        if not self.is_running:
            return

        self.is_running = False

        if self._retention_task is not None:
            self._retention_task.cancel()
            await asyncio.gather(self._retention_task, return_exceptions=True)
            self._retention_task = None

        await asyncio.gather(*(monitor.stop() for monitor in self.accounts.values()))

        if self._owns_provider and isinstance(self.provider, AaveClient):
            await self.provider.close()
            self.provider = None
            self._owns_provider = False

        logger.info("Monitoring service stopped", accounts=len(self.accounts))

    async def add_account(self, wallet_address: str) -> AccountMonitor:
        wallet = wallet_address.lower()
        if not verify_wallet_address(wallet):
            raise ConfigurationError(f"Invalid wallet address: {wallet_address!r}")

        existing = self.accounts.get(wallet)
        if existing is not None:
            return existing

        monitor = AccountMonitor(
            wallet,
            self.provider,
            sink=self.repository,
            alert_sink=self.alert_sink,
            metrics=self.metrics
        )
        self.accounts[wallet] = monitor
        self.metrics.set_gauge("accounts.monitored", len(self.accounts))

        if self.is_running:
            await monitor.start()
        logger.info("Account added", wallet=wallet)
        return monitor

    async def remove_account(self, wallet_address: str) -> bool:
        monitor = self.accounts.pop(wallet_address.lower(), None)
        if monitor is None:
            return False

        await monitor.stop()
        self.metrics.set_gauge("accounts.monitored", len(self.accounts))
        logger.info("Account removed", wallet=monitor.wallet_address)
        return True

    async def sync_accounts(self, wallet_addresses: Iterable[str]):
        """Make the monitored set match ``wallet_addresses``"""
        wanted = {wallet.lower() for wallet in wallet_addresses}
        for wallet in list(self.accounts):
            if wallet not in wanted:
                await self.remove_account(wallet)
        for wallet in wanted:
            await self.add_account(wallet)

    def get_account(self, wallet_address: str) -> Optional[AccountMonitor]:
        return self.accounts.get(wallet_address.lower())

    async def cleanup_old_snapshots(self) -> int:
        if self.repository is None:
            return 0
        deleted = await self.repository.delete_older_than(settings.RETENTION_DAYS)
        self.metrics.increment("snapshots.deleted", deleted)
        return deleted

    async def _retention_loop(self):
        while self.is_running:
            try:
                await self.cleanup_old_snapshots()
            except PersistenceError as e:
                error_collector.record_error(e, {"task": "retention_cleanup"})
                logger.error("Snapshot retention cleanup failed", error=str(e))

            await asyncio.sleep(settings.RETENTION_CLEANUP_INTERVAL_SECONDS)

    def get_status(self) -> Dict:
        pollers = [monitor.get_stats() for monitor in self.accounts.values()]
        if not self.is_running:
            status = "stopped"
        elif any(stats.error_count and stats.buffer_size == 0 for stats in pollers):
            status = "degraded"
        else:
            status = "operational"

        uptime = (utcnow() - self.started_at).total_seconds() if self.started_at else 0
        return {
            "status": status,
            "uptime_seconds": int(uptime),
            "monitored_wallets": len(self.accounts),
            "pollers": pollers,
        }


# Global monitoring service instance
monitoring_service = MonitoringService()
