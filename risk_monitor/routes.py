from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
import structlog

from . import __version__
from .config import RiskSeverity, settings, verify_wallet_address
from .database import db_manager
from .error_handling import error_collector
from .models import CompositeResponse, SignalsResponse, SystemStatus, WalletSnapshot, utcnow
from .monitoring import metrics_collector
from .service import AccountMonitor, monitoring_service

logger = structlog.get_logger()

router = APIRouter(prefix="/api/risk")


def get_monitor(wallet: str) -> AccountMonitor:
    if not verify_wallet_address(wallet):
        raise HTTPException(status_code=400, detail="Invalid wallet address format")

    monitor = monitoring_service.get_account(wallet)
    if monitor is None:
        raise HTTPException(status_code=404, detail=f"Wallet {wallet.lower()} is not monitored")
    return monitor


@router.get("/health")
async def health_check():
    """Database connectivity and service state"""
    db_health = await db_manager.health_check()
    mongodb_ok = db_health["mongodb"]["status"] == "connected"
    healthy = monitoring_service.is_running and (mongodb_ok or not settings.ENABLE_PERSISTENCE)

    content = {
        "status": "healthy" if healthy else "unhealthy",
        "service_running": monitoring_service.is_running,
        "database": db_health,
        "timestamp": utcnow().isoformat(),
        "version": __version__
    }
    if not healthy:
        logger.warning("Health check failed", database=db_health, service_running=monitoring_service.is_running)
        return JSONResponse(status_code=503, content=content)
    return content


@router.get("/status", response_model=SystemStatus)
async def get_system_status():
    """Poller statistics for every monitored account"""
    status = monitoring_service.get_status()
    return SystemStatus(
        status=status["status"],
        version=__version__,
        uptime_seconds=status["uptime_seconds"],
        monitored_wallets=status["monitored_wallets"],
        poll_interval_ms=settings.POLL_INTERVAL_MS,
        pollers=status["pollers"]
    )


@router.get("/accounts/{wallet}/snapshot", response_model=WalletSnapshot)
async def get_latest_snapshot(wallet: str):
    """Most recent buffered snapshot for a wallet"""
    monitor = get_monitor(wallet)
    snapshot = monitor.latest_snapshot
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No snapshot collected yet")
    return snapshot


@router.get("/accounts/{wallet}/signals", response_model=SignalsResponse)
async def get_recent_signals(wallet: str, limit: int = 50):
    """Recently emitted signals, newest first"""
    if limit < 1 or limit > settings.RECENT_SIGNALS_LIMIT:
        raise HTTPException(
            status_code=400,
            detail=f"limit must be between 1 and {settings.RECENT_SIGNALS_LIMIT}"
        )

    monitor = get_monitor(wallet)
    signals = list(reversed(monitor.recent_signals))
    return SignalsResponse(
        wallet_address=monitor.wallet_address,
        signals=signals[:limit],
        total_count=len(signals)
    )


@router.get("/accounts/{wallet}/composite", response_model=CompositeResponse)
async def get_composite_score(wallet: str):
    """Latest composite risk score computed for a wallet"""
    monitor = get_monitor(wallet)
    composite = monitor.last_composite
    return CompositeResponse(
        wallet_address=monitor.wallet_address,
        composite=composite,
        level=RiskSeverity.from_score(composite.score) if composite else None
    )


@router.get("/metrics")
async def get_metrics():
    """Pipeline metrics and recent error summary"""
    return {
        "metrics": metrics_collector.get_all_current_metrics(),
        "cycle_duration": metrics_collector.get_metric_summary("poller.cycle.duration_seconds", hours=1),
        "errors": error_collector.get_error_summary(hours=24),
        "timestamp": utcnow().isoformat()
    }
