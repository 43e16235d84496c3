import logging
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from . import __version__
from .config import settings
from .database import SnapshotRepository, db_manager
from .models import utcnow
from .monitoring import request_tracker
from .routes import router
from .service import monitoring_service

logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    startup_start_time = time.time()
    logger.info("Starting Aave risk signal monitor")

    try:
        if settings.ENABLE_PERSISTENCE:
            await db_manager.connect()
            monitoring_service.repository = SnapshotRepository()
            logger.info("Database connection established")
        else:
            logger.warning("Persistence is disabled - snapshots are kept in memory only")

        await monitoring_service.start()

        logger.info("Risk signal monitor ready",
                    monitored_wallets=len(monitoring_service.accounts),
                    startup_time_seconds=round(time.time() - startup_start_time, 2))
    except Exception as e:
        logger.error("Failed to start risk signal monitor", error=str(e))
        raise

    yield

    logger.info("Shutting down risk signal monitor")
    try:
        await monitoring_service.stop()
        await db_manager.disconnect()
        logger.info("Risk signal monitor shutdown complete")
    except Exception as e:
        logger.error("Error during shutdown", error=str(e))


app = FastAPI(
    title="Aave Risk Signals",
    description="Early-warning risk signals for Aave v3 lending accounts",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    async with request_tracker.track_request(request.url.path, request.method):
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("Request failed",
                         method=request.method,
                         url=str(request.url),
                         error=str(e),
                         process_time=round(time.time() - start_time, 3))
            raise

    process_time = time.time() - start_time
    logger.info("Request completed",
                method=request.method,
                url=str(request.url),
                status_code=response.status_code,
                process_time=round(process_time, 3))

    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error("Unhandled exception",
                 method=request.method,
                 url=str(request.url),
                 error=str(exc),
                 error_type=type(exc).__name__)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "timestamp": utcnow().isoformat()
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handler for HTTP exceptions"""
    logger.warning("HTTP exception",
                   method=request.method,
                   url=str(request.url),
                   status_code=exc.status_code,
                   detail=exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
            "timestamp": utcnow().isoformat()
        }
    )


app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": "Aave Risk Signals",
        "version": __version__,
        "status": "operational" if monitoring_service.is_running else "stopped",
        "timestamp": utcnow().isoformat(),
        "endpoints": {
            "health": "/api/risk/health",
            "status": "/api/risk/status",
            "snapshot": "/api/risk/accounts/{wallet}/snapshot",
            "signals": "/api/risk/accounts/{wallet}/signals",
            "composite": "/api/risk/accounts/{wallet}/composite",
            "metrics": "/api/risk/metrics",
            "docs": "/docs"
        }
    }
