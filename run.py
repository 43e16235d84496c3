#!/usr/bin/env python3
"""
Aave Risk Signals Startup Script

Starts the risk signal monitor FastAPI service with the configured wallets.

Usage:
    python run.py [--port PORT] [--host HOST] [--env ENV]

Environment Variables:
    MONGODB_URI: MongoDB connection string (required)
    WALLET_ADDRESSES: Comma separated wallets to monitor
    RISK_MONITOR_PORT: Port to run the service on (default: 8001)
    ENV: Environment (development/production)
    LOG_LEVEL: Logging level (DEBUG/INFO/WARNING/ERROR)
"""

import argparse
import os
import sys

try:
    import uvicorn
    import structlog
    from risk_monitor.config import settings
    from risk_monitor.config import verify_wallet_address
except ImportError as e:
    print(f"Failed to import required modules: {e}")
    print("Please install the package: pip install -e .")
    sys.exit(1)

logger = structlog.get_logger()


def parse_arguments():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Aave Risk Signals - lending account risk monitoring"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=settings.RISK_MONITOR_PORT,
        help=f"Port to run the service on (default: {settings.RISK_MONITOR_PORT})"
    )

    parser.add_argument(
        "--host", "-H",
        type=str,
        default="0.0.0.0",
        help="Host to bind the service to (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--env", "-e",
        type=str,
        choices=["development", "production"],
        default=settings.ENV if settings.ENV in ("development", "production") else "development",
        help=f"Environment mode (default: {settings.ENV})"
    )

    parser.add_argument(
        "--reload", "-r",
        action="store_true",
        help="Enable auto-reload for development"
    )

    parser.add_argument(
        "--log-level", "-l",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper(),
        help=f"Log level (default: {settings.LOG_LEVEL})"
    )

    return parser.parse_args()


def validate_environment():
    """Validate environment setup"""
    errors = []

    mongo_uri = os.getenv("MONGODB_URI", settings.MONGODB_URI)
    if settings.ENABLE_PERSISTENCE and not mongo_uri.startswith("mongodb"):
        errors.append("Invalid MONGODB_URI format")

    wallets = settings.wallet_addresses
    if not wallets:
        errors.append("WALLET_ADDRESSES is empty - nothing to monitor")
    for wallet in wallets:
        if not verify_wallet_address(wallet):
            errors.append(f"Invalid wallet address: {wallet}")

    if errors:
        print("Environment validation failed:")
        for error in errors:
            print(f"   - {error}")
        print("\nPlease check your .env file and ensure all required variables are set.")
        return False

    return True


def print_startup_banner():
    """Print startup banner with service information"""
    print(f"""
Aave Risk Signals
  Port: {settings.RISK_MONITOR_PORT}   Environment: {settings.ENV}
  Market: {settings.MARKET_ADDRESS} (chain {settings.CHAIN_ID})
  Wallets: {len(settings.wallet_addresses)}   Poll interval: {settings.POLL_INTERVAL_MS}ms
  Buffer: {settings.BUFFER_SIZE} snapshots   Retention: {settings.RETENTION_DAYS} days
  Persistence: {'enabled' if settings.ENABLE_PERSISTENCE else 'disabled'}
""")


def main():
    """Main entry point"""
    args = parse_arguments()

    print_startup_banner()

    if not validate_environment():
        sys.exit(1)

    try:
        logger.info("Starting Aave risk signal monitor",
                    host=args.host,
                    port=args.port,
                    env=args.env)

        uvicorn.run(
            "risk_monitor.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            access_log=True,
            reload=args.reload or args.env == "development",
        )

    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    except Exception as e:
        logger.error("Failed to start server", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
