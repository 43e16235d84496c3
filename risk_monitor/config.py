import re
from enum import Enum
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # MongoDB Configuration
    MONGODB_URI: str
    MONGO_DB_NAME: str = "aave_risk_signals"
    ENABLE_PERSISTENCE: bool = True

    # Aave API
    AAVE_API_URL: str = "https://api.v3.aave.com/graphql"
    MARKET_ADDRESS: str = "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2"
    CHAIN_ID: int = 1
    FETCH_TIMEOUT_SECONDS: float = 10.0
    PROVIDER_MAX_ATTEMPTS: int = 3

    # Monitored accounts, comma separated
    WALLET_ADDRESSES: str = ""

    # Sampling
    POLL_INTERVAL_MS: int = 5000
    BUFFER_SIZE: int = 120

    # Alert deduplication
    DEDUP_SUPPRESSION_WINDOW_SECONDS: float = 300.0
    DEDUP_SEVERITY_THRESHOLD: float = 0.10

    # Retention
    RETENTION_DAYS: int = 7
    RETENTION_CLEANUP_INTERVAL_SECONDS: int = 86400
    RECENT_SIGNALS_LIMIT: int = 100

    # Service
    RISK_MONITOR_PORT: int = 8001

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",  # Allow extra fields in .env
    )

    @field_validator("POLL_INTERVAL_MS")
    @classmethod
    def validate_poll_interval(cls, v):
        if v <= 0:
            raise ValueError("POLL_INTERVAL_MS must be positive")
        return v

    @field_validator("BUFFER_SIZE")
    @classmethod
    def validate_buffer_size(cls, v):
        if v < 2:
            raise ValueError("BUFFER_SIZE must be at least 2")
        return v

    @field_validator("DEDUP_SEVERITY_THRESHOLD")
    @classmethod
    def validate_severity_threshold(cls, v):
        if not 0 <= v <= 1:
            raise ValueError("DEDUP_SEVERITY_THRESHOLD must be within [0, 1]")
        return v

    @field_validator("RETENTION_DAYS", "PROVIDER_MAX_ATTEMPTS")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def wallet_addresses(self) -> List[str]:
        """Configured wallets, lower-cased and de-duplicated in order"""
        wallets = []
        for raw in self.WALLET_ADDRESSES.split(","):
            wallet = raw.strip().lower()
            if wallet and wallet not in wallets:
                wallets.append(wallet)
        return wallets


# Global settings instance
settings = Settings()


# Wallet address validation regex
WALLET_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')


def verify_wallet_address(wallet_address: str) -> bool:
    """Verify if wallet address is valid Ethereum format"""
    if not wallet_address:
        return False
    return bool(WALLET_ADDRESS_PATTERN.match(wallet_address))


# MongoDB Collection Names
class Collections:
    SNAPSHOTS = "wallet_snapshots"


# Risk Severity Levels
class RiskSeverity:
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @staticmethod
    def from_score(severity: float) -> str:
        if severity >= 0.8:
            return RiskSeverity.CRITICAL
        if severity >= 0.6:
            return RiskSeverity.HIGH
        if severity >= 0.4:
            return RiskSeverity.MEDIUM
        if severity >= 0.2:
            return RiskSeverity.LOW
        return RiskSeverity.INFO


class SignalType(str, Enum):
    # Instant
    HEALTH_FACTOR_RISK = "HEALTH_FACTOR_RISK"
    DISTANCE_TO_LIQUIDATION = "DISTANCE_TO_LIQUIDATION"
    COLLATERAL_UTILIZATION = "COLLATERAL_UTILIZATION"
    LTV_PRESSURE = "LTV_PRESSURE"
    ZERO_BORROW_BUFFER = "ZERO_BORROW_BUFFER"
    NET_APY_DRAG = "NET_APY_DRAG"
    BORROW_COST_PRESSURE = "BORROW_COST_PRESSURE"
    SINGLE_ASSET_COLLATERAL = "SINGLE_ASSET_COLLATERAL"
    COLLATERAL_CONCENTRATION = "COLLATERAL_CONCENTRATION"
    HIGH_LEVERAGE = "HIGH_LEVERAGE"
    DEBT_RATIO = "DEBT_RATIO"
    COLLATERAL_PRICE_SENSITIVITY = "COLLATERAL_PRICE_SENSITIVITY"
    USD_DEBT_EXPOSURE = "USD_DEBT_EXPOSURE"
    NET_WORTH_COMPRESSION = "NET_WORTH_COMPRESSION"
    SUPPLY_YIELD_VS_BORROW_COST = "SUPPLY_YIELD_VS_BORROW_COST"
    LIQUIDATION_THRESHOLD_PROXIMITY = "LIQUIDATION_THRESHOLD_PROXIMITY"
    EMERGENCY_RISK_FLAG = "EMERGENCY_RISK_FLAG"

    # Trend
    HEALTH_FACTOR_TREND = "HEALTH_FACTOR_TREND"
    COLLATERAL_VALUE_DRIFT = "COLLATERAL_VALUE_DRIFT"
    DEBT_ACCRETION = "DEBT_ACCRETION"

    # Aggregate
    COMPOSITE_RISK = "COMPOSITE_RISK"


STABLECOIN_SYMBOLS = frozenset({"USDC", "USDT", "DAI", "FRAX", "LUSD"})

# Known Aave V3 pool addresses
AAVE_V3_MARKETS = {
    "ethereum": {"chain_id": 1, "address": "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2"},
    "arbitrum": {"chain_id": 42161, "address": "0x794a61358D6845594F94dc1DB02A252b5b4814aD"},
    "optimism": {"chain_id": 10, "address": "0x794a61358D6845594F94dc1DB02A252b5b4814aD"},
    "polygon": {"chain_id": 137, "address": "0x794a61358D6845594F94dc1DB02A252b5b4814aD"},
    "base": {"chain_id": 8453, "address": "0xA238Dd80C259a72e81d7e4664a9801593F98d1c5"},
}
