from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any, Tuple, Union
from datetime import datetime, timezone

from .config import SignalType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


MetricValue = Union[bool, int, float, str]


# Position Models
class SupplyPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str = "UNKNOWN"
    name: str = ""
    token_address: str = ""
    decimals: int = 18
    balance: float = 0.0
    balance_usd: float = 0.0
    price_usd: float = 0.0
    supply_apy: float = 0.0
    is_collateral: bool = False
    can_be_collateral: bool = False
    market_name: str = ""
    chain_name: str = ""


class BorrowPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str = "UNKNOWN"
    name: str = ""
    token_address: str = ""
    decimals: int = 18
    debt: float = 0.0
    debt_usd: float = 0.0
    price_usd: float = 0.0
    borrow_apy: float = 0.0
    market_name: str = ""
    chain_name: str = ""


class WalletSnapshot(BaseModel):
    """Point-in-time view of one account's lending position.

    A health factor of 0 means the protocol reported no value (usually no debt).
    """
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    wallet_address: str

    # Core metrics
    health_factor: float = 0.0
    total_collateral_usd: float = 0.0
    total_debt_usd: float = 0.0
    net_worth_usd: float = 0.0

    # Risk parameters
    ltv: float = 0.0
    liquidation_threshold: float = 0.0
    current_ltv: float = 0.0
    available_borrows_usd: float = 0.0
    net_apy: float = 0.0

    supply_positions: Tuple[SupplyPosition, ...] = ()
    borrow_positions: Tuple[BorrowPosition, ...] = ()

    # Raw market state kept for auditing only
    raw_state: Optional[Dict[str, Any]] = None

    @field_validator("wallet_address")
    @classmethod
    def lowercase_wallet(cls, v):
        return v.lower()

    @property
    def collateral_positions(self) -> List[SupplyPosition]:
        return [p for p in self.supply_positions if p.is_collateral]


# Signal Models
class Signal(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: SignalType
    severity: float
    metrics: Dict[str, MetricValue] = {}
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("severity")
    @classmethod
    def clamp_severity(cls, v):
        if v != v:  # NaN
            return 0.0
        return min(1.0, max(0.0, v))


class CompositeRiskScore(BaseModel):
    score: float = Field(..., ge=0, le=1)
    contributors: Dict[str, float] = {}
    timestamp: datetime = Field(default_factory=utcnow)


class DeduplicationRecord(BaseModel):
    last_severity: float
    last_emit_time: datetime


class PollerStats(BaseModel):
    wallet_address: str
    is_running: bool
    state: str
    poll_count: int = 0
    error_count: int = 0
    persistence_error_count: int = 0
    evaluation_error_count: int = 0
    callback_error_count: int = 0
    buffer_size: int = 0
    last_poll_at: Optional[datetime] = None
    last_error: Optional[str] = None


# API Response Models
class SignalsResponse(BaseModel):
    wallet_address: str
    signals: List[Signal]
    total_count: int


class CompositeResponse(BaseModel):
    wallet_address: str
    composite: Optional[CompositeRiskScore] = None
    level: Optional[str] = None


class SystemStatus(BaseModel):
    status: str  # operational, degraded, stopped
    version: str
    uptime_seconds: int
    monitored_wallets: int
    poll_interval_ms: int
    pollers: List[PollerStats]
    timestamp: datetime = Field(default_factory=utcnow)
