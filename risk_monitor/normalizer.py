"""
Conversion of provider payloads into WalletSnapshot models.

This is the only place provider response shapes are interpreted. Missing or
malformed fields fall back to defaults; the functions here never raise on
bad data.
"""
import math
from datetime import datetime, timezone
from typing import Any, List, Optional

from .models import BorrowPosition, SupplyPosition, WalletSnapshot


def safe_number(value: Any, default: float = 0.0) -> float:
    """Extract a finite float from numbers, numeric strings or wrapped values"""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return default
    elif isinstance(value, dict):
        # Provider amounts arrive as {"value": ...} or {"formatted": "..."}
        if "value" in value:
            return safe_number(value["value"], default)
        if "formatted" in value:
            return safe_number(value["formatted"], default)
        return default
    else:
        return default

    return number if math.isfinite(number) else default


def safe_string(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _get(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _normalize_supply(supply: Any) -> SupplyPosition:
    return SupplyPosition(
        symbol=safe_string(_get(supply, "currency", "symbol"), "UNKNOWN"),
        name=safe_string(_get(supply, "currency", "name")),
        token_address=safe_string(_get(supply, "currency", "address")),
        decimals=int(safe_number(_get(supply, "currency", "decimals"), 18)),
        balance=safe_number(_get(supply, "balance", "amount")),
        balance_usd=safe_number(_get(supply, "balance", "usd")),
        price_usd=safe_number(_get(supply, "balance", "usdPerToken")),
        supply_apy=safe_number(_get(supply, "apy")),
        is_collateral=_get(supply, "isCollateral") is True,
        can_be_collateral=_get(supply, "canBeCollateral") is True,
        market_name=safe_string(_get(supply, "market", "name")),
        chain_name=safe_string(_get(supply, "market", "chain", "name")),
    )


def _normalize_borrow(borrow: Any) -> BorrowPosition:
    return BorrowPosition(
        symbol=safe_string(_get(borrow, "currency", "symbol"), "UNKNOWN"),
        name=safe_string(_get(borrow, "currency", "name")),
        token_address=safe_string(_get(borrow, "currency", "address")),
        decimals=int(safe_number(_get(borrow, "currency", "decimals"), 18)),
        debt=safe_number(_get(borrow, "debt", "amount")),
        debt_usd=safe_number(_get(borrow, "debt", "usd")),
        price_usd=safe_number(_get(borrow, "debt", "usdPerToken")),
        borrow_apy=safe_number(_get(borrow, "apy")),
        market_name=safe_string(_get(borrow, "market", "name")),
        chain_name=safe_string(_get(borrow, "market", "chain", "name")),
    )


def normalize_position(
    wallet_address: str,
    payload: Any,
    timestamp: Optional[datetime] = None
) -> WalletSnapshot:
    """Build a snapshot from a ``{"supplies", "borrows", "state"}`` payload"""
    payload = payload if isinstance(payload, dict) else {}
    state = payload.get("state")
    if not isinstance(state, dict):
        state = None

    return WalletSnapshot(
        timestamp=timestamp or datetime.now(timezone.utc),
        wallet_address=wallet_address.lower(),
        health_factor=safe_number(_get(state, "healthFactor")),
        total_collateral_usd=safe_number(_get(state, "totalCollateralBase")),
        total_debt_usd=safe_number(_get(state, "totalDebtBase")),
        net_worth_usd=safe_number(_get(state, "netWorth")),
        ltv=safe_number(_get(state, "ltv")),
        liquidation_threshold=safe_number(_get(state, "currentLiquidationThreshold")),
        current_ltv=safe_number(_get(state, "currentLtv")),
        available_borrows_usd=safe_number(_get(state, "availableBorrowsBase")),
        net_apy=safe_number(_get(state, "netAPY")),
        supply_positions=tuple(_normalize_supply(s) for s in _as_list(payload.get("supplies"))),
        borrow_positions=tuple(_normalize_borrow(b) for b in _as_list(payload.get("borrows"))),
        raw_state=state,
    )
