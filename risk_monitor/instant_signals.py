"""
Instant signals: evaluated from a single snapshot, no history required.

Every evaluator returns ``None`` when its activation condition does not hold
or when a ratio it depends on has a zero denominator. Severities are clamped
to [0, 1] by the Signal model.
"""
from typing import Iterable, Optional, Tuple

from .config import STABLECOIN_SYMBOLS, SignalType
from .models import Signal, WalletSnapshot
from .signal_registry import signal_registry

HEALTH_FACTOR_THRESHOLD = 1.10
LIQUIDATION_DISTANCE_THRESHOLD = 0.08
UTILIZATION_THRESHOLD = 0.70
LTV_PRESSURE_THRESHOLD = 0.85
BORROW_APY_THRESHOLD = 3.0
CONCENTRATION_THRESHOLD = 0.40
LEVERAGE_THRESHOLD = 3.0
DEBT_RATIO_THRESHOLD = 0.70
PRICE_SENSITIVITY_THRESHOLD = 0.15
NET_WORTH_COMPRESSION_THRESHOLD = 0.30
LIQUIDATION_GAP_THRESHOLD = 0.05


def _signal(signal_type: SignalType, severity: float, snapshot: WalletSnapshot, **metrics) -> Signal:
    return Signal(
        type=signal_type,
        severity=severity,
        metrics=metrics,
        timestamp=snapshot.timestamp,
    )


def _distance_to_liquidation(health_factor: float) -> float:
    return (health_factor - 1) / health_factor


def _weighted_apy(pairs: Iterable[Tuple[float, float]]) -> float:
    """USD-weighted average APY from (usd, apy) pairs; 0 when nothing is held"""
    pairs = list(pairs)
    total = sum(usd for usd, _ in pairs)
    if total == 0:
        return 0.0
    return sum(usd * apy for usd, apy in pairs) / total


@signal_registry.instant(SignalType.HEALTH_FACTOR_RISK)
def health_factor_risk(snapshot: WalletSnapshot) -> Optional[Signal]:
    hf = snapshot.health_factor
    # 0 means the protocol reported no health factor
    if hf <= 0 or hf >= HEALTH_FACTOR_THRESHOLD:
        return None

    if hf < 1.0:
        status = "LIQUIDATABLE"
    elif hf < 1.05:
        status = "CRITICAL"
    else:
        status = "HIGH"

    return _signal(
        SignalType.HEALTH_FACTOR_RISK,
        (HEALTH_FACTOR_THRESHOLD - hf) / 0.2,
        snapshot,
        health_factor=hf,
        status=status,
    )


@signal_registry.instant(SignalType.DISTANCE_TO_LIQUIDATION)
def distance_to_liquidation(snapshot: WalletSnapshot) -> Optional[Signal]:
    hf = snapshot.health_factor
    if hf <= 0:
        return None

    distance = _distance_to_liquidation(hf)
    if distance >= LIQUIDATION_DISTANCE_THRESHOLD:
        return None

    return _signal(
        SignalType.DISTANCE_TO_LIQUIDATION,
        (LIQUIDATION_DISTANCE_THRESHOLD - distance) / LIQUIDATION_DISTANCE_THRESHOLD,
        snapshot,
        distance_pct=distance * 100,
        total_collateral_usd=snapshot.total_collateral_usd,
        total_debt_usd=snapshot.total_debt_usd,
    )


@signal_registry.instant(SignalType.COLLATERAL_UTILIZATION)
def collateral_utilization(snapshot: WalletSnapshot) -> Optional[Signal]:
    if snapshot.total_collateral_usd == 0:
        return None

    utilization = snapshot.total_debt_usd / snapshot.total_collateral_usd
    if utilization < UTILIZATION_THRESHOLD:
        return None

    return _signal(
        SignalType.COLLATERAL_UTILIZATION,
        (utilization - UTILIZATION_THRESHOLD) / 0.3,
        snapshot,
        utilization_pct=utilization * 100,
    )


@signal_registry.instant(SignalType.LTV_PRESSURE)
def ltv_pressure(snapshot: WalletSnapshot) -> Optional[Signal]:
    if snapshot.liquidation_threshold == 0:
        return None

    pressure = snapshot.current_ltv / snapshot.liquidation_threshold
    if pressure < LTV_PRESSURE_THRESHOLD:
        return None

    return _signal(
        SignalType.LTV_PRESSURE,
        (pressure - LTV_PRESSURE_THRESHOLD) / 0.15,
        snapshot,
        ltv_pressure=pressure,
        current_ltv=snapshot.current_ltv,
        liquidation_threshold=snapshot.liquidation_threshold,
    )


@signal_registry.instant(SignalType.ZERO_BORROW_BUFFER)
def zero_borrow_buffer(snapshot: WalletSnapshot) -> Optional[Signal]:
    if snapshot.available_borrows_usd != 0 or snapshot.total_debt_usd <= 0:
        return None

    return _signal(
        SignalType.ZERO_BORROW_BUFFER,
        1.0,
        snapshot,
        available_borrows_usd=0.0,
        has_debt=True,
    )


@signal_registry.instant(SignalType.NET_APY_DRAG)
def net_apy_drag(snapshot: WalletSnapshot) -> Optional[Signal]:
    if snapshot.net_apy >= 0:
        return None

    return _signal(
        SignalType.NET_APY_DRAG,
        abs(snapshot.net_apy) / 10,
        snapshot,
        net_apy=snapshot.net_apy,
    )


@signal_registry.instant(SignalType.BORROW_COST_PRESSURE)
def borrow_cost_pressure(snapshot: WalletSnapshot) -> Optional[Signal]:
    expensive = [b for b in snapshot.borrow_positions if b.borrow_apy > BORROW_APY_THRESHOLD]
    if not expensive:
        return None

    max_apy = max(b.borrow_apy for b in expensive)
    return _signal(
        SignalType.BORROW_COST_PRESSURE,
        (max_apy - BORROW_APY_THRESHOLD) / 10,
        snapshot,
        max_borrow_apy=max_apy,
        high_cost_assets=", ".join(b.symbol for b in expensive),
    )


@signal_registry.instant(SignalType.SINGLE_ASSET_COLLATERAL)
def single_asset_collateral(snapshot: WalletSnapshot) -> Optional[Signal]:
    collateral = snapshot.collateral_positions
    if len(collateral) != 1:
        return None

    return _signal(
        SignalType.SINGLE_ASSET_COLLATERAL,
        0.8,
        snapshot,
        collateral_asset_count=1,
        asset=collateral[0].symbol,
    )


@signal_registry.instant(SignalType.COLLATERAL_CONCENTRATION)
def collateral_concentration(snapshot: WalletSnapshot) -> Optional[Signal]:
    collateral = snapshot.collateral_positions
    # Share of the protocol-reported collateral, not of the listed positions
    if not collateral or snapshot.total_collateral_usd == 0:
        return None

    largest = max(collateral, key=lambda p: p.balance_usd)
    share = largest.balance_usd / snapshot.total_collateral_usd
    if share < CONCENTRATION_THRESHOLD:
        return None

    return _signal(
        SignalType.COLLATERAL_CONCENTRATION,
        (share - CONCENTRATION_THRESHOLD) / 0.6,
        snapshot,
        largest_share_pct=share * 100,
        asset=largest.symbol,
    )


@signal_registry.instant(SignalType.HIGH_LEVERAGE)
def high_leverage(snapshot: WalletSnapshot) -> Optional[Signal]:
    if snapshot.net_worth_usd <= 0:
        return None

    leverage = snapshot.total_collateral_usd / snapshot.net_worth_usd
    if leverage < LEVERAGE_THRESHOLD:
        return None

    return _signal(
        SignalType.HIGH_LEVERAGE,
        (leverage - LEVERAGE_THRESHOLD) / 7,
        snapshot,
        leverage=leverage,
    )


@signal_registry.instant(SignalType.DEBT_RATIO)
def debt_ratio(snapshot: WalletSnapshot) -> Optional[Signal]:
    if snapshot.total_collateral_usd == 0:
        return None

    ratio = snapshot.total_debt_usd / snapshot.total_collateral_usd
    if ratio < DEBT_RATIO_THRESHOLD:
        return None

    return _signal(
        SignalType.DEBT_RATIO,
        (ratio - DEBT_RATIO_THRESHOLD) / 0.3,
        snapshot,
        debt_ratio_pct=ratio * 100,
    )


@signal_registry.instant(SignalType.COLLATERAL_PRICE_SENSITIVITY)
def collateral_price_sensitivity(snapshot: WalletSnapshot) -> Optional[Signal]:
    hf = snapshot.health_factor
    if hf <= 0:
        return None

    distance = _distance_to_liquidation(hf)
    if distance >= PRICE_SENSITIVITY_THRESHOLD:
        return None

    return _signal(
        SignalType.COLLATERAL_PRICE_SENSITIVITY,
        (PRICE_SENSITIVITY_THRESHOLD - distance) / PRICE_SENSITIVITY_THRESHOLD,
        snapshot,
        price_drop_to_liquidation_pct=distance * 100,
    )


@signal_registry.instant(SignalType.USD_DEBT_EXPOSURE)
def usd_debt_exposure(snapshot: WalletSnapshot) -> Optional[Signal]:
    stable = [b for b in snapshot.borrow_positions if b.symbol.upper() in STABLECOIN_SYMBOLS]
    if not stable:
        return None

    return _signal(
        SignalType.USD_DEBT_EXPOSURE,
        0.3,
        snapshot,
        borrow_assets=", ".join(b.symbol for b in stable),
        stable_debt_usd=sum(b.debt_usd for b in stable),
    )


@signal_registry.instant(SignalType.NET_WORTH_COMPRESSION)
def net_worth_compression(snapshot: WalletSnapshot) -> Optional[Signal]:
    if snapshot.total_collateral_usd == 0:
        return None

    compression = snapshot.net_worth_usd / snapshot.total_collateral_usd
    if compression >= NET_WORTH_COMPRESSION_THRESHOLD:
        return None

    return _signal(
        SignalType.NET_WORTH_COMPRESSION,
        (NET_WORTH_COMPRESSION_THRESHOLD - compression) / 0.3,
        snapshot,
        net_worth_to_collateral_pct=compression * 100,
    )


@signal_registry.instant(SignalType.SUPPLY_YIELD_VS_BORROW_COST)
def supply_yield_vs_borrow_cost(snapshot: WalletSnapshot) -> Optional[Signal]:
    if not snapshot.supply_positions or not snapshot.borrow_positions:
        return None

    avg_supply_apy = _weighted_apy((p.balance_usd, p.supply_apy) for p in snapshot.supply_positions)
    avg_borrow_apy = _weighted_apy((b.debt_usd, b.borrow_apy) for b in snapshot.borrow_positions)
    carry = avg_supply_apy - avg_borrow_apy
    if carry >= 0:
        return None

    return _signal(
        SignalType.SUPPLY_YIELD_VS_BORROW_COST,
        abs(carry) / 10,
        snapshot,
        carry=carry,
        avg_supply_apy=avg_supply_apy,
        avg_borrow_apy=avg_borrow_apy,
    )


@signal_registry.instant(SignalType.LIQUIDATION_THRESHOLD_PROXIMITY)
def liquidation_threshold_proximity(snapshot: WalletSnapshot) -> Optional[Signal]:
    # No threshold reported means there is nothing to be close to
    if snapshot.liquidation_threshold <= 0:
        return None

    gap = snapshot.liquidation_threshold - snapshot.current_ltv
    if gap >= LIQUIDATION_GAP_THRESHOLD:
        return None

    return _signal(
        SignalType.LIQUIDATION_THRESHOLD_PROXIMITY,
        (LIQUIDATION_GAP_THRESHOLD - gap) / LIQUIDATION_GAP_THRESHOLD,
        snapshot,
        liquidation_gap_pct=gap * 100,
    )


@signal_registry.instant(SignalType.EMERGENCY_RISK_FLAG)
def emergency_risk_flag(snapshot: WalletSnapshot) -> Optional[Signal]:
    hf = snapshot.health_factor
    if snapshot.total_collateral_usd == 0:
        return None

    ratio = snapshot.total_debt_usd / snapshot.total_collateral_usd
    if not (0 < hf < HEALTH_FACTOR_THRESHOLD
            and snapshot.available_borrows_usd == 0
            and ratio > DEBT_RATIO_THRESHOLD):
        return None

    return _signal(
        SignalType.EMERGENCY_RISK_FLAG,
        1.0,
        snapshot,
        health_factor=hf,
        available_borrows_usd=snapshot.available_borrows_usd,
        debt_ratio_pct=ratio * 100,
    )
