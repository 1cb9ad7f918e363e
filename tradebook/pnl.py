"""P&L calculator and currency normalizer for closed trades.

All arithmetic uses Decimal with ROUND_HALF_UP. Functions here are pure:
no I/O, no clock, no shared state.
"""
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .errors import ValidationError
from .models import (
    AssetType,
    Currency,
    Instrument,
    OptionContract,
    Stock,
    Trade,
    TradeDirection,
    TradeRequest,
)

OPTION_MULTIPLIER = Decimal("100")
DAYS_IN_YEAR = Decimal("365")
ONE_HUNDRED = Decimal("100")

CENTS = Decimal("0.01")
RATIO_PLACES = Decimal("0.0000000001")  # 10 fractional digits


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PnlInputs:
    """The trade fields realized P&L depends on."""
    asset_type: AssetType
    direction: TradeDirection
    quantity: int
    entry_price: Decimal
    exit_price: Decimal
    fees: Decimal = Decimal("0")
    margin_rate: Decimal = Decimal("0")
    opened_at: Optional[date] = None
    closed_at: Optional[date] = None

    @classmethod
    def from_trade(cls, trade: Trade) -> "PnlInputs":
        return cls(
            asset_type=trade.asset_type,
            direction=trade.direction,
            quantity=trade.quantity,
            entry_price=trade.entry_price,
            exit_price=trade.exit_price,
            fees=trade.fees,
            margin_rate=trade.margin_rate,
            opened_at=trade.opened_at,
            closed_at=trade.closed_at,
        )


def validate_request(request: TradeRequest) -> Instrument:
    """Check cross-field rules and return the instrument the request describes.

    Raises:
        ValidationError: Option details incomplete, or close date before open date
    """
    if request.asset_type == AssetType.OPTION:
        if request.option_type is None or request.strike_price is None or request.expiry_date is None:
            raise ValidationError("Options require type, strike, and expiry")
    if request.opened_at > request.closed_at:
        raise ValidationError("Close date cannot be before open date")

    if request.asset_type == AssetType.OPTION:
        return OptionContract(
            option_type=request.option_type,
            strike_price=request.strike_price,
            expiry_date=request.expiry_date,
        )
    return Stock()


def contract_multiplier(asset_type: AssetType) -> Decimal:
    """Units per contract: 100 for options, 1 otherwise."""
    return OPTION_MULTIPLIER if asset_type == AssetType.OPTION else Decimal("1")


def notional(asset_type: AssetType, entry_price: Optional[Decimal], quantity: Optional[int]) -> Optional[Decimal]:
    """Absolute entry exposure: |entry_price * quantity * multiplier|.

    Returns None when price or quantity is unknown.
    """
    if entry_price is None or quantity is None:
        return None
    return abs(entry_price * Decimal(quantity) * contract_multiplier(asset_type))


def trade_notional(trade: Trade) -> Optional[Decimal]:
    return notional(trade.asset_type, trade.entry_price, trade.quantity)


def calculate_margin_fee(inputs: PnlInputs) -> Decimal:
    """Time-proportional financing cost on the entry notional.

    fee = notional * (margin_rate / 100) * (days_held / 365), with both
    ratios carried at 10 fractional digits and the fee rounded to cents.
    """
    margin_rate = inputs.margin_rate
    if margin_rate is None or margin_rate <= 0:
        return Decimal("0")
    if inputs.opened_at is None or inputs.closed_at is None:
        return Decimal("0")
    days_held = (inputs.closed_at - inputs.opened_at).days
    if days_held <= 0:
        return Decimal("0")
    exposure = notional(inputs.asset_type, inputs.entry_price, inputs.quantity)
    if exposure is None or exposure <= 0:
        return Decimal("0")

    year_fraction = (Decimal(days_held) / DAYS_IN_YEAR).quantize(RATIO_PLACES, rounding=ROUND_HALF_UP)
    rate = (margin_rate / ONE_HUNDRED).quantize(RATIO_PLACES, rounding=ROUND_HALF_UP)
    return _money(exposure * rate * year_fraction)


def calculate_realized_pnl(inputs: PnlInputs) -> Decimal:
    """Realized P&L in the trade's native currency.

    Args:
        inputs: Asset type, direction, quantity, prices, fees, margin and dates

    Returns:
        gross - fees - margin fee, rounded half-up to 2 places

    Example:
        >>> calculate_realized_pnl(PnlInputs(
        ...     asset_type=AssetType.OPTION,
        ...     direction=TradeDirection.SHORT,
        ...     quantity=2,
        ...     entry_price=Decimal("3.10"),
        ...     exit_price=Decimal("1.10"),
        ...     fees=Decimal("4.00"),
        ... ))
        Decimal('396.00')
    """
    movement = inputs.exit_price - inputs.entry_price
    if inputs.direction == TradeDirection.SHORT:
        movement = -movement

    gross = movement * Decimal(inputs.quantity) * contract_multiplier(inputs.asset_type)
    fees = inputs.fees if inputs.fees is not None else Decimal("0")
    margin_fee = calculate_margin_fee(inputs)
    return _money(gross - fees - margin_fee)


# --- Currency normalization ---

def to_reporting(
    amount: Optional[Decimal],
    currency: Currency,
    rate: Decimal,
    reporting_currency: Currency = Currency.USD,
) -> Optional[Decimal]:
    """Convert a native amount into the reporting currency.

    Amounts already in the reporting currency pass through unchanged; others
    are multiplied by the rate and rounded half-up to cents.
    """
    if amount is None:
        return None
    if currency == reporting_currency:
        return amount
    return _money(amount * rate)


def reporting_pnl(trade: Trade, rate: Decimal, reporting_currency: Currency = Currency.USD) -> Decimal:
    return to_reporting(trade.realized_pnl, trade.currency, rate, reporting_currency)


def reporting_notional(
    trade: Trade, rate: Decimal, reporting_currency: Currency = Currency.USD
) -> Optional[Decimal]:
    return to_reporting(trade_notional(trade), trade.currency, rate, reporting_currency)


def pnl_percent(total_pnl: Optional[Decimal], total_notional: Optional[Decimal]) -> Optional[Decimal]:
    """Return (total_pnl * 100) / total_notional, or None if no percent is available."""
    if total_pnl is None or total_notional is None:
        return None
    if total_notional <= 0:
        return None
    return ((total_pnl * ONE_HUNDRED) / total_notional).quantize(CENTS, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Optional[Decimal]]) -> Decimal:
    """Sum amounts (skipping unknowns) and round half-up to cents."""
    return _money(sum((v for v in values if v is not None), Decimal("0")))
