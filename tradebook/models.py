"""
Domain model for closed trades and P&L reports.

A Trade is one closed position. Its instrument is a tagged variant:
``Stock`` or ``OptionContract``. Option details travel together inside the
variant, so a stock can never carry a strike and an option can never be
missing its expiry.

Examples:
    >>> from datetime import date
    >>> from decimal import Decimal
    >>> req = TradeRequest(
    ...     symbol=" spy ",
    ...     asset_type=AssetType.OPTION,
    ...     direction=TradeDirection.SHORT,
    ...     quantity=2,
    ...     entry_price=Decimal("3.10"),
    ...     exit_price=Decimal("1.10"),
    ...     fees=Decimal("4.00"),
    ...     option_type=OptionType.PUT,
    ...     strike_price=Decimal("500"),
    ...     expiry_date=date(2024, 6, 21),
    ...     opened_at=date(2024, 6, 3),
    ...     closed_at=date(2024, 6, 3),
    ... )
    >>> req.symbol
    'SPY'
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Union

import pydantic
from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError


class AssetType(str, Enum):
    STOCK = "STOCK"
    OPTION = "OPTION"


class TradeDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class OptionType(str, Enum):
    CALL = "CALL"
    PUT = "PUT"


class Currency(str, Enum):
    """Supported currencies: one secondary currency and one reporting currency."""

    USD = "USD"
    CAD = "CAD"


@dataclass(frozen=True)
class Stock:
    """Plain equity instrument."""

    asset_type = AssetType.STOCK


@dataclass(frozen=True)
class OptionContract:
    """Option instrument; all contract details are required."""

    option_type: OptionType
    strike_price: Decimal
    expiry_date: date

    asset_type = AssetType.OPTION


Instrument = Union[Stock, OptionContract]


@dataclass
class Trade:
    """A closed position owned by one user.

    Attributes:
        id: Opaque unique id
        user_id: Owner
        symbol: Normalized (trimmed, uppercase) ticker
        instrument: Stock or OptionContract
        currency: Native currency of prices, fees and realized P&L
        direction: LONG or SHORT
        quantity: Shares or contracts (positive)
        entry_price: Entry price per unit
        exit_price: Exit price per unit
        fees: Total fees paid
        margin_rate: Annualized margin rate in percent
        opened_at: Date the position was opened
        closed_at: Date the position was closed
        realized_pnl: Derived at write time (scale 2), never user supplied
        account_id: Optional owning account
        notes: Free text
        created_at: Creation timestamp (UTC)
        updated_at: Last mutation timestamp (UTC)
    """

    id: str
    user_id: str
    symbol: str
    instrument: Instrument
    currency: Currency
    direction: TradeDirection
    quantity: int
    entry_price: Decimal
    exit_price: Decimal
    opened_at: date
    closed_at: date
    fees: Decimal = Decimal("0")
    margin_rate: Decimal = Decimal("0")
    realized_pnl: Decimal = Decimal("0.00")
    account_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def asset_type(self) -> AssetType:
        return self.instrument.asset_type

    @property
    def option_type(self) -> Optional[OptionType]:
        return getattr(self.instrument, "option_type", None)

    @property
    def strike_price(self) -> Optional[Decimal]:
        return getattr(self.instrument, "strike_price", None)

    @property
    def expiry_date(self) -> Optional[date]:
        return getattr(self.instrument, "expiry_date", None)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-friendly dict (decimals and dates as strings)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "symbol": self.symbol,
            "asset_type": self.asset_type.value,
            "currency": self.currency.value,
            "direction": self.direction.value,
            "quantity": self.quantity,
            "entry_price": str(self.entry_price),
            "exit_price": str(self.exit_price),
            "fees": str(self.fees),
            "margin_rate": str(self.margin_rate),
            "option_type": self.option_type.value if self.option_type else None,
            "strike_price": str(self.strike_price) if self.strike_price is not None else None,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "realized_pnl": str(self.realized_pnl),
            "account_id": self.account_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "Trade":
        """Inverse of to_dict; also accepts sqlite3.Row objects."""
        if AssetType(d["asset_type"]) == AssetType.OPTION:
            instrument: Instrument = OptionContract(
                option_type=OptionType(d["option_type"]),
                strike_price=Decimal(d["strike_price"]),
                expiry_date=date.fromisoformat(d["expiry_date"]),
            )
        else:
            instrument = Stock()
        return Trade(
            id=d["id"],
            user_id=d["user_id"],
            symbol=d["symbol"],
            instrument=instrument,
            currency=Currency(d["currency"]),
            direction=TradeDirection(d["direction"]),
            quantity=int(d["quantity"]),
            entry_price=Decimal(d["entry_price"]),
            exit_price=Decimal(d["exit_price"]),
            fees=Decimal(d["fees"]),
            margin_rate=Decimal(d["margin_rate"]),
            opened_at=date.fromisoformat(d["opened_at"]),
            closed_at=date.fromisoformat(d["closed_at"]),
            realized_pnl=Decimal(d["realized_pnl"]),
            account_id=d["account_id"],
            notes=d["notes"],
            created_at=datetime.fromisoformat(d["created_at"]) if d["created_at"] else None,
            updated_at=datetime.fromisoformat(d["updated_at"]) if d["updated_at"] else None,
        )


class TradeRequest(BaseModel):
    """Mutable trade fields as submitted by a caller.

    Field-level constraints are enforced here. Cross-field rules (option
    details, date order) are checked by ``pnl.validate_request``.
    """

    symbol: str = Field(min_length=1, max_length=12)
    asset_type: AssetType
    currency: Currency = Currency.USD
    direction: TradeDirection
    quantity: int = Field(gt=0)
    entry_price: Decimal = Field(ge=0)
    exit_price: Decimal = Field(ge=0)
    fees: Optional[Decimal] = Field(default=None, ge=0)
    margin_rate: Optional[Decimal] = Field(default=None, ge=0)
    option_type: Optional[OptionType] = None
    strike_price: Optional[Decimal] = Field(default=None, ge=0)
    expiry_date: Optional[date] = None
    opened_at: date
    closed_at: date
    account_id: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be blank")
        return v

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "TradeRequest":
        """Build a request from a raw mapping, reporting problems as ValidationError."""
        try:
            return cls.model_validate(dict(data))
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid trade request: {problems}") from e


class YearMonth(NamedTuple):
    """Calendar month, rendered as YYYY-MM."""

    year: int
    month: int

    @classmethod
    def parse(cls, text: str) -> "YearMonth":
        try:
            year, month = (int(part) for part in text.strip().split("-"))
        except ValueError:
            raise ValueError(f"Invalid year-month {text!r}, expected YYYY-MM") from None
        if not 1 <= month <= 12:
            raise ValueError(f"Invalid year-month {text!r}, month out of range")
        return cls(year, month)

    @classmethod
    def of(cls, d: date) -> "YearMonth":
        return cls(d.year, d.month)

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def next_month_start(self) -> date:
        if self.month == 12:
            return date(self.year + 1, 1, 1)
        return date(self.year, self.month + 1, 1)

    def last_day(self) -> date:
        return date.fromordinal(self.next_month_start().toordinal() - 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class PeriodAggregate(NamedTuple):
    """One grouped row from an aggregate query: a day or a month."""

    period: str
    pnl: Decimal
    trades: int


@dataclass(frozen=True)
class PnlBucket:
    """Summed P&L for one day (YYYY-MM-DD) or month (YYYY-MM)."""

    period: str
    pnl: Decimal
    trades: int
    pnl_percent: Optional[Decimal] = None


@dataclass(frozen=True)
class PnlSummary:
    total_pnl: Decimal
    trade_count: int
    pnl_percent: Optional[Decimal]
    daily: List[PnlBucket]
    monthly: List[PnlBucket]
    rate: Decimal
    rate_as_of: date


@dataclass(frozen=True)
class AggregateStats:
    """Dashboard statistics; best_day/best_month are None when no trades exist."""

    total_pnl: Decimal
    trade_count: int
    pnl_percent: Optional[Decimal]
    best_day: Optional[PnlBucket]
    best_month: Optional[PnlBucket]
    rate: Decimal
    rate_as_of: date
    scoped_year: Optional[int] = None
    scoped_month: Optional[str] = None
    scoped_day: Optional[str] = None


@dataclass
class Page:
    """One page of a listing plus navigation metadata."""

    items: List[Any]
    page: int
    size: int
    total_elements: int
    total_pages: int = field(init=False)
    has_next: bool = field(init=False)
    has_previous: bool = field(init=False)

    def __post_init__(self):
        self.total_pages = -(-self.total_elements // self.size) if self.size > 0 else 0
        self.has_next = self.page + 1 < self.total_pages
        self.has_previous = self.page > 0
