"""Ledger entry model: entries, configuration and derived statistics.

The shapes here carry no allocation behaviour.  They are shared by the
derivation engine, the allocation helpers, the SQLite store and the report
builders, and they are the only place where raw input (numbers, dates, enum
names coming from forms or historical records) is coerced and validated.

Historical records written by earlier versions of the application used
Portuguese enum names (``DIZIMO``, ``ALUGUER`` ...).  They are accepted when
reading stored data so old ledgers keep loading.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import pandas as pd

from . import config
from .errors import ValidationError

ZERO = Decimal('0')
HUNDRED = Decimal('100')


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Direction(str, Enum):
    INCOME = 'INCOME'
    EXPENSE = 'EXPENSE'


class Category(str, Enum):
    TITHE = 'TITHE'
    OFFERING = 'OFFERING'
    CHILDREN_MINISTRY = 'CHILDREN_MINISTRY'
    UTILITY_BILL = 'UTILITY_BILL'
    MAINTENANCE = 'MAINTENANCE'
    SOCIAL_AID = 'SOCIAL_AID'
    RENT = 'RENT'
    EMERGENCY_WITHDRAWAL = 'EMERGENCY_WITHDRAWAL'
    RENT_ALLOCATION = 'RENT_ALLOCATION'
    OTHER = 'OTHER'


class FundType(str, Enum):
    RENT_RESERVE = 'RENT_RESERVE'
    EMERGENCY = 'EMERGENCY'
    UTILITIES = 'UTILITIES'
    GENERAL = 'GENERAL'
    CHILDREN = 'CHILDREN'


INCOME_CATEGORIES = frozenset({
    Category.TITHE,
    Category.OFFERING,
    Category.CHILDREN_MINISTRY,
    Category.OTHER,
})
EXPENSE_CATEGORIES = frozenset({
    Category.CHILDREN_MINISTRY,
    Category.UTILITY_BILL,
    Category.MAINTENANCE,
    Category.SOCIAL_AID,
    Category.RENT,
    Category.EMERGENCY_WITHDRAWAL,
    Category.RENT_ALLOCATION,
    Category.OTHER,
})

# Income categories that feed the persisted emergency running balance.
EMERGENCY_FEEDING_CATEGORIES = frozenset({Category.TITHE, Category.OFFERING})

# Funds that share the remainder of an income after the rent priority fill.
PROPORTIONAL_FUNDS: Tuple[FundType, ...] = (
    FundType.EMERGENCY,
    FundType.UTILITIES,
    FundType.GENERAL,
)

LEGACY_CATEGORY_NAMES = {
    'DIZIMO': Category.TITHE,
    'OFERTA': Category.OFFERING,
    'INFANTIL': Category.CHILDREN_MINISTRY,
    'CONTA': Category.UTILITY_BILL,
    'MANUTENCAO': Category.MAINTENANCE,
    'SOCIAL': Category.SOCIAL_AID,
    'RENDA': Category.RENT,
    'EMERGENCIA': Category.EMERGENCY_WITHDRAWAL,
    'ALOCACAO_RENDA': Category.RENT_ALLOCATION,
    'OUTROS': Category.OTHER,
}
LEGACY_FUND_NAMES = {
    'ALUGUER': FundType.RENT_RESERVE,
    'EMERGENCIA': FundType.EMERGENCY,
    'UTILIDADES': FundType.UTILITIES,
    'GERAL': FundType.GENERAL,
    'INFANTIL': FundType.CHILDREN,
}
LEGACY_DIRECTION_NAMES = {
    'ENTRADA': Direction.INCOME,
    'SAIDA': Direction.EXPENSE,
    'SAÍDA': Direction.EXPENSE,
}


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def parse_amount(value: Any, field_name: str = 'amount') -> Decimal:
    """Convert textual or numeric amounts into a ``Decimal``.

    Floats go through ``str`` so ``0.1`` stays ``Decimal('0.1')``.  Currency
    markers and thousands separators are stripped, and accounting negatives
    such as ``(12.00)`` parse as negative numbers.  Non-numeric and
    non-finite input raises ``ValidationError``; the sign is left for the
    caller to judge.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number, got {value!r}.", field_name)
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValidationError(f"{field_name} must be finite, got {value!r}.", field_name)
        number = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.strip()
        if cleaned.startswith("(") and cleaned.endswith(")"):
            cleaned = f"-{cleaned[1:-1]}"
        cleaned = cleaned.replace(config.CURRENCY_SYMBOL, "").replace("$", "").replace(",", "").strip()
        try:
            number = Decimal(cleaned)
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a number, got {value!r}.", field_name) from None
    else:
        raise ValidationError(f"{field_name} must be a number, got {value!r}.", field_name)
    if not number.is_finite():
        raise ValidationError(f"{field_name} must be finite, got {value!r}.", field_name)
    return number


def parse_date(value: Any) -> datetime:
    """Return a timezone-aware UTC ``datetime`` for ``value``.

    ``None`` means "now".  Naive values are taken to be UTC.
    """
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    try:
        ts = pd.to_datetime(value, utc=True)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid date: {value!r}.", 'date') from exc
    if pd.isna(ts):
        raise ValidationError(f"Invalid date: {value!r}.", 'date')
    return ts.to_pydatetime()


def coerce_direction(value: Any) -> Direction:
    if isinstance(value, Direction):
        return value
    key = str(value).strip().upper()
    if key in LEGACY_DIRECTION_NAMES:
        return LEGACY_DIRECTION_NAMES[key]
    try:
        return Direction(key)
    except ValueError:
        raise ValidationError(f"Unknown direction {value!r}.", 'direction') from None


def coerce_category(value: Any) -> Category:
    if isinstance(value, Category):
        return value
    key = str(value).strip().upper()
    if key in LEGACY_CATEGORY_NAMES:
        return LEGACY_CATEGORY_NAMES[key]
    try:
        return Category(key)
    except ValueError:
        raise ValidationError(f"Unknown category {value!r}.", 'category') from None


def coerce_fund(value: Any) -> Optional[FundType]:
    """Map a fund key to ``FundType``; unknown or retired keys give ``None``."""
    if isinstance(value, FundType):
        return value
    key = str(value).strip().upper()
    if key in LEGACY_FUND_NAMES:
        return LEGACY_FUND_NAMES[key]
    try:
        return FundType(key)
    except ValueError:
        return None


def normalize_allocations(raw: Optional[Mapping[Any, Any]]) -> Dict[FundType, Decimal]:
    """Clean a stored fund → delta mapping, dropping unknown fund keys."""
    allocations: Dict[FundType, Decimal] = {}
    if not raw:
        return allocations
    for key, value in raw.items():
        fund = coerce_fund(key)
        if fund is None or value is None:
            continue
        try:
            delta = parse_amount(value, 'fund allocation')
        except ValidationError:
            continue
        allocations[fund] = allocations.get(fund, ZERO) + delta
    return allocations


def new_entry_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Cash count
# ---------------------------------------------------------------------------

NOTE_DENOMINATIONS = ('500', '200', '100', '50', '20', '10', '5')
COIN_DENOMINATIONS = ('2', '1', '0.50', '0.20', '0.10', '0.05', '0.02', '0.01')


def _clean_tally(raw: Optional[Mapping[Any, Any]], allowed: Tuple[str, ...], kind: str) -> Dict[str, int]:
    by_value = {Decimal(d): d for d in allowed}
    tally = {d: 0 for d in allowed}
    for key, quantity in (raw or {}).items():
        try:
            denomination = by_value[Decimal(str(key))]
        except (InvalidOperation, KeyError):
            raise ValidationError(f"Unknown {kind} denomination {key!r}.", 'cash_count') from None
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError(
                f"Quantity for {kind} {key!r} must be a non-negative integer.", 'cash_count'
            )
        tally[denomination] = quantity
    return tally


@dataclass(frozen=True)
class CashCount:
    """Banknote and coin tally taken when counting an offering."""

    notes: Dict[str, int] = field(default_factory=dict)
    coins: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'notes', _clean_tally(self.notes, NOTE_DENOMINATIONS, 'note'))
        object.__setattr__(self, 'coins', _clean_tally(self.coins, COIN_DENOMINATIONS, 'coin'))

    def total(self) -> Decimal:
        notes = sum((Decimal(d) * q for d, q in self.notes.items()), ZERO)
        coins = sum((Decimal(d) * q for d, q in self.coins.items()), ZERO)
        return notes + coins

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            'notes': {d: q for d, q in self.notes.items() if q},
            'coins': {d: q for d, q in self.coins.items() if q},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'CashCount':
        return cls(notes=dict(data.get('notes') or {}), coins=dict(data.get('coins') or {}))


# ---------------------------------------------------------------------------
# Ledger entry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntry:
    """One recorded movement of money.

    ``amount`` is always a non-negative magnitude; ``direction`` carries the
    sign.  ``fund_allocations`` is the audit trail written at creation time
    and is not used to derive balances.

    Amounts, dates and enum names are coerced on construction, so every
    entry holds a ``Decimal`` magnitude and a timezone-aware UTC date.
    """

    id: str
    date: datetime
    description: str
    amount: Decimal
    direction: Direction
    category: Category
    fund_allocations: Dict[FundType, Decimal] = field(default_factory=dict)
    invoice_ref: Optional[str] = None
    internal_transfer: bool = False
    cash_count: Optional[CashCount] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, 'amount', abs(parse_amount(self.amount)))
        object.__setattr__(self, 'date', parse_date(self.date))
        object.__setattr__(self, 'direction', coerce_direction(self.direction))
        object.__setattr__(self, 'category', coerce_category(self.category))
        object.__setattr__(self, 'fund_allocations', normalize_allocations(self.fund_allocations))
        if self.created_at is not None:
            object.__setattr__(self, 'created_at', parse_date(self.created_at))

    @property
    def is_income(self) -> bool:
        return self.direction is Direction.INCOME

    @property
    def is_children(self) -> bool:
        return self.category is Category.CHILDREN_MINISTRY

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.is_income else -self.amount

    def with_allocations(self, allocations: Mapping[FundType, Decimal]) -> 'LedgerEntry':
        return replace(self, fund_allocations=dict(allocations))

    def to_record(self) -> Dict[str, Any]:
        """Plain JSON-friendly representation used by the store and exports."""
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'description': self.description,
            'amount': str(self.amount),
            'direction': self.direction.value,
            'category': self.category.value,
            'fund_allocations': {fund.value: str(delta) for fund, delta in self.fund_allocations.items()},
            'invoice_ref': self.invoice_ref,
            'internal_transfer': self.internal_transfer,
            'cash_count': self.cash_count.to_dict() if self.cash_count else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'LedgerEntry':
        """Rebuild an entry from stored data, tolerating legacy names and retired funds."""
        cash = record.get('cash_count')
        created = record.get('created_at')
        return cls(
            id=str(record.get('id') or new_entry_id()),
            date=record.get('date'),
            description=str(record.get('description') or ''),
            amount=record.get('amount'),
            direction=record.get('direction'),
            category=record.get('category'),
            fund_allocations=record.get('fund_allocations') or {},
            invoice_ref=record.get('invoice_ref') or None,
            internal_transfer=bool(record.get('internal_transfer') or False),
            cash_count=CashCount.from_dict(cash) if cash else None,
            created_at=created or None,
        )


def validate_entry_input(
    direction: Any,
    category: Any,
    amount: Any,
    description: Any,
    invoice_ref: Optional[str] = None,
) -> Tuple[Direction, Category, Decimal, str, Optional[str]]:
    """Validate raw input for a new entry.

    Returns the coerced ``(direction, category, amount, description,
    invoice_ref)`` tuple.  Raises ``ValidationError`` for a non-positive or
    non-numeric amount, a blank description, a category that does not belong
    to the direction, or an invoice reference on an income.
    """
    direction = coerce_direction(direction)
    category = coerce_category(category)
    value = parse_amount(amount)
    if value <= ZERO:
        raise ValidationError(f"Amount must be positive, got {amount!r}.", 'amount')

    text = description.strip() if isinstance(description, str) else ''
    if not text:
        raise ValidationError("Description must not be empty.", 'description')

    allowed = INCOME_CATEGORIES if direction is Direction.INCOME else EXPENSE_CATEGORIES
    if category not in allowed:
        raise ValidationError(
            f"Category {category.value} is not valid for {direction.value} entries.", 'category'
        )

    reference = invoice_ref.strip() if isinstance(invoice_ref, str) else None
    if reference and direction is Direction.INCOME:
        raise ValidationError("Invoice references are only recorded on expenses.", 'invoice_ref')
    return direction, category, value, text, reference or None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _default_percentages() -> Dict[FundType, Decimal]:
    return {FundType(key): value for key, value in config.DEFAULT_FUND_PERCENTAGES.items()}


@dataclass(frozen=True)
class Configuration:
    """Administrator-edited allocation settings."""

    organization_name: str = config.DEFAULT_ORGANIZATION_NAME
    fund_percentages: Dict[FundType, Decimal] = field(default_factory=_default_percentages)
    rent_target: Decimal = config.DEFAULT_RENT_AMOUNT * config.RENT_RESERVE_MONTHS
    rent_amount: Decimal = config.DEFAULT_RENT_AMOUNT

    def __post_init__(self) -> None:
        percentages: Dict[FundType, Decimal] = {}
        for key, value in self.fund_percentages.items():
            fund = coerce_fund(key)
            if fund is None:
                continue
            pct = parse_amount(value, f"percentage for {fund.value}")
            if pct < ZERO or pct > HUNDRED:
                raise ValidationError(
                    f"Percentage for {fund.value} must be between 0 and 100, got {value!r}.",
                    'fund_percentages',
                )
            percentages[fund] = pct
        object.__setattr__(self, 'fund_percentages', percentages)

        for name in ('rent_target', 'rent_amount'):
            number = parse_amount(getattr(self, name), name)
            if number < ZERO:
                raise ValidationError(f"{name} must not be negative.", name)
            object.__setattr__(self, name, number)

    def percentage(self, fund: FundType) -> Decimal:
        return self.fund_percentages.get(fund, ZERO)

    def percentage_total(self) -> Decimal:
        return sum(self.fund_percentages.values(), ZERO)

    def is_balanced(self) -> bool:
        """Advisory health check: the percentages add up to exactly 100."""
        return self.percentage_total() == HUNDRED

    def with_rent_amount(self, rent_amount: Any) -> 'Configuration':
        """Set the monthly rent and derive the reserve target from it."""
        amount = parse_amount(rent_amount, 'rent_amount')
        return replace(self, rent_amount=amount, rent_target=amount * config.RENT_RESERVE_MONTHS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'organization_name': self.organization_name,
            'fund_percentages': {fund.value: str(pct) for fund, pct in self.fund_percentages.items()},
            'rent_target': str(self.rent_target),
            'rent_amount': str(self.rent_amount),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Configuration':
        """Merge stored settings over the defaults, key by key.

        A stored ``rent_amount`` without a ``rent_target`` derives the target
        from the rent, as ``with_rent_amount`` does.
        """
        defaults = cls()
        percentages: Dict[FundType, Any] = _default_percentages()
        for key, value in (data.get('fund_percentages') or {}).items():
            fund = coerce_fund(key)
            if fund is not None:
                percentages[fund] = value

        configuration = cls(
            organization_name=str(data.get('organization_name') or defaults.organization_name),
            fund_percentages=percentages,
            rent_target=data.get('rent_target', defaults.rent_target),
            rent_amount=data.get('rent_amount', defaults.rent_amount),
        )
        if 'rent_amount' in data and 'rent_target' not in data:
            configuration = configuration.with_rent_amount(configuration.rent_amount)
        return configuration


# ---------------------------------------------------------------------------
# Derived statistics
# ---------------------------------------------------------------------------


def empty_fund_balances() -> Dict[FundType, Decimal]:
    return {fund: ZERO for fund in FundType}


@dataclass(frozen=True)
class Statistics:
    """Read-only snapshot produced by the derivation engine."""

    total_income: Decimal
    total_expenses: Decimal
    net_balance: Decimal
    fund_balances: Dict[FundType, Decimal]
    children_income: Decimal
    children_expenses: Decimal

    def balance(self, fund: FundType) -> Decimal:
        return self.fund_balances.get(fund, ZERO)

    @property
    def available_balance(self) -> Decimal:
        """Money free to spend: utilities plus general."""
        return self.balance(FundType.UTILITIES) + self.balance(FundType.GENERAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_income': str(self.total_income),
            'total_expenses': str(self.total_expenses),
            'net_balance': str(self.net_balance),
            'fund_balances': {fund.value: str(v) for fund, v in self.fund_balances.items()},
            'children_income': str(self.children_income),
            'children_expenses': str(self.children_expenses),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Statistics':
        balances = empty_fund_balances()
        balances.update(normalize_allocations(data.get('fund_balances')))
        return cls(
            total_income=parse_amount(data.get('total_income', 0)),
            total_expenses=parse_amount(data.get('total_expenses', 0)),
            net_balance=parse_amount(data.get('net_balance', 0)),
            fund_balances=balances,
            children_income=parse_amount(data.get('children_income', 0)),
            children_expenses=parse_amount(data.get('children_expenses', 0)),
        )


@dataclass(frozen=True)
class ReportSnapshot:
    """A stored copy of the statistics at the moment a report was issued."""

    issued_at: datetime
    statistics: Statistics
    generated_by: Optional[str] = None
    id: Optional[int] = None
