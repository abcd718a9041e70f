"""Fund allocation rules applied when entries are created or recomputed.

Two strategies live here and they are deliberately different:

* ``allocate_at_entry`` is the percentage split recorded on a new entry as
  its audit trail.  While the rent reserve is below target every fund gets
  its configured percentage; once the target is met the rent percentage is
  redirected to GENERAL.
* ``recompute_allocations`` is the administrator's bulk correction.  It walks
  the whole ledger, fills the rent reserve up to the target first and splits
  whatever is left across EMERGENCY, UTILITIES and GENERAL in proportion to
  their percentages.

Neither strategy affects the balances shown by ``engine.derive_statistics``,
which always re-derives them from the entries themselves.
"""

from __future__ import annotations

import logging
import warnings
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, Dict, List, Optional, Sequence

from . import config as app_config
from .engine import rent_priority_fill
from .errors import ConfigurationDegenerate, ValidationError
from .models import (
    EMERGENCY_FEEDING_CATEGORIES,
    HUNDRED,
    PROPORTIONAL_FUNDS,
    ZERO,
    CashCount,
    Category,
    Configuration,
    Direction,
    FundType,
    LedgerEntry,
    Statistics,
    coerce_fund,
    new_entry_id,
    parse_date,
    validate_entry_input,
)
from .transfers import REPLENISHMENT_DESCRIPTION, is_internal_transfer, is_replenishment

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
TOP_UP_DESCRIPTION = 'Rent reserve top-up'

# Fund debited by an expense when the caller does not name one.
DEFAULT_EXPENSE_FUNDS = {
    Category.RENT: FundType.RENT_RESERVE,
    Category.UTILITY_BILL: FundType.UTILITIES,
    Category.EMERGENCY_WITHDRAWAL: FundType.EMERGENCY,
}


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


# ---------------------------------------------------------------------------
# Percentage splits
# ---------------------------------------------------------------------------


def proportional_total(config: Configuration) -> Decimal:
    return sum((config.percentage(fund) for fund in PROPORTIONAL_FUNDS), ZERO)


def split_proportionally(amount: Decimal, config: Configuration) -> Dict[FundType, Decimal]:
    """Split ``amount`` across EMERGENCY, UTILITIES and GENERAL.

    Percentages are renormalized over those three funds.  Shares are rounded
    to cents and GENERAL takes the residual, so the parts always add up to
    ``amount``.  When the three percentages sum to zero everything goes to
    GENERAL.
    """
    split = {fund: ZERO for fund in PROPORTIONAL_FUNDS}
    total = proportional_total(config)
    if amount <= ZERO:
        return split
    if total <= ZERO:
        split[FundType.GENERAL] = amount
        return split
    for fund in (FundType.EMERGENCY, FundType.UTILITIES):
        split[fund] = to_cents(amount * config.percentage(fund) / total)
    split[FundType.GENERAL] = amount - split[FundType.EMERGENCY] - split[FundType.UTILITIES]
    return split


def allocate_income_at_entry(
    amount: Decimal,
    config: Configuration,
    rent_reserve_balance: Decimal,
) -> Dict[FundType, Decimal]:
    """Percentage split recorded on a new (non-children) income entry."""
    rent_pct = config.percentage(FundType.RENT_RESERVE)
    general_pct = config.percentage(FundType.GENERAL)
    if rent_reserve_balance >= config.rent_target:
        general_pct += rent_pct
        rent_pct = ZERO

    allocations = {
        FundType.RENT_RESERVE: to_cents(amount * rent_pct / HUNDRED),
        FundType.EMERGENCY: to_cents(amount * config.percentage(FundType.EMERGENCY) / HUNDRED),
        FundType.UTILITIES: to_cents(amount * config.percentage(FundType.UTILITIES) / HUNDRED),
        FundType.GENERAL: to_cents(amount * general_pct / HUNDRED),
    }
    if config.is_balanced():
        # Keep the split exact: GENERAL absorbs the rounding residue.
        others = allocations[FundType.RENT_RESERVE] + allocations[FundType.EMERGENCY] + allocations[FundType.UTILITIES]
        allocations[FundType.GENERAL] = amount - others
    return allocations


def allocate_at_entry(
    direction: Direction,
    category: Category,
    amount: Decimal,
    config: Configuration,
    rent_reserve_balance: Decimal = ZERO,
    target_fund: Optional[FundType] = None,
) -> Dict[FundType, Decimal]:
    """Return the fund → delta audit trail for a new entry."""
    if category is Category.CHILDREN_MINISTRY:
        delta = amount if direction is Direction.INCOME else -amount
        return {FundType.CHILDREN: delta}

    if direction is Direction.INCOME:
        return allocate_income_at_entry(amount, config, rent_reserve_balance)

    if category is Category.RENT_ALLOCATION:
        return {FundType.RENT_RESERVE: amount, FundType.GENERAL: -amount}

    if category is Category.RENT:
        return {FundType.RENT_RESERVE: -amount}

    fund = target_fund or DEFAULT_EXPENSE_FUNDS.get(category, FundType.GENERAL)
    return {fund: -amount}


# ---------------------------------------------------------------------------
# Entry creation
# ---------------------------------------------------------------------------


def replenishment_for(payment: LedgerEntry) -> LedgerEntry:
    """Build the internal transfer that refills the rent reserve from GENERAL."""
    return LedgerEntry(
        id=new_entry_id(),
        date=payment.date,
        description=REPLENISHMENT_DESCRIPTION,
        amount=payment.amount,
        direction=Direction.EXPENSE,
        category=Category.OTHER,
        fund_allocations={
            FundType.RENT_RESERVE: payment.amount,
            FundType.GENERAL: -payment.amount,
        },
        internal_transfer=True,
        created_at=payment.created_at,
    )


def create_entry(
    direction: Any,
    category: Any,
    amount: Any,
    description: Any,
    *,
    config: Configuration,
    rent_reserve_balance: Decimal = ZERO,
    date: Any = None,
    invoice_ref: Optional[str] = None,
    target_fund: Any = None,
    cash_count: Optional[CashCount] = None,
    entry_id: Optional[str] = None,
) -> List[LedgerEntry]:
    """Validate input and build the entries for one recorded movement.

    A rent payment also yields its linked replenishment transfer, so the
    result holds one or two entries; the caller must persist them together.

    Args:
        direction: ``Direction`` or its name.
        category: ``Category`` or its name; must belong to ``direction``.
        amount: Positive amount.  ``None`` takes the total of ``cash_count``.
        description: Free-text label, must not be blank.
        config: Active configuration for the at-entry split.
        rent_reserve_balance: Current RENT_RESERVE balance, used to decide
            whether the reserve target is already met.
        date: Date of the economic event; defaults to now.
        invoice_ref: Optional reference, expenses only.
        target_fund: Fund debited by an ordinary expense.
        cash_count: Optional banknote/coin tally, incomes only.
        entry_id: Identifier to use instead of a generated one.

    Raises:
        ValidationError: if the input breaks any entry rule.
    """
    if amount is None and cash_count is not None:
        amount = cash_count.total()
    direction, category, value, text, reference = validate_entry_input(
        direction, category, amount, description, invoice_ref
    )
    if cash_count is not None and direction is not Direction.INCOME:
        raise ValidationError("Cash counts are only recorded on incomes.", 'cash_count')

    fund = None
    if target_fund is not None:
        fund = coerce_fund(target_fund)
        if fund is None:
            raise ValidationError(f"Unknown fund {target_fund!r}.", 'target_fund')
        if fund is FundType.CHILDREN and category is not Category.CHILDREN_MINISTRY:
            raise ValidationError(
                "Only children-ministry entries may touch the CHILDREN fund.", 'target_fund'
            )

    entry = LedgerEntry(
        id=entry_id or new_entry_id(),
        date=parse_date(date),
        description=text,
        amount=value,
        direction=direction,
        category=category,
        fund_allocations=allocate_at_entry(
            direction, category, value, config, rent_reserve_balance, fund
        ),
        invoice_ref=reference,
        cash_count=cash_count,
        created_at=datetime.now(timezone.utc),
    )
    if direction is Direction.EXPENSE and category is Category.RENT:
        replenishment = replenishment_for(entry)
        logger.debug("Rent payment %s linked to replenishment %s", entry.id, replenishment.id)
        return [entry, replenishment]
    return [entry]


def emergency_increment(entry: LedgerEntry) -> Decimal:
    """Delta for the persisted emergency balance when ``entry`` is recorded."""
    if (
        entry.is_income
        and entry.category in EMERGENCY_FEEDING_CATEGORIES
        and not is_internal_transfer(entry)
    ):
        return entry.amount * app_config.EMERGENCY_INCREMENT_RATE
    return ZERO


def plan_rent_top_up(
    statistics: Statistics,
    config: Configuration,
    date: Any = None,
) -> Optional[LedgerEntry]:
    """Build a RENT_ALLOCATION entry moving GENERAL money into the rent reserve.

    The amount is whatever is missing from the target, capped by the GENERAL
    balance.  Returns ``None`` when the target is met or GENERAL is empty.
    """
    missing = config.rent_target - statistics.balance(FundType.RENT_RESERVE)
    available = statistics.balance(FundType.GENERAL)
    if missing <= ZERO or available <= ZERO:
        return None
    amount = min(missing, available)
    return LedgerEntry(
        id=new_entry_id(),
        date=parse_date(date),
        description=TOP_UP_DESCRIPTION,
        amount=amount,
        direction=Direction.EXPENSE,
        category=Category.RENT_ALLOCATION,
        fund_allocations=allocate_at_entry(
            Direction.EXPENSE, Category.RENT_ALLOCATION, amount, config
        ),
        created_at=datetime.now(timezone.utc),
    )


# ---------------------------------------------------------------------------
# Bulk recomputation
# ---------------------------------------------------------------------------


def recompute_allocations(entries: Sequence[LedgerEntry], config: Configuration) -> List[LedgerEntry]:
    """Re-derive ``fund_allocations`` for every ordinary income entry.

    Entries are walked chronologically while a simulated rent reserve tracks
    history: incomes fill it up to the target, rent payments drain it and their
    replenishments and rent allocations restore it.  A payment and its
    replenishment cancel out even when the reserve was short.  Only the
    allocations of non-children, non-transfer incomes change; the result
    keeps the input order.
    """
    if proportional_total(config) <= ZERO:
        message = (
            "EMERGENCY, UTILITIES and GENERAL percentages sum to zero; "
            "income remainders are routed entirely to GENERAL."
        )
        logger.warning(message)
        warnings.warn(message, ConfigurationDegenerate, stacklevel=2)

    updated: Dict[int, LedgerEntry] = {}
    simulated_reserve = ZERO

    for position, entry in sorted(enumerate(entries), key=lambda pair: pair[1].date):
        if not entry.is_income:
            if is_replenishment(entry) or entry.category is Category.RENT_ALLOCATION:
                simulated_reserve += entry.amount
            elif entry.category is Category.RENT and not is_internal_transfer(entry):
                simulated_reserve -= entry.amount
            continue
        if entry.is_children or is_internal_transfer(entry):
            continue

        to_rent, remainder = rent_priority_fill(entry.amount, simulated_reserve, config.rent_target)
        simulated_reserve += to_rent
        allocations = {FundType.RENT_RESERVE: to_rent}
        allocations.update(split_proportionally(remainder, config))
        updated[position] = entry.with_allocations(allocations)

    logger.info("Recomputed allocations for %d of %d entries", len(updated), len(entries))
    return [updated.get(index, entry) for index, entry in enumerate(entries)]
