"""Balance derivation engine.

``derive_statistics`` rebuilds every fund balance from scratch by replaying
the ledger in chronological order.  Nothing is cached between calls and no
running balance is ever written back, so the same inputs always produce the
same ``Statistics``.

Replay rules, per entry:

* Children-ministry money only moves the CHILDREN fund.
* Other income fills the rent reserve up to ``rent_target`` first and the
  rest goes to GENERAL.  Fund percentages are not applied here.
* Rent, utility and emergency expenses draw on their own fund first and take
  any shortfall from GENERAL; those funds never go below zero.
* RENT_ALLOCATION moves money from GENERAL to the rent reserve and is not an
  expenditure.
* Every other expense is paid from GENERAL directly.

The EMERGENCY fund starts from the persisted running balance (fed by 10% of
each tithe and offering when it is recorded) and replay only ever debits it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from .models import (
    ZERO,
    Category,
    Configuration,
    FundType,
    LedgerEntry,
    Statistics,
    parse_amount,
)
from .transfers import is_internal_transfer

# Expense categories backed by a dedicated fund, with GENERAL as fallback.
FUND_BACKED_EXPENSES = {
    Category.RENT: FundType.RENT_RESERVE,
    Category.UTILITY_BILL: FundType.UTILITIES,
    Category.EMERGENCY_WITHDRAWAL: FundType.EMERGENCY,
}


def chronological(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    """Sort by date; entries sharing a date keep their original order."""
    return sorted(entries, key=lambda entry: entry.date)


def rent_priority_fill(amount: Decimal, rent_reserve: Decimal, rent_target: Decimal) -> Tuple[Decimal, Decimal]:
    """Split ``amount`` into ``(to_rent, remainder)``.

    ``to_rent`` tops the reserve up to the target and is clamped to
    ``[0, amount]``.
    """
    missing = max(ZERO, rent_target - rent_reserve)
    to_rent = min(amount, missing)
    return to_rent, amount - to_rent


def withdraw_with_fallback(amount: Decimal, balance: Decimal) -> Tuple[Decimal, Decimal]:
    """Take ``amount`` from a fund holding ``balance``.

    Returns ``(new_balance, shortfall)``; the fund floors at zero and the
    shortfall is what the fallback fund has to cover.
    """
    available = max(ZERO, balance)
    drawn = min(amount, available)
    return balance - drawn, amount - drawn


def derive_statistics(
    entries: Iterable[LedgerEntry],
    config: Configuration,
    emergency_seed: Decimal = ZERO,
) -> Statistics:
    """Replay ``entries`` and return the resulting fund balances and totals.

    Args:
        entries: Ledger entries in any order.
        config: Active configuration; only ``rent_target`` is read.
        emergency_seed: Persisted EMERGENCY running balance.

    Returns:
        A fresh ``Statistics`` snapshot.
    """
    balances: Dict[FundType, Decimal] = {fund: ZERO for fund in FundType}
    balances[FundType.EMERGENCY] = parse_amount(emergency_seed, 'emergency_seed')

    total_income = ZERO
    total_expenses = ZERO
    children_income = ZERO
    children_expenses = ZERO

    replay = chronological(entry for entry in entries if not is_internal_transfer(entry))
    for entry in replay:
        amount = entry.amount

        if entry.is_children:
            if entry.is_income:
                balances[FundType.CHILDREN] += amount
                children_income += amount
            else:
                balances[FundType.CHILDREN] -= amount
                children_expenses += amount
            continue

        if entry.is_income:
            total_income += amount
            to_rent, remainder = rent_priority_fill(
                amount, balances[FundType.RENT_RESERVE], config.rent_target
            )
            balances[FundType.RENT_RESERVE] += to_rent
            balances[FundType.GENERAL] += remainder
            continue

        if entry.category is Category.RENT_ALLOCATION:
            balances[FundType.GENERAL] -= amount
            balances[FundType.RENT_RESERVE] += amount
            continue

        total_expenses += amount
        fund = FUND_BACKED_EXPENSES.get(entry.category)
        if fund is None:
            balances[FundType.GENERAL] -= amount
            continue
        balances[fund], shortfall = withdraw_with_fallback(amount, balances[fund])
        balances[FundType.GENERAL] -= shortfall

    return Statistics(
        total_income=total_income,
        total_expenses=total_expenses,
        net_balance=total_income - total_expenses,
        fund_balances=balances,
        children_income=children_income,
        children_expenses=children_expenses,
    )
