from datetime import datetime, timezone
from decimal import Decimal

import pytest

from treasury_ledger.allocation import (
    allocate_at_entry,
    create_entry,
    emergency_increment,
    plan_rent_top_up,
    recompute_allocations,
    split_proportionally,
)
from treasury_ledger.engine import derive_statistics
from treasury_ledger.errors import ConfigurationDegenerate, ValidationError
from treasury_ledger.models import (
    CashCount,
    Category,
    Configuration,
    Direction,
    FundType,
    LedgerEntry,
    Statistics,
    empty_fund_balances,
)
from treasury_ledger.transfers import REPLENISHMENT_DESCRIPTION

CONFIG = Configuration()


def _entry(entry_id, day, direction, category, amount, description='entry', allocations=None, internal_transfer=False):
    return LedgerEntry(
        id=entry_id,
        date=datetime(2024, 3, day, tzinfo=timezone.utc),
        description=description,
        amount=Decimal(str(amount)),
        direction=direction,
        category=category,
        fund_allocations=allocations or {},
        internal_transfer=internal_transfer,
    )


def _stats(rent_reserve, general):
    balances = empty_fund_balances()
    balances[FundType.RENT_RESERVE] = Decimal(str(rent_reserve))
    balances[FundType.GENERAL] = Decimal(str(general))
    return Statistics(
        total_income=Decimal('0'),
        total_expenses=Decimal('0'),
        net_balance=Decimal('0'),
        fund_balances=balances,
        children_income=Decimal('0'),
        children_expenses=Decimal('0'),
    )


# ---------------------------------------------------------------------------
# At-entry split
# ---------------------------------------------------------------------------


def test_income_split_uses_configured_percentages_below_target():
    allocations = allocate_at_entry(Direction.INCOME, Category.TITHE, Decimal('100'), CONFIG, Decimal('0'))
    assert allocations == {
        FundType.RENT_RESERVE: Decimal('40'),
        FundType.EMERGENCY: Decimal('10'),
        FundType.UTILITIES: Decimal('20'),
        FundType.GENERAL: Decimal('30'),
    }


def test_income_split_redirects_rent_share_once_target_met():
    allocations = allocate_at_entry(Direction.INCOME, Category.OFFERING, Decimal('100'), CONFIG, Decimal('1350'))
    assert allocations[FundType.RENT_RESERVE] == Decimal('0')
    assert allocations[FundType.GENERAL] == Decimal('70')


def test_income_split_sums_to_amount_with_rounding():
    allocations = allocate_at_entry(Direction.INCOME, Category.TITHE, Decimal('33.33'), CONFIG, Decimal('0'))
    assert sum(allocations.values()) == Decimal('33.33')


def test_children_entries_only_touch_children_fund():
    assert allocate_at_entry(Direction.INCOME, Category.CHILDREN_MINISTRY, Decimal('25'), CONFIG) == {
        FundType.CHILDREN: Decimal('25'),
    }
    assert allocate_at_entry(Direction.EXPENSE, Category.CHILDREN_MINISTRY, Decimal('25'), CONFIG) == {
        FundType.CHILDREN: Decimal('-25'),
    }


def test_expense_allocations_debit_one_fund():
    assert allocate_at_entry(Direction.EXPENSE, Category.UTILITY_BILL, Decimal('60'), CONFIG) == {
        FundType.UTILITIES: Decimal('-60'),
    }
    assert allocate_at_entry(Direction.EXPENSE, Category.SOCIAL_AID, Decimal('60'), CONFIG) == {
        FundType.GENERAL: Decimal('-60'),
    }
    assert allocate_at_entry(
        Direction.EXPENSE, Category.MAINTENANCE, Decimal('60'), CONFIG, target_fund=FundType.EMERGENCY
    ) == {FundType.EMERGENCY: Decimal('-60')}
    assert allocate_at_entry(Direction.EXPENSE, Category.RENT_ALLOCATION, Decimal('60'), CONFIG) == {
        FundType.RENT_RESERVE: Decimal('60'),
        FundType.GENERAL: Decimal('-60'),
    }


def test_split_proportionally_gives_residual_to_general():
    split = split_proportionally(Decimal('100'), CONFIG)
    assert split[FundType.EMERGENCY] == Decimal('16.67')
    assert split[FundType.UTILITIES] == Decimal('33.33')
    assert split[FundType.GENERAL] == Decimal('50.00')
    assert sum(split.values()) == Decimal('100')


# ---------------------------------------------------------------------------
# Entry creation
# ---------------------------------------------------------------------------


def test_rent_payment_creates_linked_replenishment():
    entries = create_entry(
        'EXPENSE', 'RENT', '450', 'Rent March',
        config=CONFIG, date='2024-03-01', invoice_ref=' INV-7 ',
    )
    assert len(entries) == 2
    payment, replenishment = entries

    assert payment.category is Category.RENT
    assert payment.invoice_ref == 'INV-7'
    assert payment.fund_allocations == {FundType.RENT_RESERVE: Decimal('-450')}
    assert replenishment.internal_transfer is True
    assert replenishment.description == REPLENISHMENT_DESCRIPTION
    assert replenishment.amount == payment.amount
    assert replenishment.date == payment.date
    assert replenishment.fund_allocations == {
        FundType.RENT_RESERVE: Decimal('450'),
        FundType.GENERAL: Decimal('-450'),
    }
    assert replenishment.id != payment.id


def test_other_entries_are_created_alone():
    entries = create_entry(Direction.INCOME, Category.TITHE, 100, 'Sunday tithe', config=CONFIG)
    assert len(entries) == 1
    assert entries[0].amount == Decimal('100')
    assert entries[0].date.tzinfo is not None


def test_cash_count_total_becomes_amount():
    count = CashCount(notes={'20': 2}, coins={'0.50': 3})
    (entry,) = create_entry(
        'INCOME', 'OFFERING', None, 'Offering bag', config=CONFIG, cash_count=count
    )
    assert entry.amount == Decimal('41.50')
    assert entry.cash_count == count


@pytest.mark.parametrize(
    "direction, category, amount, description, options, field",
    [
        ('INCOME', 'TITHE', 0, 'Tithe', {}, 'amount'),
        ('INCOME', 'TITHE', '-5', 'Tithe', {}, 'amount'),
        ('INCOME', 'TITHE', 'ten', 'Tithe', {}, 'amount'),
        ('INCOME', 'TITHE', 10, '   ', {}, 'description'),
        ('INCOME', 'UTILITY_BILL', 10, 'Water', {}, 'category'),
        ('EXPENSE', 'TITHE', 10, 'Tithe', {}, 'category'),
        ('SIDEWAYS', 'OTHER', 10, 'Odd', {}, 'direction'),
        ('INCOME', 'OFFERING', 10, 'Offering', {'invoice_ref': 'INV-1'}, 'invoice_ref'),
        ('EXPENSE', 'MAINTENANCE', 10, 'Paint', {'target_fund': 'CHILDREN'}, 'target_fund'),
        ('EXPENSE', 'MAINTENANCE', 10, 'Paint', {'target_fund': 'NOWHERE'}, 'target_fund'),
        ('EXPENSE', 'MAINTENANCE', 10, 'Paint', {'cash_count': CashCount(notes={'10': 1})}, 'cash_count'),
    ],
)
def test_invalid_input_is_rejected(direction, category, amount, description, options, field):
    with pytest.raises(ValidationError) as excinfo:
        create_entry(direction, category, amount, description, config=CONFIG, **options)
    assert excinfo.value.field == field


def test_emergency_increment_only_for_tithes_and_offerings():
    (tithe,) = create_entry('INCOME', 'TITHE', 200, 'Tithe', config=CONFIG)
    (other,) = create_entry('INCOME', 'OTHER', 200, 'Bake sale', config=CONFIG)
    (kids,) = create_entry('INCOME', 'CHILDREN_MINISTRY', 200, 'Kids', config=CONFIG)
    assert emergency_increment(tithe) == Decimal('20')
    assert emergency_increment(other) == Decimal('0')
    assert emergency_increment(kids) == Decimal('0')


# ---------------------------------------------------------------------------
# Rent reserve top-up
# ---------------------------------------------------------------------------


def test_top_up_moves_missing_amount_from_general():
    entry = plan_rent_top_up(_stats(1000, 500), CONFIG, date='2024-03-10')
    assert entry is not None
    assert entry.category is Category.RENT_ALLOCATION
    assert entry.direction is Direction.EXPENSE
    assert entry.amount == Decimal('350')
    assert entry.fund_allocations == {
        FundType.RENT_RESERVE: Decimal('350'),
        FundType.GENERAL: Decimal('-350'),
    }


def test_top_up_is_capped_by_general():
    entry = plan_rent_top_up(_stats(0, 200), CONFIG)
    assert entry.amount == Decimal('200')


def test_top_up_refused_when_target_met_or_general_empty():
    assert plan_rent_top_up(_stats(1350, 500), CONFIG) is None
    assert plan_rent_top_up(_stats(100, 0), CONFIG) is None
    assert plan_rent_top_up(_stats(100, -20), CONFIG) is None


# ---------------------------------------------------------------------------
# Bulk recomputation
# ---------------------------------------------------------------------------


def _ledger():
    return [
        _entry('a', 1, Direction.INCOME, Category.TITHE, 1000),
        _entry('b', 2, Direction.EXPENSE, Category.RENT, 300, 'Rent', {FundType.RENT_RESERVE: Decimal('-300')}),
        _entry('b-r', 2, Direction.EXPENSE, Category.OTHER, 300, REPLENISHMENT_DESCRIPTION, internal_transfer=True),
        _entry('k', 2, Direction.INCOME, Category.CHILDREN_MINISTRY, 80, 'Kids', {FundType.CHILDREN: Decimal('80')}),
        _entry('c', 3, Direction.INCOME, Category.OFFERING, 500),
    ]


def test_recompute_fills_rent_first_then_splits_remainder():
    result = recompute_allocations(_ledger(), CONFIG)
    by_id = {entry.id: entry for entry in result}

    assert by_id['a'].fund_allocations == {
        FundType.RENT_RESERVE: Decimal('1000'),
        FundType.EMERGENCY: Decimal('0'),
        FundType.UTILITIES: Decimal('0'),
        FundType.GENERAL: Decimal('0'),
    }
    # Rent drains the simulated reserve to 700, the replenishment restores it
    # to 1000, so the offering tops up 350 and splits 150 across the rest.
    assert by_id['c'].fund_allocations == {
        FundType.RENT_RESERVE: Decimal('350'),
        FundType.EMERGENCY: Decimal('25'),
        FundType.UTILITIES: Decimal('50'),
        FundType.GENERAL: Decimal('75'),
    }


def test_recompute_leaves_other_entries_untouched_and_keeps_order():
    ledger = _ledger()
    result = recompute_allocations(ledger, CONFIG)
    assert [entry.id for entry in result] == [entry.id for entry in ledger]
    for before, after in zip(ledger, result):
        if before.id in {'b', 'b-r', 'k'}:
            assert after is before


def test_recompute_is_idempotent():
    once = recompute_allocations(_ledger(), CONFIG)
    twice = recompute_allocations(once, CONFIG)
    assert [e.fund_allocations for e in twice] == [e.fund_allocations for e in once]


def test_recompute_does_not_change_derived_balances():
    ledger = _ledger()
    assert derive_statistics(recompute_allocations(ledger, CONFIG), CONFIG) == derive_statistics(ledger, CONFIG)


def test_recompute_with_zero_proportional_percentages_warns():
    config = Configuration(fund_percentages={'RENT_RESERVE': 100, 'EMERGENCY': 0, 'UTILITIES': 0, 'GENERAL': 0})
    ledger = [_entry('a', 1, Direction.INCOME, Category.TITHE, 2000)]

    with pytest.warns(ConfigurationDegenerate):
        (entry,) = recompute_allocations(ledger, config)

    assert entry.fund_allocations == {
        FundType.RENT_RESERVE: Decimal('1350'),
        FundType.EMERGENCY: Decimal('0'),
        FundType.UTILITIES: Decimal('0'),
        FundType.GENERAL: Decimal('650'),
    }


def test_recompute_rent_paid_from_short_reserve_is_cancelled_by_replenishment():
    payment, replenishment = create_entry(
        'EXPENSE', 'RENT', 450, 'Rent April', config=CONFIG, date='2024-04-01'
    )
    (tithe,) = create_entry('INCOME', 'TITHE', 1000, 'Tithes', config=CONFIG, date='2024-04-02')
    ledger = [payment, replenishment, tithe]

    recomputed = recompute_allocations(ledger, CONFIG)[-1]
    derived = derive_statistics(ledger, CONFIG)

    assert recomputed.fund_allocations[FundType.RENT_RESERVE] == Decimal('1000')
    assert derived.balance(FundType.RENT_RESERVE) == Decimal('1000')
