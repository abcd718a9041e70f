from datetime import date, datetime, timezone
from decimal import Decimal

import pandas as pd
import pytest

from treasury_ledger import reports
from treasury_ledger.engine import derive_statistics
from treasury_ledger.models import Category, Configuration, Direction, FundType, LedgerEntry

CONFIG = Configuration()


def _entry(entry_id, month, day, direction, category, amount, description='entry', **kwargs):
    return LedgerEntry(
        id=entry_id,
        date=datetime(2024, month, day, tzinfo=timezone.utc),
        description=description,
        amount=Decimal(str(amount)),
        direction=direction,
        category=category,
        **kwargs,
    )


def _ledger():
    return [
        _entry('a', 1, 7, Direction.INCOME, Category.TITHE, 1000, 'Tithes',
               fund_allocations={FundType.RENT_RESERVE: Decimal('400'), FundType.GENERAL: Decimal('600')}),
        _entry('b', 1, 15, Direction.EXPENSE, Category.RENT, 300, 'Rent', invoice_ref='INV-1'),
        _entry('c', 1, 15, Direction.EXPENSE, Category.OTHER, 300, 'Automatic replenishment - Rent reserve',
               internal_transfer=True),
        _entry('d', 2, 3, Direction.INCOME, Category.OFFERING, 500, 'Offering'),
        _entry('e', 2, 4, Direction.INCOME, Category.CHILDREN_MINISTRY, 60, 'Kids'),
        _entry('f', 2, 9, Direction.EXPENSE, Category.RENT_ALLOCATION, 100, 'Rent reserve top-up'),
        _entry('g', 2, 20, Direction.EXPENSE, Category.MAINTENANCE, 45.5, 'Paint'),
    ]


def test_format_currency():
    assert reports.format_currency(1234.5) == '€1,234.50'
    assert reports.format_currency(Decimal('-5')) == '-€5.00'
    assert reports.format_currency(7, include_sign=False) == '7.00'


def test_entries_frame_spreads_allocations():
    df = reports.entries_frame(_ledger())
    assert list(df.columns) == reports.ENTRY_COLUMNS
    assert len(df) == 7

    first = df.iloc[0]
    assert first['Fund: Rent Reserve'] == 400.0
    assert first['Fund: General'] == 600.0
    assert df.loc[df['id'] == 'b', 'Signed Amount'].item() == -300.0
    assert df.loc[df['id'] == 'b', 'Invoice Ref'].item() == 'INV-1'
    assert bool(df.loc[df['id'] == 'c', 'Internal Transfer'].item())


def test_entries_frame_empty():
    df = reports.entries_frame([])
    assert df.empty
    assert list(df.columns) == reports.ENTRY_COLUMNS
    assert reports.monthly_breakdown([]).empty


def test_monthly_breakdown_skips_transfers_and_children():
    monthly = reports.monthly_breakdown(_ledger())
    assert monthly['Month'].tolist() == ['2024-01', '2024-02']
    assert monthly['Income'].tolist() == [1000.0, 500.0]
    assert monthly['Expenses'].tolist() == [300.0, 45.5]
    assert monthly['Net'].tolist() == [700.0, 454.5]


def test_category_totals():
    totals = reports.category_totals(_ledger())
    assert totals.iloc[0]['Category'] == 'TITHE'
    assert set(totals['Category']) == {'TITHE', 'OFFERING', 'RENT', 'MAINTENANCE'}


def test_fund_overview_and_summary_follow_statistics():
    stats = derive_statistics(_ledger(), CONFIG)
    overview = reports.fund_overview(stats, CONFIG).set_index('Fund')

    assert overview.loc['RENT_RESERVE', 'Balance'] == float(stats.balance(FundType.RENT_RESERVE))
    assert overview.loc['RENT_RESERVE', 'Target'] == 1350.0
    assert overview.loc['RENT_RESERVE', 'Progress %'] == pytest.approx(1300 / 1350 * 100)
    assert pd.isna(overview.loc['GENERAL', 'Target'])

    summary = reports.summary_frame(stats, CONFIG).set_index('Indicator')['Value']
    assert summary['Total income'] == 1500.0
    assert summary['Total expenses'] == 345.5
    assert summary['Available balance'] == float(stats.available_balance)
    assert summary["Fund: Children's Ministry"] == 60.0


def test_configuration_health():
    assert reports.configuration_health(CONFIG)['balanced'] is True
    unbalanced = reports.configuration_health(Configuration(fund_percentages={'GENERAL': 80}))
    assert unbalanced['balanced'] is False
    assert unbalanced['total'] == 80.0
    assert '80' in unbalanced['message']


def test_export_csv_uses_semicolons_and_bom(tmp_path):
    path = reports.export_csv(_ledger(), tmp_path / 'out' / 'transactions.csv')

    assert path.read_bytes().startswith(b'\xef\xbb\xbf')
    loaded = pd.read_csv(path, sep=';', encoding='utf-8-sig')
    assert loaded.columns[0] == 'Date'
    assert len(loaded) == 7
    assert loaded.loc[0, 'Date'] == '2024-01-07'
    assert loaded.loc[0, 'Fund: Rent Reserve'] == 400.0


def test_export_excel_writes_both_sheets(tmp_path):
    entries = _ledger()
    stats = derive_statistics(entries, CONFIG)
    path = reports.export_excel(entries, stats, CONFIG, tmp_path / 'report.xlsx')

    sheets = pd.read_excel(path, sheet_name=None)
    assert set(sheets) == {'Transactions', 'Summary'}
    assert len(sheets['Transactions']) == 7
    assert 'Total income' in sheets['Summary']['Indicator'].tolist()


def test_default_export_path_is_dated(monkeypatch, tmp_path):
    monkeypatch.setattr(reports.config, 'EXPORTS_DIR', tmp_path)
    assert reports.default_export_path('transactions', 'csv', date(2024, 5, 1)) == (
        tmp_path / 'treasury_transactions_2024-05-01.csv'
    )
