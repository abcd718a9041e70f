"""Report tables and exports built from entries and ``Statistics``.

Everything here is read-only: the functions turn the engine's snapshot and
the stored entries into pandas DataFrames for dashboards, printouts and
spreadsheet exports.  Money is converted to ``float`` at this boundary only.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from . import config
from .models import (
    HUNDRED,
    Category,
    Configuration,
    Direction,
    FundType,
    LedgerEntry,
    Statistics,
)
from .transfers import transfer_mask

logger = logging.getLogger(__name__)

FUND_LABELS: Dict[FundType, str] = {
    FundType.RENT_RESERVE: 'Rent Reserve',
    FundType.EMERGENCY: 'Emergency',
    FundType.UTILITIES: 'Water & Power',
    FundType.GENERAL: 'General',
    FundType.CHILDREN: "Children's Ministry",
}
EXPORTED_FUNDS = (FundType.RENT_RESERVE, FundType.EMERGENCY, FundType.UTILITIES, FundType.GENERAL)
ENTRY_COLUMNS = [
    'id', 'Date', 'Description', 'Direction', 'Category', 'Amount',
    'Signed Amount', 'Invoice Ref', 'Internal Transfer',
] + [f"Fund: {FUND_LABELS[fund]}" for fund in FundType]
MONTHLY_COLUMNS = ['Month', 'Income', 'Expenses', 'Net']


def format_currency(amount: Union[float, int, Any], include_sign: bool = True) -> str:
    """Format a currency amount, e.g. ``€1,234.56``.

    Negative amounts keep their minus sign in front of the symbol.
    """
    value = float(amount)
    formatted = f"{abs(value):,.2f}"
    prefix = '-' if value < 0 else ''
    return f"{prefix}{config.CURRENCY_SYMBOL}{formatted}" if include_sign else f"{prefix}{formatted}"


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def entries_frame(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    """One row per entry with its audit-trail allocations spread into columns."""
    rows: List[Dict[str, Any]] = []
    for entry in entries:
        row: Dict[str, Any] = {
            'id': entry.id,
            'Date': entry.date,
            'Description': entry.description,
            'Direction': entry.direction.value,
            'Category': entry.category.value,
            'Amount': float(entry.amount),
            'Invoice Ref': entry.invoice_ref or '',
            'Internal Transfer': entry.internal_transfer,
        }
        for fund in FundType:
            row[f"Fund: {FUND_LABELS[fund]}"] = float(entry.fund_allocations.get(fund, 0))
        rows.append(row)

    if not rows:
        return pd.DataFrame(columns=ENTRY_COLUMNS)

    df = pd.DataFrame(rows)
    df['Date'] = pd.to_datetime(df['Date'], utc=True)
    df['Signed Amount'] = np.where(df['Direction'] == Direction.INCOME.value, df['Amount'], -df['Amount'])
    return df[ENTRY_COLUMNS]


def _real_movements(df: pd.DataFrame) -> pd.DataFrame:
    """Rows that count towards church income and expenses."""
    if df.empty:
        return df
    keep = ~transfer_mask(df)
    keep &= df['Category'] != Category.CHILDREN_MINISTRY.value
    keep &= df['Category'] != Category.RENT_ALLOCATION.value
    return df[keep].copy()


def monthly_breakdown(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    """Income, expenses and net per calendar month (UTC)."""
    working = _real_movements(entries_frame(entries))
    if working.empty:
        return pd.DataFrame(columns=MONTHLY_COLUMNS)

    is_income = working['Direction'] == Direction.INCOME.value
    working['Month'] = working['Date'].dt.strftime('%Y-%m')
    working['Income'] = np.where(is_income, working['Amount'], 0.0)
    working['Expenses'] = np.where(~is_income, working['Amount'], 0.0)
    grouped = working.groupby('Month')[['Income', 'Expenses']].sum().reset_index()
    grouped['Net'] = grouped['Income'] - grouped['Expenses']
    return grouped[MONTHLY_COLUMNS].sort_values('Month').reset_index(drop=True)


def category_totals(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    """Total amount per direction and category, largest first."""
    working = _real_movements(entries_frame(entries))
    if working.empty:
        return pd.DataFrame(columns=['Direction', 'Category', 'Amount', 'Count'])
    grouped = (
        working.groupby(['Direction', 'Category'])['Amount']
        .agg(['sum', 'count'])
        .reset_index()
        .rename(columns={'sum': 'Amount', 'count': 'Count'})
    )
    return grouped.sort_values('Amount', ascending=False).reset_index(drop=True)


def fund_overview(statistics: Statistics, configuration: Configuration) -> pd.DataFrame:
    """Fund balances with the rent reserve shown against its target."""
    rows = []
    for fund in FundType:
        balance = statistics.balance(fund)
        target = configuration.rent_target if fund is FundType.RENT_RESERVE else None
        progress = None
        if target:
            progress = float(min(balance / target, 1) * 100)
        rows.append({
            'Fund': fund.value,
            'Label': FUND_LABELS[fund],
            'Balance': float(balance),
            'Target': float(target) if target is not None else np.nan,
            'Progress %': progress if progress is not None else np.nan,
        })
    return pd.DataFrame(rows)


def summary_frame(statistics: Statistics, configuration: Configuration) -> pd.DataFrame:
    """Indicator/value table used for the printed report and the Summary sheet."""
    rows = [
        ('Total income', float(statistics.total_income)),
        ('Total expenses', float(statistics.total_expenses)),
        ('Net balance', float(statistics.net_balance)),
        ('Available balance', float(statistics.available_balance)),
    ]
    rows += [(f"Fund: {FUND_LABELS[fund]}", float(statistics.balance(fund))) for fund in EXPORTED_FUNDS]
    rows += [
        ("Children's ministry income", float(statistics.children_income)),
        ("Children's ministry expenses", float(statistics.children_expenses)),
        ("Fund: Children's Ministry", float(statistics.balance(FundType.CHILDREN))),
        ('Organization', configuration.organization_name),
        ('Monthly rent', float(configuration.rent_amount)),
        (f"Reserve target ({config.RENT_RESERVE_MONTHS}x rent)", float(configuration.rent_target)),
    ]
    return pd.DataFrame(rows, columns=['Indicator', 'Value'])


def configuration_health(configuration: Configuration) -> Dict[str, Any]:
    """Advisory check that the fund percentages add up to 100."""
    total = configuration.percentage_total()
    balanced = total == HUNDRED
    if balanced:
        message = 'Fund percentages add up to 100%.'
    else:
        message = f"Fund percentages add up to {total}%, expected 100%."
    return {'total': float(total), 'balanced': balanced, 'message': message}


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


def default_export_path(kind: str, extension: str, today: Optional[date] = None) -> Path:
    stamp = (today or date.today()).isoformat()
    return config.EXPORTS_DIR / f"treasury_{kind}_{stamp}.{extension}"


def _export_table(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    df = entries_frame(entries)
    export = pd.DataFrame({
        'Date': df['Date'].dt.strftime('%Y-%m-%d'),
        'Description': df['Description'],
        'Direction': df['Direction'],
        'Category': df['Category'],
        'Amount': df['Amount'],
    })
    for fund in EXPORTED_FUNDS:
        column = f"Fund: {FUND_LABELS[fund]}"
        export[column] = df[column]
    export['Invoice Ref'] = df['Invoice Ref']
    return export


def export_csv(entries: Iterable[LedgerEntry], path: Optional[Path] = None) -> Path:
    """Write the transactions table as ``;``-separated CSV with a UTF-8 BOM."""
    target = Path(path) if path else default_export_path('transactions', 'csv')
    target.parent.mkdir(parents=True, exist_ok=True)
    _export_table(entries).to_csv(target, sep=';', index=False, encoding='utf-8-sig')
    logger.info("Exported transactions to %s", target)
    return target


def export_excel(
    entries: Iterable[LedgerEntry],
    statistics: Statistics,
    configuration: Configuration,
    path: Optional[Path] = None,
) -> Path:
    """Write a workbook with ``Transactions`` and ``Summary`` sheets."""
    target = Path(path) if path else default_export_path('report', 'xlsx')
    target.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(target, engine='openpyxl') as writer:
        _export_table(entries).to_excel(writer, sheet_name='Transactions', index=False)
        summary_frame(statistics, configuration).to_excel(writer, sheet_name='Summary', index=False)
    logger.info("Exported report workbook to %s", target)
    return target
