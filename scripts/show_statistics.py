#!/usr/bin/env python3
"""Print the current fund balances and monthly totals of the ledger."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from treasury_ledger import config, db, reports
from treasury_ledger.service import TreasuryService


def main(months: int = 12, export: str | None = None) -> None:
    config.ensure_data_directories()
    db.init_db()
    service = TreasuryService()
    configuration = service.configuration
    entries = service.entries()
    statistics = service.statistics()

    print(f"{configuration.organization_name}: {len(entries)} entries")
    summary = reports.summary_frame(statistics, configuration)
    summary['Value'] = [
        reports.format_currency(value) if isinstance(value, float) else value
        for value in summary['Value']
    ]
    print(summary.to_string(index=False))

    health = reports.configuration_health(configuration)
    if not health['balanced']:
        print(f"\nWarning: {health['message']}")

    monthly = reports.monthly_breakdown(entries)
    if not monthly.empty:
        print("\nBy month:")
        print(monthly.tail(months).to_string(index=False))

    if export == 'csv':
        print(f"\nWrote {reports.export_csv(entries)}")
    elif export == 'excel':
        print(f"\nWrote {reports.export_excel(entries, statistics, configuration)}")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Show ledger statistics.')
    parser.add_argument('--months', type=int, default=12, help='How many recent months to show')
    parser.add_argument('--export', choices=['csv', 'excel'], help='Also write an export file')
    parser.add_argument('--log-level', default=None, help='Logging level (default from TREASURY_LOG_LEVEL)')
    args = parser.parse_args()
    config.setup_logging(args.log_level)
    main(months=args.months, export=args.export)
