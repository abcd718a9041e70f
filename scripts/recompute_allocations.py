#!/usr/bin/env python3
"""Rewrite stored fund allocations with the current percentages."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from treasury_ledger import allocation, config, db
from treasury_ledger.service import TreasuryService


def main(dry_run: bool = False, top_up: bool = False) -> None:
    config.ensure_data_directories()
    db.init_db()
    service = TreasuryService()

    if dry_run:
        entries = service.entries()
        corrected = allocation.recompute_allocations(entries, service.configuration)
        changed = sum(
            1 for old, new in zip(entries, corrected)
            if old.fund_allocations != new.fund_allocations
        )
        print(f"{changed} of {len(entries)} entries would change.")
        return

    changed = service.recompute_allocations()
    print(f"Updated allocations on {changed} entries.")

    if top_up:
        entry = service.top_up_rent_reserve()
        if entry is None:
            print("Rent reserve top-up not needed.")
        else:
            print(f"Moved {entry.amount} from GENERAL to the rent reserve.")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Recompute fund allocations.')
    parser.add_argument('--dry-run', action='store_true', help='Only report how many entries would change')
    parser.add_argument('--top-up', action='store_true', help='Also top up the rent reserve from GENERAL')
    parser.add_argument('--log-level', default=None, help='Logging level (default from TREASURY_LOG_LEVEL)')
    args = parser.parse_args()
    config.setup_logging(args.log_level)
    main(dry_run=args.dry_run, top_up=args.top_up)
