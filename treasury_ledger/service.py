"""Treasury workflows tying the pure rules to a store.

``TreasuryService`` is what a front end talks to.  It reads entries, the
configuration and the persisted emergency balance, hands them to the pure
engine and allocation helpers, and writes back whatever the workflow needs.
The store is any object exposing the functions of ``treasury_ledger.db``;
by default it is that module.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Sequence

from . import db
from .allocation import create_entry, emergency_increment, plan_rent_top_up, recompute_allocations
from .engine import derive_statistics
from .errors import PartialWriteError
from .hygiene import find_duplicate_groups, remove_duplicates
from .models import Configuration, FundType, LedgerEntry, ReportSnapshot, Statistics
from .settings_storage import load_configuration, save_configuration

logger = logging.getLogger(__name__)


class TreasuryService:
    """Entry-creation, recomputation and reporting workflows."""

    def __init__(
        self,
        store: Any = None,
        configuration: Optional[Configuration] = None,
        settings_path: Optional[Path] = None,
    ):
        self.store = store if store is not None else db
        self.settings_path = settings_path
        self._configuration = configuration

    # -- configuration ---------------------------------------------------

    @property
    def configuration(self) -> Configuration:
        if self._configuration is None:
            self._configuration = load_configuration(self.settings_path)
        return self._configuration

    def update_configuration(self, configuration: Configuration) -> Configuration:
        """Store a new configuration.  Past allocations are left untouched."""
        save_configuration(configuration, self.settings_path)
        self._configuration = configuration
        return configuration

    # -- reads -----------------------------------------------------------

    def entries(self) -> List[LedgerEntry]:
        return self.store.fetch_entries()

    def statistics(self) -> Statistics:
        """Derive the current snapshot from scratch."""
        return derive_statistics(
            self.store.fetch_entries(),
            self.configuration,
            self.store.get_emergency_balance(),
        )

    # -- writes ----------------------------------------------------------

    def record_entry(
        self,
        direction: Any,
        category: Any,
        amount: Any,
        description: Any,
        **options: Any,
    ) -> List[LedgerEntry]:
        """Validate, allocate and persist a new movement.

        Rent payments are stored together with their replenishment transfer.
        Tithes and offerings also raise the persisted emergency balance.

        Raises:
            ValidationError: the input is malformed; nothing is written.
            PartialWriteError: only the first entry of a linked pair was
                written.
        """
        rent_reserve = self.statistics().balance(FundType.RENT_RESERVE)
        entries = create_entry(
            direction,
            category,
            amount,
            description,
            config=self.configuration,
            rent_reserve_balance=rent_reserve,
            **options,
        )
        self._persist_together(entries)

        delta = emergency_increment(entries[0])
        if delta:
            self.store.increment_emergency_balance(delta)
        return entries

    def _persist_together(self, entries: Sequence[LedgerEntry]) -> None:
        persisted: List[LedgerEntry] = []
        for index, entry in enumerate(entries):
            try:
                self.store.insert_entry(entry)
            except Exception as exc:
                if not persisted:
                    raise
                pending = list(entries[index:])
                logger.error(
                    "Stored %s but failed to store linked entry %s: %s",
                    persisted[0].id, entry.id, exc,
                )
                raise PartialWriteError(
                    f"Entry {persisted[0].id} was stored but {len(pending)} linked entry(ies) were not.",
                    persisted=persisted,
                    pending=pending,
                ) from exc
            persisted.append(entry)

    def delete_entry(self, entry_id: str) -> bool:
        return self.store.delete_entry(entry_id)

    def set_emergency_balance(self, value: Any):
        return self.store.set_emergency_balance(value)

    def recompute_allocations(self) -> int:
        """Rewrite stored allocations with the current percentages.

        Returns the number of entries whose allocations changed.
        """
        entries = self.store.fetch_entries()
        corrected = recompute_allocations(entries, self.configuration)
        changed = [
            new for old, new in zip(entries, corrected)
            if new.fund_allocations != old.fund_allocations
        ]
        self.store.update_fund_allocations(changed)
        logger.info("Recomputation changed %d entries", len(changed))
        return len(changed)

    def top_up_rent_reserve(self, date: Any = None) -> Optional[LedgerEntry]:
        """Move GENERAL money into the rent reserve, up to the target."""
        entry = plan_rent_top_up(self.statistics(), self.configuration, date)
        if entry is None:
            logger.info("Rent reserve top-up skipped: target met or no general funds")
            return None
        self.store.insert_entry(entry)
        return entry

    # -- hygiene ---------------------------------------------------------

    def find_duplicates(self) -> List[List[LedgerEntry]]:
        return find_duplicate_groups(self.store.fetch_entries())

    def remove_duplicates(self) -> List[LedgerEntry]:
        """Delete every duplicate except the earliest of each group."""
        _, removed = remove_duplicates(self.store.fetch_entries())
        self.store.delete_entries([entry.id for entry in removed])
        return removed

    # -- reporting -------------------------------------------------------

    def issue_report(self, generated_by: Optional[str] = None) -> ReportSnapshot:
        snapshot = ReportSnapshot(
            issued_at=datetime.now(timezone.utc),
            statistics=self.statistics(),
            generated_by=generated_by,
        )
        report_id = self.store.save_report_snapshot(snapshot)
        return replace(snapshot, id=report_id)

    def report_history(self) -> List[ReportSnapshot]:
        return self.store.fetch_report_history()
