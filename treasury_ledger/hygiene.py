"""Data-hygiene helpers for cleaning up a ledger by hand.

Nothing here runs automatically; an administrator calls it and decides what
to delete.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from .engine import chronological
from .models import Category, Direction, LedgerEntry

logger = logging.getLogger(__name__)

DuplicateKey = Tuple[str, Decimal, Category, Direction]


def normalize_description(text: str) -> str:
    """Casefold and collapse whitespace so trivially different labels match."""
    return re.sub(r"\s+", " ", (text or '').strip()).casefold()


def duplicate_key(entry: LedgerEntry) -> DuplicateKey:
    return (normalize_description(entry.description), entry.amount, entry.category, entry.direction)


def find_duplicate_groups(entries: Iterable[LedgerEntry]) -> List[List[LedgerEntry]]:
    """Group entries sharing description, amount, category and direction.

    Each group is in chronological order (earliest first); only groups with
    more than one member are returned.
    """
    groups: Dict[DuplicateKey, List[LedgerEntry]] = {}
    for entry in chronological(entries):
        groups.setdefault(duplicate_key(entry), []).append(entry)
    return [members for members in groups.values() if len(members) > 1]


def remove_duplicates(entries: Iterable[LedgerEntry]) -> Tuple[List[LedgerEntry], List[LedgerEntry]]:
    """Split ``entries`` into ``(kept, removed)``.

    The earliest-dated member of every duplicate group is kept.  ``kept``
    preserves the input order.
    """
    entries = list(entries)
    removed_ids = set()
    removed: List[LedgerEntry] = []
    for group in find_duplicate_groups(entries):
        for duplicate in group[1:]:
            removed_ids.add(duplicate.id)
            removed.append(duplicate)
    kept = [entry for entry in entries if entry.id not in removed_ids]
    if removed:
        logger.info("Found %d duplicate entries across the ledger", len(removed))
    return kept, removed
