"""Helpers for identifying internal transfers between funds.

An internal transfer moves money from one fund to another (for example the
automatic replenishment of the rent reserve after a rent payment).  It is not
real income or expenditure, so totals and the balance replay skip it.

New entries carry an explicit ``internal_transfer`` flag.  Older ledgers only
marked transfers in the description text, so the legacy substring markers
are still recognised, case-insensitively.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

import numpy as np
import pandas as pd

from .models import LedgerEntry

TRANSFER_MARKERS: Tuple[str, ...] = (
    'transfer',
    'automatic replenishment',
    # Historical ledgers were kept in Portuguese.
    'transferência',
    'reposição automática',
)
REPLENISHMENT_MARKERS: Tuple[str, ...] = (
    'automatic replenishment',
    'reposição automática',
)
REPLENISHMENT_DESCRIPTION = 'Automatic replenishment - Rent reserve'


def _contains_any(text: str, markers: Iterable[str]) -> bool:
    lowered = (text or '').casefold()
    return any(marker in lowered for marker in markers)


def has_transfer_marker(description: str) -> bool:
    """True when ``description`` carries one of the legacy transfer markers."""
    return _contains_any(description, TRANSFER_MARKERS)


def is_internal_transfer(entry: LedgerEntry) -> bool:
    return entry.internal_transfer or has_transfer_marker(entry.description)


def is_replenishment(entry: LedgerEntry) -> bool:
    """True for the synthesized transfer that refills the rent reserve."""
    return _contains_any(entry.description, REPLENISHMENT_MARKERS)


def split_transfers(entries: Iterable[LedgerEntry]) -> Tuple[List[LedgerEntry], List[LedgerEntry]]:
    """Partition ``entries`` into ``(regular, transfers)`` preserving order."""
    regular: List[LedgerEntry] = []
    transfers: List[LedgerEntry] = []
    for entry in entries:
        (transfers if is_internal_transfer(entry) else regular).append(entry)
    return regular, transfers


def transfer_mask(df: pd.DataFrame) -> pd.Series:
    """Boolean mask of internal-transfer rows in an entries DataFrame.

    Uses the ``Internal Transfer`` flag column when present and the
    ``Description`` markers otherwise (or in addition).
    """
    if df is None or df.empty:
        return pd.Series(dtype=bool)
    description = df.get('Description', pd.Series('', index=df.index)).fillna('').astype(str)
    lowered = description.str.casefold()
    by_text = np.zeros(len(df), dtype=bool)
    for marker in TRANSFER_MARKERS:
        by_text |= lowered.str.contains(marker, regex=False).to_numpy()
    if 'Internal Transfer' in df.columns:
        flagged = df['Internal Transfer'].fillna(False).astype(bool).to_numpy()
    else:
        flagged = np.zeros(len(df), dtype=bool)
    return pd.Series(by_text | flagged, index=df.index)
