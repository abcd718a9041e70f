"""Top-level package for the church treasury ledger.

The primary modules are:

* ``models`` – entries, configuration and the derived ``Statistics``
* ``engine`` – replays the ledger to derive fund balances
* ``allocation`` – fund splits for new entries and the bulk recomputation
* ``service`` – workflows that tie the rules to the SQLite store
* ``reports`` – pandas tables plus CSV and Excel exports

Command-line helpers live in ``scripts/``:

```bash
python scripts/show_statistics.py
python scripts/recompute_allocations.py --dry-run
```
"""

from .allocation import create_entry, plan_rent_top_up, recompute_allocations  # noqa: F401
from .engine import derive_statistics  # noqa: F401
from .errors import ConfigurationDegenerate, PartialWriteError, ValidationError  # noqa: F401
from .models import (  # noqa: F401
    CashCount,
    Category,
    Configuration,
    Direction,
    FundType,
    LedgerEntry,
    ReportSnapshot,
    Statistics,
)
from .service import TreasuryService  # noqa: F401

__all__ = [
    "CashCount",
    "Category",
    "Configuration",
    "ConfigurationDegenerate",
    "Direction",
    "FundType",
    "LedgerEntry",
    "PartialWriteError",
    "ReportSnapshot",
    "Statistics",
    "TreasuryService",
    "ValidationError",
    "create_entry",
    "derive_statistics",
    "plan_rent_top_up",
    "recompute_allocations",
]
