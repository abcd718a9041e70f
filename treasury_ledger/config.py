"""Configuration management for the treasury ledger.

This module centralizes paths, domain defaults and logging setup.  Paths can
be overridden through environment variables so tests and scripts can point at
throw-away locations.
"""

from __future__ import annotations

import logging
import os
import sys
from decimal import Decimal
from pathlib import Path

# Base project root - assumes this file is in treasury_ledger/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("TREASURY_DATA_DIR", _PROJECT_ROOT / "data"))
EXPORTS_DIR = Path(os.getenv("TREASURY_EXPORTS_DIR", DATA_DIR / "exports"))

# Database
DB_PATH = Path(
    os.getenv("TREASURY_DB_PATH", DATA_DIR / "treasury.db")
).resolve()

# Administrator-edited configuration
SETTINGS_PATH = Path(
    os.getenv("TREASURY_SETTINGS_PATH", DATA_DIR / "settings.json")
).resolve()

LOG_LEVEL = os.getenv("TREASURY_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Domain defaults
DEFAULT_ORGANIZATION_NAME = os.getenv("TREASURY_ORGANIZATION_NAME", "À Mesa Church")
DEFAULT_FUND_PERCENTAGES = {
    'RENT_RESERVE': Decimal('40'),
    'EMERGENCY': Decimal('10'),
    'UTILITIES': Decimal('20'),
    'GENERAL': Decimal('30'),
}
DEFAULT_RENT_AMOUNT = Decimal('450')
RENT_RESERVE_MONTHS = 3
EMERGENCY_INCREMENT_RATE = Decimal('0.10')
CURRENCY_SYMBOL = '€'


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, EXPORTS_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


def setup_logging(level: str | int | None = None) -> logging.Logger:
    """Install a console handler on the root logger.

    Calling it twice does not add a second handler.
    """
    root = logging.getLogger()
    root.setLevel(level or LOG_LEVEL)
    if not any(getattr(handler, '_treasury_console', False) for handler in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        handler._treasury_console = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    return root
