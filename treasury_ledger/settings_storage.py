"""Persistence helpers for the administrator-edited configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from . import config
from .errors import ValidationError
from .models import Configuration

logger = logging.getLogger(__name__)


def load_configuration(path: Path | None = None) -> Configuration:
    """Load the stored configuration merged over the defaults.

    A missing, unreadable or invalid file yields the defaults; it never raises.
    """
    target = path or config.SETTINGS_PATH
    if not target.exists():
        return Configuration()
    try:
        with target.open('r', encoding='utf-8') as handle:
            data = json.load(handle)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", target, exc)
        return Configuration()
    if not isinstance(data, dict):
        return Configuration()
    try:
        return Configuration.from_dict(data)
    except ValidationError as exc:
        logger.warning("Ignoring invalid settings in %s: %s", target, exc)
        return Configuration()


def save_configuration(configuration: Configuration, path: Path | None = None) -> None:
    target = path or config.SETTINGS_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open('w', encoding='utf-8') as handle:
        json.dump(configuration.to_dict(), handle, indent=2, sort_keys=True, ensure_ascii=False)
    if not configuration.is_balanced():
        logger.warning(
            "Fund percentages sum to %s, not 100", configuration.percentage_total()
        )
