"""Error types raised or emitted by the treasury ledger."""

from __future__ import annotations

from typing import Optional, Sequence


class ValidationError(ValueError):
    """Malformed entry input, rejected before anything is persisted."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PartialWriteError(RuntimeError):
    """A linked group of entries was only partially written.

    ``persisted`` holds the entries the store accepted, ``pending`` the ones it
    did not.  The ledger stays consistent for the engine; the caller decides
    whether to retry the pending writes.
    """

    def __init__(self, message: str, persisted: Sequence = (), pending: Sequence = ()):
        super().__init__(message)
        self.persisted = list(persisted)
        self.pending = list(pending)


class ConfigurationDegenerate(UserWarning):
    """Proportional fund percentages sum to zero; the remainder goes to GENERAL."""
