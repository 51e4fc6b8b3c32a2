from __future__ import annotations
from typing import Optional


class PickemError(Exception):
    """Base class for every error raised by the document engine."""


class FormatError(PickemError, ValueError):
    """Import or migration input does not have the expected shape."""


class ValidationError(PickemError, ValueError):
    """A mutator would break a document invariant; nothing was changed."""


class PreconditionError(PickemError):
    """The operation is refused in the current state (e.g. last stage)."""


class DuplicatePickError(ValidationError):
    def __init__(self, area: str, asset: str, row_index: Optional[int] = None):
        self.area = area
        self.asset = asset
        self.row_index = row_index
        super().__init__(f"Asset {asset!r} is already picked in area {area!r}.")


class StorageError(PickemError, OSError):
    """Durable store read/write failed. The in-memory document is unaffected."""
