"""Exceptions raised by the bulk shift engine and the marker store."""

from __future__ import annotations


class MarkerEditorError(Exception):
    """Base class for every error the application raises on purpose."""


class ShiftValidationError(MarkerEditorError):
    """The request was rejected before planning; nothing was changed."""


class MetadataNotFoundError(ShiftValidationError):
    """The requested metadata item does not exist in the media server database."""

    def __init__(self, metadata_id: int) -> None:
        super().__init__(f"Metadata item {metadata_id} not found in database.")
        self.metadata_id = metadata_id


class StorageError(MarkerEditorError):
    """A read or transaction against the media server database failed.

    Transactions are rolled back before this is raised.
    """


class ShiftStateError(MarkerEditorError):
    """A shift session was driven through a transition it does not allow."""


__all__ = [
    "MarkerEditorError",
    "MetadataNotFoundError",
    "ShiftStateError",
    "ShiftValidationError",
    "StorageError",
]
