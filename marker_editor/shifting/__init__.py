"""Bulk marker shift engine: planning, conflict detection and atomic apply."""

from .applier import MarkerStore, TransactionalApplier
from .conflicts import classify_bounds, detect_overlaps, intervals_overlap
from .errors import (
    MarkerEditorError,
    MetadataNotFoundError,
    ShiftStateError,
    ShiftValidationError,
    StorageError,
)
from .locks import ParentLockRegistry
from .models import (
    Classification,
    Marker,
    MarkerFilter,
    MarkerOperation,
    MarkerType,
    OperationKind,
    ParentItem,
    ShiftCandidate,
    ShiftRequest,
    ShiftResult,
)
from .planner import ShiftPlan, group_by_parent, plan
from .session import ActionRecorder, ShiftEngine, ShiftSession, ShiftState

__all__ = [
    "ActionRecorder",
    "Classification",
    "Marker",
    "MarkerEditorError",
    "MarkerFilter",
    "MarkerOperation",
    "MarkerStore",
    "MarkerType",
    "MetadataNotFoundError",
    "OperationKind",
    "ParentItem",
    "ParentLockRegistry",
    "ShiftCandidate",
    "ShiftEngine",
    "ShiftPlan",
    "ShiftRequest",
    "ShiftResult",
    "ShiftSession",
    "ShiftState",
    "ShiftStateError",
    "ShiftValidationError",
    "StorageError",
    "TransactionalApplier",
    "classify_bounds",
    "detect_overlaps",
    "group_by_parent",
    "intervals_overlap",
    "plan",
]
