"""Value types shared by the planner, conflict detector and applier."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntFlag
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class MarkerType(str, Enum):
    """Marker kinds as stored in the ``taggings.text`` column."""

    INTRO = "intro"
    CREDITS = "credits"
    AD = "commercial"


class MarkerFilter(IntFlag):
    """Bitmask selecting which marker types a bulk operation targets."""

    INTRO = 0x1
    CREDITS = 0x2
    AD = 0x4
    ALL = 0x7

    @classmethod
    def parse(cls, value: int | "MarkerFilter") -> "MarkerFilter":
        """Return the filter for ``value``; anything outside ``0x1..0x7`` is a bug."""

        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Marker filter must be an integer, got {value!r}")
        if value < 1 or value & ~int(cls.ALL):
            raise ValueError(f"Invalid marker filter value: {value}")
        return cls(value)

    def matches(self, marker_type: MarkerType) -> bool:
        return bool(self & _FILTER_BY_TYPE[marker_type])


_FILTER_BY_TYPE = {
    MarkerType.INTRO: MarkerFilter.INTRO,
    MarkerType.CREDITS: MarkerFilter.CREDITS,
    MarkerType.AD: MarkerFilter.AD,
}


@dataclass(frozen=True)
class Marker:
    id: int
    parent_id: int
    marker_type: MarkerType
    start: int
    end: int
    index: int
    created_by_user: bool = False
    final: bool = False
    modified_date: Optional[int] = None

    def with_bounds(self, start: int, end: int) -> "Marker":
        return replace(self, start=start, end=end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "markerType": self.marker_type.value,
            "start": self.start,
            "end": self.end,
            "index": self.index,
            "createdByUser": self.created_by_user,
            "isFinal": self.final,
            "modifiedDate": self.modified_date,
        }


@dataclass(frozen=True)
class ParentItem:
    """An episode or movie; only its duration matters to the shift engine."""

    metadata_id: int
    duration: int
    title: str = ""
    index: Optional[int] = None
    season_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadataId": self.metadata_id,
            "duration": self.duration,
            "title": self.title,
            "seasonIndex": self.season_index,
            "index": self.index,
        }


@dataclass(frozen=True)
class ShiftRequest:
    metadata_id: int
    start_delta: int
    end_delta: int
    marker_filter: MarkerFilter = MarkerFilter.ALL
    force: bool = False
    ignored_marker_ids: FrozenSet[int] = frozenset()

    @property
    def asymmetric(self) -> bool:
        return self.start_delta != self.end_delta

    def is_ignored(self, marker: Marker) -> bool:
        return marker.id in self.ignored_marker_ids


class Classification(str, Enum):
    CLEAN = "clean"
    TRUNCATED = "truncated"
    INVALID = "invalid"
    UNRESOLVED_OVERLAP = "unresolved_overlap"


@dataclass(frozen=True)
class ShiftCandidate:
    """A marker targeted by a shift together with its proposed bounds.

    ``new_start``/``new_end`` are already clamped to ``[0, duration]``;
    ``raw_start``/``raw_end`` keep the unclamped values for display.
    """

    marker: Marker
    new_start: int
    new_end: int
    raw_start: int
    raw_end: int
    classification: Classification = Classification.CLEAN
    enabled: bool = True
    linked: bool = False
    overlaps: Tuple[int, ...] = ()

    @property
    def parent_id(self) -> int:
        return self.marker.parent_id

    @property
    def committable(self) -> bool:
        return self.enabled and self.classification is not Classification.INVALID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "markerId": self.marker.id,
            "parentId": self.marker.parent_id,
            "newStart": self.new_start,
            "newEnd": self.new_end,
            "classification": self.classification.value,
            "enabled": self.enabled,
            "linked": self.linked,
            "overlaps": list(self.overlaps),
        }


@dataclass
class ShiftResult:
    applied: bool
    conflict: bool
    overflow: bool
    all_markers: List[Marker] = field(default_factory=list)
    episode_data: Optional[Dict[int, ParentItem]] = None
    candidates: List[ShiftCandidate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "applied": self.applied,
            "conflict": self.conflict,
            "overflow": self.overflow,
            "allMarkers": [marker.to_dict() for marker in self.all_markers],
        }
        if self.episode_data is not None:
            payload["episodeData"] = {
                str(parent_id): parent.to_dict()
                for parent_id, parent in sorted(self.episode_data.items())
            }
        if self.candidates:
            payload["candidates"] = [candidate.to_dict() for candidate in self.candidates]
        return payload


class OperationKind(str, Enum):
    DELETE = "delete"
    UPDATE = "update"
    INSERT = "insert"


# Statement order inside one transaction, whatever order operations are queued in.
# Index renumbering of the touched parents always runs after all of them.
OPERATION_ORDER = {
    OperationKind.DELETE: 0,
    OperationKind.UPDATE: 1,
    OperationKind.INSERT: 2,
}


@dataclass(frozen=True)
class MarkerOperation:
    kind: OperationKind
    parent_id: int
    marker_id: Optional[int] = None
    start: Optional[int] = None
    end: Optional[int] = None
    index: Optional[int] = None
    marker_type: Optional[MarkerType] = None
    final: bool = False
    modified_date: Optional[int] = None


__all__ = [
    "Classification",
    "Marker",
    "MarkerFilter",
    "MarkerOperation",
    "MarkerType",
    "OPERATION_ORDER",
    "OperationKind",
    "ParentItem",
    "ShiftCandidate",
    "ShiftRequest",
    "ShiftResult",
]
