"""Turn a shift request into classified candidates without touching storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence

from .conflicts import classify_bounds, detect_overlaps
from .errors import ShiftValidationError
from .models import Classification, Marker, ParentItem, ShiftCandidate, ShiftRequest


LOGGER = logging.getLogger(__name__)


def group_by_parent(markers: Iterable[Marker]) -> Dict[int, List[Marker]]:
    """Map each parent id to its markers ordered by start."""

    grouped: Dict[int, List[Marker]] = {}
    for marker in markers:
        grouped.setdefault(marker.parent_id, []).append(marker)
    for group in grouped.values():
        group.sort(key=lambda item: (item.start, item.id))
    return grouped


def plan(
    markers: Sequence[Marker],
    request: ShiftRequest,
    parent_durations: Mapping[int, ParentItem],
) -> List[ShiftCandidate]:
    """Build classified candidates for every marker matching the request filter.

    Markers outside the filter are never candidates but still take part in
    overlap detection.
    """

    candidates: List[ShiftCandidate] = []
    grouped = group_by_parent(markers)
    for parent_id in sorted(grouped):
        targets = [item for item in grouped[parent_id] if request.marker_filter.matches(item.marker_type)]
        if not targets:
            continue
        parent = parent_durations.get(parent_id)
        if parent is None:
            raise ShiftValidationError(
                f"Unable to find the duration of item {parent_id}; it does not appear to be valid."
            )
        for marker in targets:
            raw_start = marker.start + request.start_delta
            raw_end = marker.end + request.end_delta
            new_start, new_end, classification = classify_bounds(raw_start, raw_end, parent.duration)
            candidates.append(
                ShiftCandidate(
                    marker=marker,
                    new_start=new_start,
                    new_end=new_end,
                    raw_start=raw_start,
                    raw_end=raw_end,
                    classification=classification,
                    enabled=not request.is_ignored(marker),
                )
            )

    return detect_overlaps(candidates, markers)


@dataclass
class ShiftPlan:
    """Candidates for one request plus the context they were computed from."""

    request: ShiftRequest
    markers: List[Marker]
    parents: Dict[int, ParentItem]
    candidates: List[ShiftCandidate] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        markers: Sequence[Marker],
        request: ShiftRequest,
        parents: Mapping[int, ParentItem],
    ) -> "ShiftPlan":
        candidates = plan(markers, request, parents)
        LOGGER.debug(
            "Planned shift for item %s: %s candidates from %s markers (start=%s, end=%s, filter=%s)",
            request.metadata_id,
            len(candidates),
            len(markers),
            request.start_delta,
            request.end_delta,
            int(request.marker_filter),
        )
        return cls(request=request, markers=list(markers), parents=dict(parents), candidates=candidates)

    @property
    def enabled(self) -> List[ShiftCandidate]:
        return [candidate for candidate in self.candidates if candidate.enabled]

    @property
    def overflow(self) -> bool:
        return any(item.classification is Classification.INVALID for item in self.enabled)

    @property
    def linked_parents(self) -> List[int]:
        """Parents with more than one enabled candidate; these need manual resolution."""

        counts: Dict[int, int] = {}
        for candidate in self.enabled:
            counts[candidate.parent_id] = counts.get(candidate.parent_id, 0) + 1
        return sorted(parent_id for parent_id, count in counts.items() if count > 1)

    @property
    def conflict(self) -> bool:
        if self.linked_parents:
            return True
        return any(
            item.classification is Classification.UNRESOLVED_OVERLAP for item in self.enabled
        )

    @property
    def committable(self) -> List[ShiftCandidate]:
        return [candidate for candidate in self.candidates if candidate.committable]

    def affected_parents(self) -> Dict[int, ParentItem]:
        parent_ids = {candidate.parent_id for candidate in self.candidates}
        return {parent_id: self.parents[parent_id] for parent_id in sorted(parent_ids)}


__all__ = ["ShiftPlan", "group_by_parent", "plan"]
