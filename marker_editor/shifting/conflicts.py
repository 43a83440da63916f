"""Bounds classification and overlap detection for shift candidates.

Everything here is pure: inputs are never mutated and the same inputs always
produce the same annotated candidates.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import Classification, Marker, ShiftCandidate


def classify_bounds(raw_start: int, raw_end: int, duration: int) -> Tuple[int, int, Classification]:
    """Clamp a shifted interval to ``[0, duration]`` and classify the result.

    Returns the clamped ``(start, end)`` pair with ``CLEAN``, ``TRUNCATED`` or
    ``INVALID``. An interval that ends before the item starts, begins after it
    ends, inverts, or collapses to zero width once clamped is ``INVALID``.
    """

    new_start = max(0, min(raw_start, duration))
    new_end = max(0, min(raw_end, duration))
    if raw_end < 0 or raw_start > duration or raw_end <= raw_start or new_end <= new_start:
        return new_start, new_end, Classification.INVALID
    if raw_start < 0 or raw_end > duration:
        return new_start, new_end, Classification.TRUNCATED
    return new_start, new_end, Classification.CLEAN


def intervals_overlap(first_start: int, first_end: int, second_start: int, second_end: int) -> bool:
    """Inclusive overlap test; touching endpoints count as overlapping."""

    return first_end >= second_start and first_start <= second_end


@dataclass(frozen=True)
class _Obstacle:
    marker_id: int
    start: int
    end: int


def _bounds_classification(candidate: ShiftCandidate) -> Classification:
    if candidate.classification is Classification.INVALID:
        return Classification.INVALID
    if (candidate.raw_start, candidate.raw_end) != (candidate.new_start, candidate.new_end):
        return Classification.TRUNCATED
    return Classification.CLEAN


def _group_candidates(candidates: Iterable[ShiftCandidate]) -> Dict[int, List[ShiftCandidate]]:
    grouped: Dict[int, List[ShiftCandidate]] = {}
    for candidate in candidates:
        grouped.setdefault(candidate.parent_id, []).append(candidate)
    return grouped


def _obstacles_for_parent(
    group: Sequence[ShiftCandidate],
    context: Sequence[Marker],
) -> List[_Obstacle]:
    # Committable candidates occupy their shifted position. Ignored and
    # invalid candidates are never written, so like untargeted markers they
    # stay where they are.
    obstacles: List[_Obstacle] = []
    candidate_ids = set()
    for candidate in group:
        candidate_ids.add(candidate.marker.id)
        if candidate.enabled and candidate.classification is not Classification.INVALID:
            obstacles.append(_Obstacle(candidate.marker.id, candidate.new_start, candidate.new_end))
        else:
            obstacles.append(_Obstacle(candidate.marker.id, candidate.marker.start, candidate.marker.end))
    for marker in context:
        if marker.id not in candidate_ids:
            obstacles.append(_Obstacle(marker.id, marker.start, marker.end))
    return obstacles


def detect_overlaps(
    candidates: Sequence[ShiftCandidate],
    all_markers_in_scope: Sequence[Marker],
) -> List[ShiftCandidate]:
    """Return ``candidates`` annotated with links and overlaps.

    A candidate is ``linked`` when its parent has more than one candidate in
    scope. An enabled, non-invalid candidate whose shifted bounds touch any
    other obstacle in the same parent becomes ``UNRESOLVED_OVERLAP`` and lists
    the ids it collides with.
    """

    context_by_parent: Dict[int, List[Marker]] = {}
    for marker in all_markers_in_scope:
        context_by_parent.setdefault(marker.parent_id, []).append(marker)

    annotated: Dict[int, ShiftCandidate] = {}
    for parent_id, group in _group_candidates(candidates).items():
        obstacles = _obstacles_for_parent(group, context_by_parent.get(parent_id, ()))
        linked = len(group) > 1
        for candidate in group:
            overlaps: Tuple[int, ...] = ()
            classification = _bounds_classification(candidate)
            if candidate.enabled and classification is not Classification.INVALID:
                overlaps = tuple(
                    sorted(
                        obstacle.marker_id
                        for obstacle in obstacles
                        if obstacle.marker_id != candidate.marker.id
                        and intervals_overlap(
                            obstacle.start, obstacle.end, candidate.new_start, candidate.new_end
                        )
                    )
                )
                if overlaps:
                    classification = Classification.UNRESOLVED_OVERLAP
            annotated[candidate.marker.id] = replace(
                candidate,
                classification=classification,
                linked=linked,
                overlaps=overlaps,
            )

    return [annotated[candidate.marker.id] for candidate in candidates]


__all__ = ["classify_bounds", "detect_overlaps", "intervals_overlap"]
