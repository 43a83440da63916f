from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Sequence

from marker_editor.shifting import (
    Marker,
    MarkerOperation,
    MarkerType,
    OperationKind,
    ParentItem,
    ShiftCandidate,
    TransactionalApplier,
)


class RecordingStore:
    def __init__(self, markers: List[Marker]) -> None:
        self.markers = markers
        self.batches: List[List[MarkerOperation]] = []

    def resolve_parent_ids(self, metadata_id: int) -> List[int]:
        return [metadata_id]

    def get_markers_for_parents(self, parent_ids: Iterable[int]) -> List[Marker]:
        wanted = set(parent_ids)
        return [marker for marker in self.markers if marker.parent_id in wanted]

    def get_parent_durations(self, parent_ids: Iterable[int]) -> Dict[int, ParentItem]:
        return {parent_id: ParentItem(metadata_id=parent_id, duration=600000) for parent_id in parent_ids}

    async def commit_batch(self, operations: Sequence[MarkerOperation]) -> None:
        self.batches.append(list(operations))


def _marker(marker_id: int, start: int, end: int, index: int, **kwargs) -> Marker:
    return Marker(
        id=marker_id,
        parent_id=kwargs.pop("parent_id", 10),
        marker_type=kwargs.pop("marker_type", MarkerType.INTRO),
        start=start,
        end=end,
        index=index,
        **kwargs,
    )


def _moved(marker: Marker, new_start: int, new_end: int) -> ShiftCandidate:
    return ShiftCandidate(
        marker=marker,
        new_start=new_start,
        new_end=new_end,
        raw_start=new_start,
        raw_end=new_end,
    )


def test_build_operations_stamps_edit_time() -> None:
    store = RecordingStore([])
    applier = TransactionalApplier(store, clock=lambda: 1234.9)
    system = _marker(1, 0, 1000, 0)
    user = _marker(2, 2000, 3000, 1, created_by_user=True, marker_type=MarkerType.CREDITS)

    operations = applier.build_operations([_moved(system, 100, 1100), _moved(user, 2100, 3100)])

    assert [(op.kind, op.marker_id, op.start, op.end, op.modified_date) for op in operations] == [
        (OperationKind.UPDATE, 1, 100, 1100, 1234),
        (OperationKind.UPDATE, 2, 2100, 3100, -1234),
    ]


def test_build_operations_only_queues_new_bounds() -> None:
    applier = TransactionalApplier(RecordingStore([]), clock=lambda: 0)
    credits = _marker(2, 560000, 600000, 1, marker_type=MarkerType.CREDITS, parent_id=11)

    (operation,) = applier.build_operations([_moved(credits, 100000, 140000)])

    # Index renumbering is left to the store's commit.
    assert operation.kind is OperationKind.UPDATE
    assert operation.parent_id == 11
    assert operation.index is None


def test_apply_commits_one_batch_and_reads_back() -> None:
    intro = _marker(1, 500000, 550000, 0)
    movie = _marker(5, 0, 100, 0, parent_id=20)
    store = RecordingStore([intro, movie])
    applier = TransactionalApplier(store, clock=lambda: 0)

    updated = asyncio.run(applier.apply([_moved(intro, 400000, 450000)]))

    assert len(store.batches) == 1
    assert [op.marker_id for op in store.batches[0]] == [1]
    assert updated == [intro]


def test_apply_without_candidates_skips_the_store() -> None:
    store = RecordingStore([])

    assert asyncio.run(TransactionalApplier(store).apply([])) == []
    assert store.batches == []
