"""Persist a resolved set of shift candidates in a single transaction."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Protocol, Sequence

from .models import Marker, MarkerOperation, OperationKind, ParentItem, ShiftCandidate


LOGGER = logging.getLogger(__name__)


class MarkerStore(Protocol):
    """What the shift engine needs from the media server database."""

    def resolve_parent_ids(self, metadata_id: int) -> List[int]:
        ...

    def get_markers_for_parents(self, parent_ids: Iterable[int]) -> List[Marker]:
        ...

    def get_parent_durations(self, parent_ids: Iterable[int]) -> Dict[int, ParentItem]:
        ...

    async def commit_batch(self, operations: Sequence[MarkerOperation]) -> None:
        ...


class TransactionalApplier:
    """Translate candidates into store operations and commit them atomically.

    The store renumbers every touched parent inside the same transaction, so
    only the new bounds are queued here.
    """

    def __init__(self, store: MarkerStore, *, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    def _modified_date(self, marker: Marker) -> int:
        # The media server flags user-created markers with a negative edit time.
        now = int(self._clock())
        return -now if marker.created_by_user else now

    def build_operations(self, candidates: Sequence[ShiftCandidate]) -> List[MarkerOperation]:
        return [
            MarkerOperation(
                kind=OperationKind.UPDATE,
                parent_id=candidate.parent_id,
                marker_id=candidate.marker.id,
                start=candidate.new_start,
                end=candidate.new_end,
                modified_date=self._modified_date(candidate.marker),
            )
            for candidate in candidates
        ]

    async def apply(self, candidates: Sequence[ShiftCandidate]) -> List[Marker]:
        """Commit ``candidates`` and return every marker of the touched parents.

        A storage failure propagates as ``StorageError`` after the store has
        rolled the whole batch back.
        """

        if not candidates:
            LOGGER.debug("Nothing to apply")
            return []

        operations = self.build_operations(candidates)
        touched = sorted({candidate.parent_id for candidate in candidates})
        LOGGER.debug("Committing %s marker updates across %s items", len(operations), len(touched))
        await self._store.commit_batch(operations)
        return self._store.get_markers_for_parents(touched)


__all__ = ["MarkerStore", "TransactionalApplier"]
