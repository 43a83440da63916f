"""The check, customize and apply flow for bulk marker shifts.

Nothing is kept between calls. A :class:`ShiftSession` carries the request and
its current state; the caller hands it back (usually after serialising it
through the web client) together with the markers it wants ignored.

::

    initial -> checked -> customizing -> resolved -> applied
                       \\-> resolved -> applied      \\-> aborted
    any non-terminal state -> applied   (force)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..services.events import emit_shift_event
from .applier import MarkerStore, TransactionalApplier
from .errors import ShiftStateError, ShiftValidationError
from .locks import ParentLockRegistry
from .models import Marker, MarkerFilter, ShiftRequest, ShiftResult
from .planner import ShiftPlan


LOGGER = logging.getLogger(__name__)


class ShiftState(str, Enum):
    INITIAL = "initial"
    CHECKED = "checked"
    CUSTOMIZING = "customizing"
    RESOLVED = "resolved"
    APPLIED = "applied"
    ABORTED = "aborted"


_TRANSITIONS: Dict[ShiftState, FrozenSet[ShiftState]] = {
    ShiftState.INITIAL: frozenset({ShiftState.CHECKED, ShiftState.APPLIED}),
    ShiftState.CHECKED: frozenset({ShiftState.CUSTOMIZING, ShiftState.RESOLVED, ShiftState.APPLIED}),
    ShiftState.CUSTOMIZING: frozenset(
        {ShiftState.CUSTOMIZING, ShiftState.RESOLVED, ShiftState.ABORTED, ShiftState.APPLIED}
    ),
    ShiftState.RESOLVED: frozenset({ShiftState.APPLIED}),
    ShiftState.APPLIED: frozenset(),
    # A retry after an abort starts customizing again with a new ignore list.
    ShiftState.ABORTED: frozenset({ShiftState.CUSTOMIZING}),
}

TERMINAL_STATES = frozenset({ShiftState.APPLIED, ShiftState.ABORTED})


@dataclass(frozen=True)
class ShiftSession:
    metadata_id: int
    start_delta: int
    end_delta: int
    marker_filter: MarkerFilter = MarkerFilter.ALL
    force: bool = False
    ignored_marker_ids: FrozenSet[int] = frozenset()
    state: ShiftState = ShiftState.INITIAL

    @classmethod
    def start(
        cls,
        metadata_id: int,
        start_delta: int,
        end_delta: Optional[int] = None,
        marker_filter: int | MarkerFilter = MarkerFilter.ALL,
        *,
        force: bool = False,
        ignored_marker_ids: Iterable[int] = (),
    ) -> "ShiftSession":
        """Begin a shift; ``end_delta`` defaults to ``start_delta``.

        Passing ``ignored_marker_ids`` means the caller already saw a check
        and customized it, so the session starts out customizing.
        """

        session = cls(
            metadata_id=metadata_id,
            start_delta=start_delta,
            end_delta=start_delta if end_delta is None else end_delta,
            marker_filter=MarkerFilter.parse(marker_filter),
            force=force,
        )
        ignored = frozenset(ignored_marker_ids)
        if ignored:
            session = session.transition(ShiftState.CHECKED).resubmit(ignored, force=force)
        return session

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def request(self) -> ShiftRequest:
        return ShiftRequest(
            metadata_id=self.metadata_id,
            start_delta=self.start_delta,
            end_delta=self.end_delta,
            marker_filter=self.marker_filter,
            force=self.force,
            ignored_marker_ids=self.ignored_marker_ids,
        )

    def transition(self, state: ShiftState) -> "ShiftSession":
        if state not in _TRANSITIONS[self.state]:
            raise ShiftStateError(f"Cannot move a shift session from {self.state.value} to {state.value}")
        return replace(self, state=state)

    def resubmit(self, ignored_marker_ids: Iterable[int] = (), *, force: bool = False) -> "ShiftSession":
        """Return the session the caller sends back after customizing."""

        customizing = self.transition(ShiftState.CUSTOMIZING)
        return replace(customizing, ignored_marker_ids=frozenset(ignored_marker_ids), force=force)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.metadata_id,
            "startShift": self.start_delta,
            "endShift": self.end_delta,
            "applyTo": int(self.marker_filter),
            "force": self.force,
            "ignored": sorted(self.ignored_marker_ids),
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ShiftSession":
        try:
            return cls(
                metadata_id=int(payload["id"]),
                start_delta=int(payload["startShift"]),
                end_delta=int(payload["endShift"]),
                marker_filter=MarkerFilter.parse(int(payload.get("applyTo", MarkerFilter.ALL))),
                force=bool(payload.get("force", False)),
                ignored_marker_ids=frozenset(int(item) for item in payload.get("ignored", ())),
                state=ShiftState(payload.get("state", ShiftState.INITIAL.value)),
            )
        except (KeyError, TypeError, ValueError) as error:
            raise ShiftValidationError(f"Malformed shift session: {error}") from error


class ActionRecorder(Protocol):
    def record_shift(self, before: Sequence[Marker], after: Sequence[Marker]) -> None:
        ...


class ShiftEngine:
    """Evaluate shift sessions against a marker store."""

    def __init__(
        self,
        store: MarkerStore,
        *,
        applier: Optional[TransactionalApplier] = None,
        locks: Optional[ParentLockRegistry] = None,
        action_log: Optional[ActionRecorder] = None,
    ) -> None:
        self._store = store
        self._applier = applier or TransactionalApplier(store)
        self._locks = locks or ParentLockRegistry()
        self._action_log = action_log

    def _load_plan(self, request: ShiftRequest, parent_ids: Sequence[int]) -> ShiftPlan:
        markers = self._store.get_markers_for_parents(parent_ids)
        marker_parents = sorted({marker.parent_id for marker in markers})
        parents = self._store.get_parent_durations(marker_parents) if marker_parents else {}
        shift_plan = ShiftPlan.build(markers, request, parents)
        if not shift_plan.candidates:
            raise ShiftValidationError(
                f"No markers under item {request.metadata_id} match the requested marker types."
            )
        return shift_plan

    async def check_shift(
        self,
        metadata_id: int,
        marker_filter: int | MarkerFilter = MarkerFilter.ALL,
    ) -> ShiftResult:
        """Dry run: report conflicts for the markers in scope without moving anything."""

        request = ShiftRequest(
            metadata_id=metadata_id,
            start_delta=0,
            end_delta=0,
            marker_filter=MarkerFilter.parse(marker_filter),
        )
        parent_ids = self._store.resolve_parent_ids(metadata_id)
        shift_plan = self._load_plan(request, parent_ids)
        emit_shift_event(
            ShiftState.CHECKED.value,
            "Checked shift",
            payload={"metadata_id": metadata_id, "conflict": shift_plan.conflict},
        )
        return ShiftResult(
            applied=False,
            conflict=shift_plan.conflict,
            overflow=shift_plan.overflow,
            all_markers=shift_plan.markers,
            episode_data=shift_plan.affected_parents(),
            candidates=shift_plan.candidates,
        )

    async def shift(
        self,
        metadata_id: int,
        start_delta: int,
        end_delta: Optional[int] = None,
        marker_filter: int | MarkerFilter = MarkerFilter.ALL,
        *,
        force: bool = False,
        ignored_marker_ids: Iterable[int] = (),
    ) -> ShiftResult:
        """One-shot shift; an ignore list means the caller already customized."""

        session = ShiftSession.start(
            metadata_id,
            start_delta,
            end_delta,
            marker_filter,
            force=force,
            ignored_marker_ids=ignored_marker_ids,
        )
        _, result = await self.run(session)
        return result

    async def run(self, session: ShiftSession) -> Tuple[ShiftSession, ShiftResult]:
        """Advance ``session`` as far as it can go and return it with the result."""

        if session.terminal:
            raise ShiftStateError(f"Shift session is already {session.state.value}")
        if session.state is ShiftState.RESOLVED:
            raise ShiftStateError("Resolved shift sessions are applied immediately and cannot be resumed")
        if session.start_delta == 0 and session.end_delta == 0:
            raise ShiftValidationError("Shift must move the start or the end of the markers.")

        request = session.request()
        parent_ids = self._store.resolve_parent_ids(request.metadata_id)
        async with self._locks.hold(parent_ids):
            shift_plan = self._load_plan(request, parent_ids)
            if session.state is ShiftState.INITIAL and not request.force:
                session = session.transition(ShiftState.CHECKED)

            if not request.force and (shift_plan.conflict or shift_plan.overflow):
                next_state = (
                    ShiftState.CUSTOMIZING
                    if session.state is ShiftState.CHECKED
                    else ShiftState.ABORTED
                )
                session = session.transition(next_state)
                emit_shift_event(
                    next_state.value,
                    "Shift needs resolution",
                    payload={
                        "metadata_id": request.metadata_id,
                        "conflict": shift_plan.conflict,
                        "overflow": shift_plan.overflow,
                        "linked_parents": shift_plan.linked_parents,
                    },
                )
                return session, ShiftResult(
                    applied=False,
                    conflict=shift_plan.conflict,
                    overflow=shift_plan.overflow,
                    all_markers=shift_plan.markers,
                    episode_data=shift_plan.affected_parents(),
                    candidates=shift_plan.candidates,
                )

            if not request.force:
                session = session.transition(ShiftState.RESOLVED)
            elif shift_plan.conflict or shift_plan.overflow:
                LOGGER.info(
                    "Forcing shift for item %s despite conflicts (conflict=%s, overflow=%s)",
                    request.metadata_id,
                    shift_plan.conflict,
                    shift_plan.overflow,
                )

            to_apply = shift_plan.committable
            updated = await self._applier.apply(to_apply)
            session = session.transition(ShiftState.APPLIED)

        if to_apply and self._action_log is not None:
            self._action_log.record_shift([candidate.marker for candidate in to_apply], updated)

        LOGGER.info(
            "Shifted %s markers for item %s [startShift=%s, endShift=%s]",
            len(to_apply),
            request.metadata_id,
            request.start_delta,
            request.end_delta,
        )
        emit_shift_event(
            ShiftState.APPLIED.value,
            "Shift applied",
            payload={
                "metadata_id": request.metadata_id,
                "applied_count": len(to_apply),
                "dropped_count": len(shift_plan.enabled) - len(to_apply),
                "forced": request.force,
            },
        )
        return session, ShiftResult(
            applied=True,
            conflict=shift_plan.conflict,
            overflow=shift_plan.overflow,
            all_markers=updated if to_apply else _markers_in_scope(shift_plan),
        )


def _markers_in_scope(shift_plan: ShiftPlan) -> List[Marker]:
    parent_ids = {candidate.parent_id for candidate in shift_plan.candidates}
    return [marker for marker in shift_plan.markers if marker.parent_id in parent_ids]


__all__ = ["ActionRecorder", "ShiftEngine", "ShiftSession", "ShiftState", "TERMINAL_STATES"]
