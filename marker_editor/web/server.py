"""FastAPI application exposing the bulk marker shift engine."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import AppConfig
from ..logging_utils import bind_request_id, new_correlation_id, reset_request_id
from ..services.backup import MarkerActionLog
from ..services.events import emit_db_event, emit_structured_event
from ..services.storage import MarkerRepository
from ..shifting import (
    MarkerEditorError,
    MarkerFilter,
    MetadataNotFoundError,
    ShiftEngine,
    ShiftSession,
    ShiftStateError,
    ShiftValidationError,
    StorageError,
)


LOGGER = logging.getLogger(__name__)

_REQUEST_ID_HEADER = b"x-request-id"


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event("APP_EVENT", message, payload=context, logger=LOGGER)


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and echo it back."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        async def _send_with_request_id(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = list(message.get("headers") or [])
                headers.append((_REQUEST_ID_HEADER, request_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        token = bind_request_id(request_id)
        try:
            await self.app(scope, receive, _send_with_request_id)
        finally:
            reset_request_id(token)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _raise_http_error(error: MarkerEditorError) -> NoReturn:
    if isinstance(error, MetadataNotFoundError):
        raise HTTPException(status_code=404, detail=str(error)) from error
    if isinstance(error, ShiftValidationError):
        raise HTTPException(status_code=400, detail=str(error)) from error
    if isinstance(error, ShiftStateError):
        raise HTTPException(status_code=409, detail=str(error)) from error
    if isinstance(error, StorageError):
        LOGGER.error("Storage failure: %s", error)
        raise HTTPException(status_code=500, detail=str(error)) from error
    raise HTTPException(status_code=500, detail=str(error)) from error


class CheckShiftPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    metadata_id: int = Field(..., alias="id", ge=1)
    apply_to: int = Field(int(MarkerFilter.ALL), alias="applyTo", ge=1, le=int(MarkerFilter.ALL))


class ShiftPayload(CheckShiftPayload):
    start_shift: int = Field(..., alias="startShift")
    end_shift: Optional[int] = Field(None, alias="endShift")
    force: bool = False
    ignored: List[int] = Field(default_factory=list)


class ResumeShiftPayload(BaseModel):
    session: Dict[str, Any]
    ignored: List[int] = Field(default_factory=list)
    force: bool = False


def create_app(
    repository: MarkerRepository,
    *,
    config: AppConfig,
    action_log: Optional[MarkerActionLog] = None,
    engine: Optional[ShiftEngine] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    app = FastAPI(
        title="Marker Editor",
        description="Bulk edit intro, credits and ad markers",
        root_path=_normalize_root_path(root_path),
    )

    configure_emitter = getattr(repository, "configure_event_emitter", None)
    if callable(configure_emitter):
        configure_emitter(emit_db_event)

    shift_engine = engine or ShiftEngine(repository, action_log=action_log)
    app.state.config = config
    app.state.repository = repository
    app.state.engine = shift_engine
    app.state.action_log = action_log
    app.state.server = None

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/markers/{metadata_id}")
    async def list_markers(metadata_id: int) -> Dict[str, Any]:
        try:
            markers = repository.get_markers(metadata_id)
        except MarkerEditorError as error:
            _raise_http_error(error)
        _log_event("Listed markers", metadata_id=metadata_id, marker_count=len(markers))
        return {"markers": [marker.to_dict() for marker in markers]}

    @app.post("/api/check_shift")
    async def check_shift(payload: CheckShiftPayload) -> Dict[str, Any]:
        _log_event("Checking shift", metadata_id=payload.metadata_id, apply_to=payload.apply_to)
        try:
            result = await shift_engine.check_shift(payload.metadata_id, payload.apply_to)
        except MarkerEditorError as error:
            _raise_http_error(error)
        return result.to_dict()

    @app.post("/api/shift")
    async def shift_markers(payload: ShiftPayload) -> Dict[str, Any]:
        _log_event(
            "Shifting markers",
            metadata_id=payload.metadata_id,
            start_shift=payload.start_shift,
            end_shift=payload.end_shift,
            apply_to=payload.apply_to,
            force=payload.force,
            ignored=payload.ignored,
        )
        try:
            session = ShiftSession.start(
                payload.metadata_id,
                payload.start_shift,
                payload.end_shift,
                payload.apply_to,
                force=payload.force,
                ignored_marker_ids=payload.ignored,
            )
            next_session, result = await shift_engine.run(session)
        except MarkerEditorError as error:
            _raise_http_error(error)
        return {**result.to_dict(), "session": next_session.to_dict()}

    @app.post("/api/shift/resume")
    async def resume_shift(payload: ResumeShiftPayload) -> Dict[str, Any]:
        try:
            session = ShiftSession.from_dict(payload.session)
            session = session.resubmit(payload.ignored, force=payload.force)
            _log_event(
                "Resuming shift",
                metadata_id=session.metadata_id,
                ignored=payload.ignored,
                force=payload.force,
            )
            next_session, result = await shift_engine.run(session)
        except MarkerEditorError as error:
            _raise_http_error(error)
        return {**result.to_dict(), "session": next_session.to_dict()}

    @app.get("/api/actions")
    async def list_actions(
        parent_id: Optional[int] = Query(None, ge=1),
        limit: int = Query(50, ge=1, le=500),
    ) -> Dict[str, Any]:
        if action_log is None:
            return {"actions": []}
        records = action_log.list_actions(parent_id=parent_id, limit=limit)
        return {"actions": [record.to_dict() for record in records]}

    return app


__all__ = ["create_app"]
