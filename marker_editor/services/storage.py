"""Marker persistence backed by the media server's SQLite database."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig
from ..shifting.errors import MetadataNotFoundError, ShiftValidationError, StorageError
from ..shifting.models import (
    OPERATION_ORDER,
    Marker,
    MarkerOperation,
    MarkerType,
    OperationKind,
    ParentItem,
)


LOGGER = logging.getLogger(__name__)


MARKER_TAG_TYPE = 12
FINAL_CREDITS_FLAG = "pv%3Afinal=1"
_EXTRA_DATA = {
    (MarkerType.INTRO, False): "pv%3Aversion=5",
    (MarkerType.CREDITS, False): "pv%3Aversion=4",
    (MarkerType.CREDITS, True): "pv%3Afinal=1&pv%3Aversion=4",
    (MarkerType.AD, False): "pv%3Aversion=5",
}

# SQLite builds before 3.32 cap bound parameters at 999.
_MAX_PARAMETERS = 500


class MetadataType:
    MOVIE = 1
    SHOW = 2
    SEASON = 3
    EPISODE = 4


_MARKER_FIELDS = """
    taggings.id AS id,
    taggings.metadata_item_id AS parent_id,
    taggings.`index` AS marker_index,
    taggings.text AS marker_type,
    taggings.time_offset AS start,
    taggings.end_time_offset AS "end",
    taggings.thumb_url AS modified_date,
    taggings.extra_data AS extra_data
"""


def _chunked(values: Sequence[int], size: int = _MAX_PARAMETERS) -> Iterator[Sequence[int]]:
    for offset in range(0, len(values), size):
        yield values[offset : offset + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _parse_modified_date(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class MarkerRepository:
    """Read markers and their parent items; write shift batches transactionally."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path: Path = config.plex_database
        self._event_emitter: Optional[Callable[..., None]] = event_emitter
        self._marker_tag_id: Optional[int] = None

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting DB timing events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any):
        """Emit a structured event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {key: value for key, value in event_payload.items() if value is not None}
            self._event_emitter(action, payload=filtered, duration_ms=duration_ms)

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters or ())
        with self._track_db_event(
            action,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount is not None and cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        if not self._db_path.exists():
            raise StorageError(f"Media server database '{self._db_path}' does not exist")
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as error:
            raise StorageError(f"Unable to open database '{self._db_path}': {error}") from error
        connection.row_factory = sqlite3.Row
        return connection

    @contextlib.contextmanager
    def _reading(self, action: str) -> Iterator[sqlite3.Connection]:
        connection = self._connect()
        try:
            yield connection
        except sqlite3.Error as error:
            raise StorageError(f"{action} failed: {error}") from error
        finally:
            connection.close()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @property
    def marker_tag_id(self) -> int:
        """Id of the ``tags`` row every marker tagging points at."""

        if self._marker_tag_id is None:
            with self._reading("marker tag lookup") as connection:
                row = self._execute(
                    connection,
                    "SELECT id FROM tags WHERE tag_type = ? ORDER BY id LIMIT 1",
                    (MARKER_TAG_TYPE,),
                    action="tags.marker_tag",
                ).fetchone()
            if row is None:
                raise StorageError(
                    "The media server database must contain the marker tag "
                    f"(tags.tag_type={MARKER_TAG_TYPE}) before markers can be edited."
                )
            self._marker_tag_id = int(row["id"])
            LOGGER.debug("Resolved marker tag id=%s", self._marker_tag_id)
        return self._marker_tag_id

    def resolve_parent_ids(self, metadata_id: int) -> List[int]:
        """Return the episode or movie ids that hold markers for ``metadata_id``."""

        with self._reading("metadata lookup") as connection:
            row = self._execute(
                connection,
                "SELECT metadata_type FROM metadata_items WHERE id = ?",
                (metadata_id,),
                action="metadata_items.type",
            ).fetchone()
            if row is None:
                raise MetadataNotFoundError(metadata_id)

            metadata_type = int(row["metadata_type"])
            if metadata_type in (MetadataType.MOVIE, MetadataType.EPISODE):
                return [metadata_id]
            if metadata_type == MetadataType.SEASON:
                rows = self._execute(
                    connection,
                    """
                    SELECT id FROM metadata_items
                    WHERE parent_id = ? AND metadata_type = ?
                    ORDER BY `index`, id
                    """,
                    (metadata_id, MetadataType.EPISODE),
                    action="metadata_items.season_episodes",
                ).fetchall()
            elif metadata_type == MetadataType.SHOW:
                rows = self._execute(
                    connection,
                    """
                    SELECT episodes.id AS id FROM metadata_items episodes
                        INNER JOIN metadata_items seasons ON episodes.parent_id = seasons.id
                    WHERE seasons.parent_id = ? AND episodes.metadata_type = ?
                    ORDER BY seasons.`index`, episodes.`index`, episodes.id
                    """,
                    (metadata_id, MetadataType.EPISODE),
                    action="metadata_items.show_episodes",
                ).fetchall()
            else:
                raise ShiftValidationError(
                    f"Item {metadata_id} is not a movie, episode, season, or show"
                )

        parent_ids = [int(item["id"]) for item in rows]
        LOGGER.debug("Item %s resolved to %s parent items", metadata_id, len(parent_ids))
        return parent_ids

    def _row_to_marker(self, row: sqlite3.Row) -> Optional[Marker]:
        try:
            marker_type = MarkerType(row["marker_type"])
        except ValueError:
            LOGGER.warning("Skipping marker %s with unknown type '%s'", row["id"], row["marker_type"])
            return None
        modified_date = _parse_modified_date(row["modified_date"])
        return Marker(
            id=int(row["id"]),
            parent_id=int(row["parent_id"]),
            marker_type=marker_type,
            start=int(row["start"]),
            end=int(row["end"]),
            index=int(row["marker_index"] or 0),
            created_by_user=modified_date is not None and modified_date < 0,
            final=FINAL_CREDITS_FLAG in (row["extra_data"] or ""),
            modified_date=modified_date,
        )

    def get_markers_for_parents(self, parent_ids: Iterable[int]) -> List[Marker]:
        """Return every marker under ``parent_ids`` ordered by parent, then start."""

        identifiers = sorted(set(int(item) for item in parent_ids))
        if not identifiers:
            return []
        tag_id = self.marker_tag_id
        markers: List[Marker] = []
        with self._track_db_event("get_markers_for_parents", parent_count=len(identifiers)) as event:
            with self._reading("marker lookup") as connection:
                for chunk in _chunked(identifiers):
                    rows = self._execute(
                        connection,
                        f"""
                        SELECT {_MARKER_FIELDS}
                        FROM taggings
                        WHERE taggings.tag_id = ?
                            AND taggings.metadata_item_id IN ({_placeholders(len(chunk))})
                        """,
                        (tag_id, *chunk),
                        action="taggings.markers_for_parents",
                    ).fetchall()
                    for row in rows:
                        marker = self._row_to_marker(row)
                        if marker is not None:
                            markers.append(marker)
            event["marker_count"] = len(markers)
        markers.sort(key=lambda item: (item.parent_id, item.start, item.id))
        return markers

    def get_markers(self, metadata_id: int) -> List[Marker]:
        return self.get_markers_for_parents(self.resolve_parent_ids(metadata_id))

    def get_parent_durations(self, parent_ids: Iterable[int]) -> Dict[int, ParentItem]:
        """Return episode/movie details keyed by id; items without media are omitted."""

        identifiers = sorted(set(int(item) for item in parent_ids))
        parents: Dict[int, ParentItem] = {}
        if not identifiers:
            return parents
        with self._reading("duration lookup") as connection:
            for chunk in _chunked(identifiers):
                rows = self._execute(
                    connection,
                    f"""
                    SELECT
                        items.id AS id,
                        items.title AS title,
                        items.`index` AS item_index,
                        seasons.`index` AS season_index,
                        MAX(media.duration) AS duration
                    FROM metadata_items items
                        INNER JOIN media_items media ON media.metadata_item_id = items.id
                        LEFT JOIN metadata_items seasons
                            ON items.parent_id = seasons.id AND items.metadata_type = ?
                    WHERE items.id IN ({_placeholders(len(chunk))})
                    GROUP BY items.id
                    """,
                    (MetadataType.EPISODE, *chunk),
                    action="metadata_items.durations",
                ).fetchall()
                for row in rows:
                    if row["duration"] is None:
                        continue
                    parents[int(row["id"])] = ParentItem(
                        metadata_id=int(row["id"]),
                        duration=int(row["duration"]),
                        title=row["title"] or "",
                        index=row["item_index"],
                        season_index=row["season_index"],
                    )

        missing = set(identifiers) - set(parents)
        if missing:
            LOGGER.warning("No duration found for items %s", sorted(missing))
        return parents

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _apply_operation(
        self, connection: sqlite3.Connection, operation: MarkerOperation, tag_id: int
    ) -> None:
        if operation.kind is OperationKind.DELETE:
            self._execute(
                connection,
                "DELETE FROM taggings WHERE id = ?",
                (operation.marker_id,),
                action="taggings.delete",
            )
        elif operation.kind is OperationKind.UPDATE:
            cursor = self._execute(
                connection,
                """
                UPDATE taggings SET time_offset = ?, end_time_offset = ?, thumb_url = ?
                WHERE id = ? AND tag_id = ?
                """,
                (
                    operation.start,
                    operation.end,
                    "" if operation.modified_date is None else str(operation.modified_date),
                    operation.marker_id,
                    tag_id,
                ),
                action="taggings.update",
            )
            if cursor.rowcount != 1:
                raise StorageError(f"Marker {operation.marker_id} no longer exists")
        elif operation.kind is OperationKind.INSERT:
            marker_type = operation.marker_type or MarkerType.INTRO
            self._execute(
                connection,
                """
                INSERT INTO taggings (
                    metadata_item_id, tag_id, `index`, text, time_offset, end_time_offset,
                    thumb_url, created_at, extra_data
                ) VALUES (?, ?, ?, ?, ?, ?, ?, strftime('%s', 'now'), ?)
                """,
                (
                    operation.parent_id,
                    tag_id,
                    operation.index if operation.index is not None else 0,
                    marker_type.value,
                    operation.start,
                    operation.end,
                    "" if operation.modified_date is None else str(operation.modified_date),
                    _EXTRA_DATA[(marker_type, operation.final and marker_type is MarkerType.CREDITS)],
                ),
                action="taggings.insert",
            )

    def _renumber_parents(
        self, connection: sqlite3.Connection, parent_ids: Iterable[int], tag_id: int
    ) -> int:
        # Every marker-tag row counts here, including types the engine does not edit.
        changed = 0
        for parent_id in sorted(set(parent_ids)):
            rows = self._execute(
                connection,
                """
                SELECT id, `index` AS marker_index FROM taggings
                WHERE tag_id = ? AND metadata_item_id = ?
                ORDER BY time_offset, id
                """,
                (tag_id, parent_id),
                action="taggings.parent_rows",
            ).fetchall()
            for new_index, row in enumerate(rows):
                if row["marker_index"] == new_index:
                    continue
                self._execute(
                    connection,
                    "UPDATE taggings SET `index` = ? WHERE id = ?",
                    (new_index, row["id"]),
                    action="taggings.reindex",
                )
                changed += 1
        return changed

    def _commit_batch_sync(self, operations: Sequence[MarkerOperation]) -> None:
        ordered = sorted(operations, key=lambda item: OPERATION_ORDER[item.kind])
        touched = {operation.parent_id for operation in ordered}
        # Resolved before the transaction opens so the lookup uses its own connection.
        tag_id = self.marker_tag_id
        with self._track_db_event(
            "commit_batch", operation_count=len(ordered), parent_count=len(touched)
        ) as event:
            connection = self._connect()
            try:
                with connection:
                    for operation in ordered:
                        self._apply_operation(connection, operation, tag_id)
                    event["reindexed"] = self._renumber_parents(connection, touched, tag_id)
            except sqlite3.Error as error:
                LOGGER.error("Marker transaction rolled back: %s", error)
                raise StorageError(f"Unable to commit marker changes: {error}") from error
            except StorageError:
                LOGGER.error("Marker transaction rolled back")
                raise
            finally:
                connection.close()
            event["result"] = "committed"
        LOGGER.debug("Committed %s marker operations across %s items", len(ordered), len(touched))

    async def commit_batch(self, operations: Sequence[MarkerOperation]) -> None:
        """Run ``operations`` in one transaction on a worker thread.

        This is the store's general batch contract: deletes run first, then
        updates and inserts, and finally every parent named by an operation
        has all of its marker rows renumbered densely by start time. The shift
        engine only queues updates; deletes and inserts let other callers add
        or remove markers under the same ordering.
        Any failure rolls the whole batch back and raises
        :class:`StorageError`.
        """

        if not operations:
            return
        await asyncio.to_thread(self._commit_batch_sync, list(operations))


__all__ = ["FINAL_CREDITS_FLAG", "MARKER_TAG_TYPE", "MarkerRepository", "MetadataType"]
