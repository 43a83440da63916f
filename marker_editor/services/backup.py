"""Record committed marker edits in the editor's own SQLite database."""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from ..config import AppConfig
from ..shifting.models import Marker


LOGGER = logging.getLogger(__name__)


ACTIONS_SCHEMA = """
CREATE TABLE IF NOT EXISTS actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    op TEXT NOT NULL,
    marker_id INTEGER NOT NULL,
    parent_id INTEGER NOT NULL,
    marker_type TEXT NOT NULL,
    old_start INTEGER,
    old_end INTEGER,
    new_start INTEGER,
    new_end INTEGER,
    recorded_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS actions_parent_idx ON actions(parent_id);
"""


@dataclass
class ActionRecord:
    id: int
    op: str
    marker_id: int
    parent_id: int
    marker_type: str
    old_start: Optional[int]
    old_end: Optional[int]
    new_start: Optional[int]
    new_end: Optional[int]
    recorded_at: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "op": self.op,
            "markerId": self.marker_id,
            "parentId": self.parent_id,
            "markerType": self.marker_type,
            "oldStart": self.old_start,
            "oldEnd": self.old_end,
            "newStart": self.new_start,
            "newEnd": self.new_end,
            "recordedAt": self.recorded_at,
        }


class MarkerActionLog:
    """Append-only history of marker changes made through the editor."""

    def __init__(self, config: AppConfig, *, clock: Callable[[], float] = time.time) -> None:
        self._db_path: Path = config.database_file
        self._clock = clock

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        return connection

    def record_shift(self, before: Sequence[Marker], after: Sequence[Marker]) -> None:
        """Store one ``shift`` row per marker in ``before`` that survived the commit.

        Failures are logged and swallowed; the shift itself is already durable.
        """

        after_by_id = {marker.id: marker for marker in after}
        recorded_at = self._clock()
        rows = []
        for marker in before:
            updated = after_by_id.get(marker.id)
            if updated is None:
                continue
            rows.append(
                (
                    "shift",
                    marker.id,
                    marker.parent_id,
                    marker.marker_type.value,
                    marker.start,
                    marker.end,
                    updated.start,
                    updated.end,
                    recorded_at,
                )
            )
        if not rows:
            return

        connection = self._connect()
        try:
            with connection:
                connection.executemany(
                    """
                    INSERT INTO actions(
                        op, marker_id, parent_id, marker_type,
                        old_start, old_end, new_start, new_end, recorded_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as error:
            LOGGER.warning("Unable to record %s shifted markers in the action log: %s", len(rows), error)
            return
        finally:
            connection.close()
        LOGGER.debug("Recorded %s shift actions", len(rows))

    def list_actions(self, parent_id: Optional[int] = None, limit: int = 50) -> List[ActionRecord]:
        query = (
            "SELECT id, op, marker_id, parent_id, marker_type, old_start, old_end, "
            "new_start, new_end, recorded_at FROM actions"
        )
        params: List[object] = []
        if parent_id is not None:
            query += " WHERE parent_id = ?"
            params.append(parent_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(max(1, int(limit)))

        connection = self._connect()
        try:
            rows = connection.execute(query, params).fetchall()
        finally:
            connection.close()
        return [ActionRecord(**dict(row)) for row in rows]


__all__ = ["ACTIONS_SCHEMA", "ActionRecord", "MarkerActionLog"]
