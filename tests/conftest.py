from __future__ import annotations

import sqlite3
import sys
from pathlib import Path
from typing import Callable, Dict, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from marker_editor.bootstrap import Bootstrapper
from marker_editor.config import AppConfig
from marker_editor.services.storage import MarkerRepository


MEDIA_SCHEMA = """
CREATE TABLE tags (
    id INTEGER PRIMARY KEY,
    tag TEXT,
    tag_type INTEGER,
    created_at INTEGER,
    updated_at INTEGER
);
CREATE TABLE metadata_items (
    id INTEGER PRIMARY KEY,
    metadata_type INTEGER NOT NULL,
    parent_id INTEGER,
    library_section_id INTEGER,
    guid TEXT,
    title TEXT,
    `index` INTEGER
);
CREATE TABLE media_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    metadata_item_id INTEGER NOT NULL,
    duration INTEGER
);
CREATE TABLE taggings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    metadata_item_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    `index` INTEGER,
    text TEXT,
    time_offset INTEGER,
    end_time_offset INTEGER,
    thumb_url TEXT,
    created_at INTEGER,
    extra_data TEXT
);
"""

# Show 1 -> season 2 (episodes 10, 11) and season 3 (episodes 12, 13); movie 20.
METADATA_ROWS = [
    (1, 2, None, 1, "show://1", "Night Shift", 1),
    (2, 3, 1, 1, "season://2", "Season 1", 1),
    (3, 3, 1, 1, "season://3", "Season 2", 2),
    (10, 4, 2, 1, "episode://10", "Pilot", 1),
    (11, 4, 2, 1, "episode://11", "Second Shift", 2),
    (12, 4, 3, 1, "episode://12", "Return", 1),
    (13, 4, 3, 1, "episode://13", "Quiet Night", 2),
    (20, 1, None, 2, "movie://20", "Feature", 1),
    (30, 8, None, 3, "artist://30", "Band", 1),
]

MEDIA_ROWS = [
    (10, 600000),
    (11, 600000),
    (12, 1100000),
    (12, 1200000),
    (13, 900000),
    (20, 7200000),
]

MARKER_TAG_ID = 7

# (id, parent, tag, index, type, start, end, thumb_url, extra_data)
TAGGING_ROWS = [
    (100, 10, MARKER_TAG_ID, 0, "intro", 500000, 550000, "1700000000", "pv%3Aversion=5"),
    (101, 10, MARKER_TAG_ID, 1, "credits", 560000, 600000, "-1700000000", "pv%3Afinal=1&pv%3Aversion=4"),
    (102, 11, MARKER_TAG_ID, 0, "intro", 0, 10000, "1700000000", "pv%3Aversion=5"),
    (103, 12, MARKER_TAG_ID, 0, "intro", 15000, 45000, "1700000000", "pv%3Aversion=5"),
    (104, 20, MARKER_TAG_ID, 0, "credits", 7000000, 7100000, "", "pv%3Aversion=4"),
    (105, 10, 3, 0, "Drama", None, None, "", ""),
]


def build_media_database(path: Path) -> Path:
    connection = sqlite3.connect(path)
    try:
        connection.executescript(MEDIA_SCHEMA)
        connection.executemany(
            "INSERT INTO tags(id, tag, tag_type, created_at, updated_at) VALUES (?, ?, ?, 0, 0)",
            [(3, "Drama", 0), (MARKER_TAG_ID, None, 12)],
        )
        connection.executemany(
            "INSERT INTO metadata_items(id, metadata_type, parent_id, library_section_id, guid, title, `index`) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            METADATA_ROWS,
        )
        connection.executemany(
            "INSERT INTO media_items(metadata_item_id, duration) VALUES (?, ?)",
            MEDIA_ROWS,
        )
        connection.executemany(
            "INSERT INTO taggings(id, metadata_item_id, tag_id, `index`, text, time_offset, "
            "end_time_offset, thumb_url, created_at, extra_data) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)",
            TAGGING_ROWS,
        )
        connection.commit()
    finally:
        connection.close()
    return path


@pytest.fixture()
def media_database(tmp_path: Path) -> Path:
    return build_media_database(tmp_path / "library.db")


@pytest.fixture()
def temp_config(tmp_path: Path, media_database: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "plex_database": str(media_database),
            "storage_root": "storage",
            "database_file": "storage/marker_actions.db",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def repository(temp_config: AppConfig) -> MarkerRepository:
    return MarkerRepository(temp_config)


@pytest.fixture()
def marker_rows(media_database: Path) -> Callable[[], Dict[int, Tuple[int, int, int, str]]]:
    """Return a reader of ``{id: (start, end, index, thumb_url)}`` straight from the database."""

    def _read() -> Dict[int, Tuple[int, int, int, str]]:
        connection = sqlite3.connect(media_database)
        try:
            rows = connection.execute(
                "SELECT id, time_offset, end_time_offset, `index`, thumb_url FROM taggings "
                "WHERE tag_id = ? ORDER BY id",
                (MARKER_TAG_ID,),
            ).fetchall()
        finally:
            connection.close()
        return {row[0]: (row[1], row[2], row[3], row[4]) for row in rows}

    return _read
