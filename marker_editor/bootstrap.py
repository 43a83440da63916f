"""Bootstrap logic: runtime directories, media server database checks, action log schema."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config
from .services.backup import ACTIONS_SCHEMA
from .services.storage import MARKER_TAG_TYPE

LOGGER = logging.getLogger(__name__)

_REQUIRED_TABLES = ("tags", "taggings", "metadata_items", "media_items")


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._verify_media_database()
        self._ensure_database()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        storage_root = self._config.storage_root
        if not config_module._ensure_writable_directory(storage_root):
            raise BootstrapError(f"Storage directory '{storage_root}' is not writable")
        LOGGER.debug("Ensured directory exists: %s", storage_root)

    def _verify_media_database(self) -> None:
        database = self._config.plex_database
        LOGGER.info("Verifying media server database %s", database)
        if not database.is_file():
            raise BootstrapError(
                f"Media server database '{database}' does not exist. "
                "Check 'plex_database' in the configuration file."
            )

        try:
            connection = sqlite3.connect(f"{database.as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as error:
            raise BootstrapError(f"Unable to open database '{database}': {error}") from error
        try:
            cursor = connection.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            tables = {row[0] for row in cursor.fetchall()}
            missing = [table for table in _REQUIRED_TABLES if table not in tables]
            if missing:
                raise BootstrapError(
                    f"'{database}' does not look like a media server database "
                    f"(missing tables: {', '.join(missing)})"
                )

            cursor.execute("SELECT id FROM tags WHERE tag_type = ?", (MARKER_TAG_TYPE,))
            if cursor.fetchone() is None:
                LOGGER.error(
                    "tags table exists, but no marker tag was found. Either ensure at least one "
                    "item has an intro marker, or insert the tag with the server's own SQLite build: "
                    "INSERT INTO tags (tag_type, created_at, updated_at) "
                    "VALUES (%s, strftime('%%s','now'), strftime('%%s','now'));",
                    MARKER_TAG_TYPE,
                )
                raise BootstrapError("Media server database must contain at least one intro marker")
        except sqlite3.Error as error:
            raise BootstrapError(f"Unable to read database '{database}': {error}") from error
        finally:
            connection.close()
        LOGGER.info("Media server database verified")

    def _ensure_database(self) -> None:
        LOGGER.debug("Ensuring action log schema at %s", self._config.database_file)
        try:
            connection = sqlite3.connect(self._config.database_file)
        except sqlite3.Error as error:
            raise BootstrapError(
                f"Unable to open action log '{self._config.database_file}': {error}"
            ) from error
        try:
            connection.executescript(ACTIONS_SCHEMA)
            connection.commit()
        finally:
            connection.close()


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
