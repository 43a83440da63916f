"""Configuration loading utilities for the Marker Editor application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple


LOGGER = logging.getLogger(__name__)


CONFIG_PATH_ENV = "MARKER_EDITOR_CONFIG"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3232

_PERMISSION_SENTINEL = ".marker_editor_write_check"


class ConfigError(ValueError):
    """Raised when the configuration file is missing required values."""


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and the flag reports whether a fallback
    was needed. When nothing is writable the original ``preferred`` path is
    returned so the bootstrapper can report the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings: where the media server database lives and where we write."""

    plex_database: Path
    storage_root: Path
    database_file: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        raw_plex_database = mapping.get("plex_database")
        if not raw_plex_database:
            raise ConfigError("Configuration value 'plex_database' is required")
        plex_database = (base_path / Path(raw_plex_database).expanduser()).resolve()

        preferred_storage = (base_path / mapping.get("storage_root", "storage")).resolve()
        storage_fallback = Path.home() / ".marker_editor" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (
            base_path / mapping.get("database_file", "storage/marker_actions.db")
        ).resolve()
        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                if _ensure_writable_directory(fallback_database.parent):
                    LOGGER.warning(
                        "Preferred database location '%s' is not writable; using fallback '%s'.",
                        database_file,
                        fallback_database,
                    )
                    database_file = fallback_database

        if not _ensure_writable_directory(database_file.parent):
            fallback_database = (storage_root / database_file.name).resolve()
            if fallback_database != database_file and _ensure_writable_directory(
                fallback_database.parent
            ):
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    database_file,
                    fallback_database,
                )
                database_file = fallback_database
            else:
                LOGGER.warning(
                    "Database location '%s' is not writable and no fallback is available.",
                    database_file,
                )

        try:
            port = int(mapping.get("port", DEFAULT_PORT))
        except (TypeError, ValueError) as error:
            raise ConfigError(f"Invalid port value: {mapping.get('port')!r}") from error

        return cls(
            plex_database=plex_database,
            storage_root=storage_root,
            database_file=database_file,
            host=str(mapping.get("host") or DEFAULT_HOST),
            port=port,
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the configuration from ``config/default.json`` unless overridden.

    ``MARKER_EDITOR_CONFIG`` takes precedence over the default location when no
    explicit path is given.
    """

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        override = (os.environ.get(CONFIG_PATH_ENV) or "").strip()
        config_path = Path(override) if override else base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=config_path.resolve().parent.parent)


__all__ = ["AppConfig", "ConfigError", "load_config"]
