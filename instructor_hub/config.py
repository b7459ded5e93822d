"""Configuration loading utilities for the Instructor Hub application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".instructor_hub_write_check"
ADMIN_TOKEN_ENV = "INSTRUCTOR_HUB_ADMIN_TOKEN"
DEFAULT_COMPRESSION_LEVEL = 6


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

    The first writable candidate wins. The flag in the returned tuple tells
    the caller whether a fallback was used. When nothing can be prepared the
    original ``preferred`` path is returned so later steps fail loudly.
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
class ExportSettings:
    """Tuning knobs for the bulk file export."""

    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    # ``None`` disables the abort threshold: every file is attempted.
    max_consecutive_failures: Optional[int] = None

    @classmethod
    def from_mapping(cls, mapping: Optional[Dict[str, Any]]) -> "ExportSettings":
        if not mapping:
            return cls()
        level = int(mapping.get("compression_level", DEFAULT_COMPRESSION_LEVEL))
        if not 0 <= level <= 9:
            raise ValueError(f"compression_level must be between 0 and 9 (got {level})")
        threshold = mapping.get("max_consecutive_failures")
        if threshold is not None:
            threshold = int(threshold)
            if threshold < 1:
                raise ValueError("max_consecutive_failures must be positive when set")
        return cls(compression_level=level, max_consecutive_failures=threshold)


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and policies for the application."""

    storage_root: Path
    database_file: Path
    blob_root: Path
    admin_token: Optional[str] = None
    export: ExportSettings = field(default_factory=ExportSettings)

    @property
    def archive_root(self) -> Path:
        """Location used for finished export archives."""

        return (self.storage_root / "_archives").resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".instructor_hub" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()

        preferred_blobs = (base_path / mapping["blob_root"]).resolve()
        if storage_fallback_used:
            try:
                relative_blobs = preferred_blobs.relative_to(preferred_storage)
            except ValueError:
                relative_blobs = None
            if relative_blobs is not None:
                preferred_blobs = (storage_root / relative_blobs).resolve()
        blob_root, _ = _select_writable_directory(
            preferred_blobs,
            label="blob",
            fallbacks=(storage_root / "_blobs",),
        )

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

        admin_token = os.environ.get(ADMIN_TOKEN_ENV) or mapping.get("admin_token") or None

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            blob_root=blob_root,
            admin_token=admin_token,
            export=ExportSettings.from_mapping(mapping.get("export")),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["ADMIN_TOKEN_ENV", "AppConfig", "ExportSettings", "load_config"]
