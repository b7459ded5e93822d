"""Bootstrap logic that prepares runtime directories and the SQLite database."""

from __future__ import annotations

import logging
import shutil
import sqlite3
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


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
        self._ensure_database()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        for label, path in (
            ("storage", self._config.storage_root),
            ("blob", self._config.blob_root),
        ):
            if not config_module._ensure_writable_directory(path):
                raise BootstrapError(f"The {label} directory '{path}' is not writable")
            LOGGER.debug("Ensured directory exists: %s", path)

        archive_root = self._config.archive_root
        archive_root.mkdir(parents=True, exist_ok=True)
        for child in archive_root.iterdir():
            try:
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            except OSError as error:  # pragma: no cover - best effort cleanup
                LOGGER.warning("Could not remove archive %s: %s", child, error)
        LOGGER.debug("Cleared archive directory: %s", archive_root)

    def _ensure_database(self) -> None:
        LOGGER.debug("Ensuring database schema at %s", self._config.database_file)
        try:
            connection = sqlite3.connect(self._config.database_file)
        except sqlite3.Error as error:
            raise BootstrapError(
                f"Could not open database '{self._config.database_file}': {error}"
            ) from error
        try:
            cursor = connection.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS files (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_name TEXT NOT NULL,
                    file_size INTEGER NOT NULL DEFAULT 0,
                    file_type TEXT NOT NULL DEFAULT '',
                    category_id TEXT NOT NULL,
                    storage_path TEXT,
                    download_url TEXT,
                    organization TEXT NOT NULL DEFAULT '',
                    uploaded_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_files_category ON files(category_id);

                CREATE TABLE IF NOT EXISTS income (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    amount REAL NOT NULL,
                    organization TEXT NOT NULL,
                    date TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    created_by TEXT NOT NULL DEFAULT 'unknown'
                );

                CREATE INDEX IF NOT EXISTS idx_income_date ON income(date);
                """
            )
            connection.commit()

            def _column_exists(table: str, column: str) -> bool:
                cursor.execute(f"PRAGMA table_info({table})")
                return any(row[1] == column for row in cursor.fetchall())

            # Files tables written without an organization column get one added.
            if not _column_exists("files", "organization"):
                cursor.execute(
                    "ALTER TABLE files ADD COLUMN organization TEXT NOT NULL DEFAULT ''"
                )
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
