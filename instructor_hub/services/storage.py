"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig


@dataclass
class FileRecord:
    id: int
    file_name: str
    file_size: int
    file_type: str
    category_id: str
    storage_path: Optional[str]
    download_url: Optional[str]
    organization: str
    uploaded_at: str


LOGGER = logging.getLogger(__name__)

_FILE_COLUMNS = (
    "id, file_name, file_size, file_type, category_id, "
    "storage_path, download_url, organization, uploaded_at"
)


class MetadataStoreError(RuntimeError):
    """Raised when file metadata cannot be read or written."""


def utc_timestamp() -> str:
    """Return the current UTC instant as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


class SQLiteRepository:
    """Connection handling and query instrumentation shared by repositories."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting query events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Emit a structured event capturing execution time for a DB action."""

        event_payload: Dict[str, Any] = dict(payload)
        if self._event_emitter is None:
            yield event_payload
            return

        start = time.perf_counter()
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
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
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
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters) if parameters is not None else ()
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        return connection


class FileRepository(SQLiteRepository):
    """Metadata store for uploaded files."""

    def add_file(
        self,
        file_name: str,
        *,
        category_id: str,
        file_size: int = 0,
        file_type: str = "",
        storage_path: Optional[str] = None,
        download_url: Optional[str] = None,
        organization: str = "",
        uploaded_at: Optional[str] = None,
    ) -> int:
        stamp = uploaded_at or utc_timestamp()
        LOGGER.debug(
            "Adding file '%s' to category '%s' (size=%s)", file_name, category_id, file_size
        )
        with self._track_db_event(
            "add_file", table="files", category_id=category_id, file_size=file_size
        ) as event:
            try:
                with self._connect() as connection:
                    cursor = self._execute(
                        connection,
                        """
                        INSERT INTO files(
                            file_name,
                            file_size,
                            file_type,
                            category_id,
                            storage_path,
                            download_url,
                            organization,
                            uploaded_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            file_name,
                            int(file_size),
                            file_type,
                            category_id,
                            storage_path,
                            download_url,
                            organization,
                            stamp,
                        ),
                        action="files.insert",
                        table="files",
                    )
                    file_id = int(cursor.lastrowid)
            except sqlite3.Error as error:
                raise MetadataStoreError(f"Could not save metadata for '{file_name}': {error}") from error
            event["file_id"] = file_id
            LOGGER.debug("File '%s' inserted with id=%s", file_name, file_id)
            return file_id

    def get_file(self, file_id: int) -> Optional[FileRecord]:
        LOGGER.debug("Fetching file id=%s", file_id)
        with self._track_db_event("get_file", table="files", file_id=file_id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"SELECT {_FILE_COLUMNS} FROM files WHERE id = ?",
                    (file_id,),
                    action="files.get",
                    table="files",
                )
                row = cursor.fetchone()
            event["found"] = bool(row)
            return FileRecord(**row) if row else None

    def list_files(
        self,
        *,
        category_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[FileRecord]:
        """Return files newest first, optionally narrowed by category and name."""

        clauses: List[str] = []
        params: List[Any] = []
        if category_id:
            clauses.append("category_id = ?")
            params.append(category_id)
        needle = (search or "").strip().lower()
        if needle:
            clauses.append("instr(lower(file_name), ?) > 0")
            params.append(needle)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._track_db_event(
            "list_files", table="files", category_id=category_id, search=needle or None
        ) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"SELECT {_FILE_COLUMNS} FROM files{where} ORDER BY uploaded_at DESC, id DESC",
                    params,
                    action="files.list",
                    table="files",
                )
                rows = cursor.fetchall()
            event["rowcount"] = len(rows)
            return [FileRecord(**row) for row in rows]

    def list_all_files(self) -> List[FileRecord]:
        """Return a point-in-time snapshot of every file in insertion order."""

        with self._track_db_event("list_all_files", table="files") as event:
            try:
                with self._connect() as connection:
                    cursor = self._execute(
                        connection,
                        f"SELECT {_FILE_COLUMNS} FROM files ORDER BY id",
                        action="files.snapshot",
                        table="files",
                    )
                    rows = cursor.fetchall()
            except sqlite3.Error as error:
                raise MetadataStoreError(f"Could not list files: {error}") from error
            event["rowcount"] = len(rows)
            LOGGER.debug("Metadata snapshot contains %d file(s)", len(rows))
            return [FileRecord(**row) for row in rows]

    def count_files(self, category_id: Optional[str] = None) -> int:
        where = ""
        params: Tuple[Any, ...] = ()
        if category_id:
            where = " WHERE category_id = ?"
            params = (category_id,)
        with self._track_db_event("count_files", table="files", category_id=category_id):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"SELECT COUNT(*) FROM files{where}",
                    params,
                    action="files.count",
                    table="files",
                )
                row = cursor.fetchone()
                return int(row[0]) if row else 0

    def count_by_category(self) -> Dict[str, int]:
        with self._track_db_event("count_by_category", table="files"):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    "SELECT category_id, COUNT(*) AS total FROM files GROUP BY category_id",
                    action="files.count_by_category",
                    table="files",
                )
                return {row["category_id"]: int(row["total"]) for row in cursor.fetchall()}

    def count_by_organization(self) -> List[Tuple[str, int]]:
        """Return ``(organization, count)`` pairs, largest first."""

        with self._track_db_event("count_by_organization", table="files"):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    """
                    SELECT
                        CASE WHEN TRIM(organization) = '' THEN 'Unspecified'
                             ELSE organization END AS name,
                        COUNT(*) AS total
                    FROM files
                    GROUP BY name
                    ORDER BY total DESC, name
                    """,
                    action="files.count_by_organization",
                    table="files",
                )
                return [(row["name"], int(row["total"])) for row in cursor.fetchall()]

    def remove_file(self, file_id: int) -> bool:
        LOGGER.debug("Removing file id=%s", file_id)
        with self._track_db_event("remove_file", table="files", file_id=file_id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    "DELETE FROM files WHERE id = ?",
                    (file_id,),
                    action="files.delete",
                    table="files",
                )
                removed = cursor.rowcount > 0
            event["result"] = "deleted" if removed else "missing"
            return removed


__all__ = [
    "FileRecord",
    "FileRepository",
    "MetadataStoreError",
    "SQLiteRepository",
    "utc_timestamp",
]
