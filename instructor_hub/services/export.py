"""Bundle every stored file into one downloadable ZIP archive.

The export works on a point-in-time snapshot of the metadata store. Files
are fetched one after another in listing order and packed under
``{category_id}/{file_name}``. A file whose content cannot be fetched is
logged and skipped; only authorization problems, an empty store, a failing
metadata listing or a failing archive finalization abort the run.
"""

from __future__ import annotations

import io
import logging
import time
import warnings
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from ..config import ExportSettings
from .blobs import default_storage_path
from .events import emit_export_event
from .naming import build_export_filename
from .progress import ExportProgress
from .storage import FileRecord

LOGGER = logging.getLogger(__name__)

ProgressObserver = Callable[[ExportProgress], None]
CompressionCallback = Callable[[float], None]


class MetadataStore(Protocol):
    def list_all_files(self) -> Sequence[FileRecord]:
        ...


class BlobStore(Protocol):
    def get_content(self, locator: str) -> bytes:
        ...


class ExportError(RuntimeError):
    """Base class for errors that stop an export before an archive exists."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.user_message = message


class ExportAuthorizationError(ExportError):
    """Raised when the caller may not export files."""


class NothingToExportError(ExportError):
    """Raised when the metadata store holds no files."""


class ExportFailedError(ExportError):
    """Raised when the metadata listing or archive finalization fails."""


@dataclass(frozen=True)
class ExportCaller:
    """Who triggered the export and whether they hold the admin capability."""

    identity: str = "anonymous"
    is_admin: bool = False


@dataclass(frozen=True)
class ArchiveEntry:
    path: str
    data: bytes


@dataclass(frozen=True)
class FileFetchResult:
    """Outcome of fetching one file: either ``content`` or ``error`` is set."""

    record: FileRecord
    locator: str
    content: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.content is not None


@dataclass
class ExportResult:
    filename: str
    archive: bytes
    results: List[FileFetchResult] = field(default_factory=list)
    entry_paths: Tuple[str, ...] = ()
    started_at: Optional[datetime] = None

    @property
    def succeeded_count(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def skipped_count(self) -> int:
        return sum(1 for result in self.results if not result.succeeded)

    @property
    def skipped(self) -> List[FileFetchResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def size(self) -> int:
        return len(self.archive)


def resolve_locator(record: FileRecord) -> str:
    """Prefer the stored locator, otherwise derive it from category and name."""

    if record.storage_path:
        return record.storage_path
    return default_storage_path(record.category_id, record.file_name)


def archive_path_for(record: FileRecord) -> str:
    return f"{record.category_id}/{record.file_name}"


class ArchiveBuilder:
    """Collect entries in memory and compress them into a ZIP on demand."""

    def __init__(self) -> None:
        self._entries: List[ArchiveEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[ArchiveEntry, ...]:
        return tuple(self._entries)

    def add_entry(self, path: str, data: bytes) -> None:
        self._entries.append(ArchiveEntry(path=path, data=bytes(data)))

    def finalize(
        self,
        compression_level: int = 6,
        progress_callback: Optional[CompressionCallback] = None,
    ) -> bytes:
        """Return the compressed archive, reporting progress in percent.

        Progress is measured in uncompressed bytes written and reported after
        each entry.
        """

        buffer = io.BytesIO()
        total_bytes = sum(len(entry.data) for entry in self._entries)
        entry_count = len(self._entries)
        written = 0
        with warnings.catch_warnings():
            # Two files may share a category and name; both are kept.
            warnings.filterwarnings("ignore", message="Duplicate name", category=UserWarning)
            with zipfile.ZipFile(
                buffer,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=compression_level,
            ) as bundle:
                for index, entry in enumerate(self._entries, start=1):
                    bundle.writestr(entry.path, entry.data)
                    written += len(entry.data)
                    if progress_callback is None:
                        continue
                    if total_bytes:
                        progress_callback(written / total_bytes * 100.0)
                    else:
                        progress_callback(index / entry_count * 100.0)
        return buffer.getvalue()


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class BulkExporter:
    """Fetch every known file and pack it into a single archive."""

    def __init__(
        self,
        metadata_store: MetadataStore,
        blob_store: BlobStore,
        *,
        settings: Optional[ExportSettings] = None,
        observer: Optional[ProgressObserver] = None,
        clock: Optional[Callable[[], datetime]] = None,
        archive_factory: Callable[[], ArchiveBuilder] = ArchiveBuilder,
    ) -> None:
        self._metadata_store = metadata_store
        self._blob_store = blob_store
        self._settings = settings or ExportSettings()
        self._observer = observer
        self._clock = clock or _default_clock
        self._archive_factory = archive_factory

    def _emit(self, progress: ExportProgress) -> None:
        if self._observer is not None:
            self._observer(progress)

    def _fail(self, error: ExportError, *, completed: int = 0, total: int = 0) -> ExportError:
        self._emit(ExportProgress.failed(error.user_message, completed=completed, total=total))
        return error

    def export_all(self, caller: ExportCaller) -> ExportResult:
        if not caller.is_admin:
            LOGGER.warning("Rejected bulk export for non-admin caller %s", caller.identity)
            raise self._fail(
                ExportAuthorizationError("You do not have permission to download all files")
            )

        started_at = self._clock()
        start = time.perf_counter()
        LOGGER.info("Bulk export requested by %s", caller.identity)

        try:
            records = list(self._metadata_store.list_all_files())
        except Exception as error:  # noqa: BLE001 - any listing failure is fatal
            LOGGER.exception("Could not list files for export")
            raise self._fail(
                ExportFailedError(f"Failed to download files: {error}")
            ) from error

        if not records:
            LOGGER.info("Bulk export aborted: no files in the metadata store")
            raise self._fail(NothingToExportError("No files found in the database"))

        total = len(records)
        builder = self._archive_factory()
        results: List[FileFetchResult] = []
        completed = 0
        consecutive_failures = 0
        threshold = self._settings.max_consecutive_failures
        self._emit(ExportProgress.fetching(0, total))

        for record in records:
            locator = resolve_locator(record)
            try:
                content = self._blob_store.get_content(locator)
            except Exception as error:  # noqa: BLE001 - one missing file must not sink the run
                LOGGER.warning(
                    "Skipping '%s' (id=%s) during export: %s", record.file_name, record.id, error
                )
                results.append(
                    FileFetchResult(record=record, locator=locator, error=str(error) or repr(error))
                )
                emit_export_event(
                    "File skipped",
                    payload={"file_id": record.id, "locator": locator, "error": error},
                    level=logging.WARNING,
                )
                consecutive_failures += 1
                if threshold is not None and consecutive_failures > threshold:
                    LOGGER.error(
                        "Aborting export after %d consecutive file failures", consecutive_failures
                    )
                    raise self._fail(
                        ExportFailedError(
                            "Failed to download files: "
                            f"{consecutive_failures} consecutive files could not be retrieved"
                        ),
                        completed=completed,
                        total=total,
                    ) from error
                continue

            consecutive_failures = 0
            builder.add_entry(archive_path_for(record), content)
            results.append(FileFetchResult(record=record, locator=locator, content=content))
            completed += 1
            self._emit(ExportProgress.fetching(completed, total))

        def _on_compress(percent: float) -> None:
            self._emit(ExportProgress.compressing(percent, completed=completed, total=total))

        self._emit(ExportProgress.compressing(0, completed=completed, total=total))
        try:
            archive = builder.finalize(self._settings.compression_level, _on_compress)
        except Exception as error:  # noqa: BLE001 - finalization failure is fatal
            LOGGER.exception("Could not finalize export archive")
            raise self._fail(
                ExportFailedError(f"Failed to download files: {error}"),
                completed=completed,
                total=total,
            ) from error

        result = ExportResult(
            filename=build_export_filename(started_at),
            archive=archive,
            results=results,
            entry_paths=tuple(entry.path for entry in builder.entries),
            started_at=started_at,
        )
        self._emit(ExportProgress.finished(completed=completed, total=total))
        emit_export_event(
            "Bulk export completed",
            payload={
                "filename": result.filename,
                "files": total,
                "succeeded": result.succeeded_count,
                "skipped": result.skipped_count,
                "size": result.size,
            },
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return result


__all__ = [
    "ArchiveBuilder",
    "ArchiveEntry",
    "BlobStore",
    "BulkExporter",
    "ExportAuthorizationError",
    "ExportCaller",
    "ExportError",
    "ExportFailedError",
    "ExportResult",
    "FileFetchResult",
    "MetadataStore",
    "NothingToExportError",
    "ProgressObserver",
    "archive_path_for",
    "resolve_locator",
]
