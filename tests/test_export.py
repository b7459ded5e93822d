from __future__ import annotations

import io
import zipfile
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import pytest

from instructor_hub.config import ExportSettings
from instructor_hub.services.blobs import BlobNotFoundError
from instructor_hub.services.export import (
    ArchiveBuilder,
    BulkExporter,
    ExportAuthorizationError,
    ExportCaller,
    ExportFailedError,
    NothingToExportError,
    archive_path_for,
    resolve_locator,
)
from instructor_hub.services.progress import ExportProgress
from instructor_hub.services.storage import FileRecord

ADMIN = ExportCaller(identity="tester", is_admin=True)
FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45, 123000, tzinfo=timezone.utc)


def _record(
    file_id: int,
    file_name: str,
    category_id: str,
    *,
    storage_path: Optional[str] = "auto",
) -> FileRecord:
    if storage_path == "auto":
        storage_path = f"uploads/{file_id}"
    return FileRecord(
        id=file_id,
        file_name=file_name,
        file_size=0,
        file_type="text/plain",
        category_id=category_id,
        storage_path=storage_path,
        download_url=None,
        organization="",
        uploaded_at="2024-01-01T00:00:00+00:00",
    )


class FakeMetadataStore:
    def __init__(self, records: Iterable[FileRecord] = (), *, error: Optional[Exception] = None):
        self._records = list(records)
        self._error = error
        self.calls = 0

    def list_all_files(self) -> List[FileRecord]:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._records)


class FakeBlobStore:
    def __init__(self, contents: Dict[str, bytes], *, failing: Iterable[str] = ()):
        self._contents = dict(contents)
        self._failing = set(failing)
        self.requests: List[str] = []

    def get_content(self, locator: str) -> bytes:
        self.requests.append(locator)
        if locator in self._failing:
            raise BlobNotFoundError(f"No blob stored at '{locator}'")
        return self._contents[locator]


class ProgressRecorder:
    def __init__(self) -> None:
        self.events: List[ExportProgress] = []

    def __call__(self, progress: ExportProgress) -> None:
        self.events.append(progress)


def _three_files():
    records = [
        _record(1, "file1", "a"),
        _record(2, "file2", "a"),
        _record(3, "file3", "b"),
    ]
    contents = {
        "uploads/1": b"first file",
        "uploads/2": b"second file",
        "uploads/3": b"third file",
    }
    return records, contents


def _exporter(metadata, blobs, recorder=None, **kwargs) -> BulkExporter:
    return BulkExporter(metadata, blobs, observer=recorder, clock=lambda: FIXED_NOW, **kwargs)


def _read_zip(archive: bytes) -> Dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
        return {name: bundle.read(name) for name in bundle.namelist()}


def test_archive_contains_every_file_under_category_folders() -> None:
    records, contents = _three_files()
    blobs = FakeBlobStore(contents)

    result = _exporter(FakeMetadataStore(records), blobs).export_all(ADMIN)

    with zipfile.ZipFile(io.BytesIO(result.archive)) as bundle:
        assert bundle.namelist() == ["a/file1", "a/file2", "b/file3"]
        assert bundle.read("a/file2") == b"second file"
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in bundle.infolist())
    assert result.entry_paths == ("a/file1", "a/file2", "b/file3")
    assert result.succeeded_count == 3
    assert result.skipped_count == 0
    assert blobs.requests == ["uploads/1", "uploads/2", "uploads/3"]


def test_failed_blob_is_skipped_and_export_still_succeeds(caplog) -> None:
    records, contents = _three_files()
    blobs = FakeBlobStore(contents, failing={"uploads/2"})

    with caplog.at_level("WARNING"):
        result = _exporter(FakeMetadataStore(records), blobs).export_all(ADMIN)

    assert list(_read_zip(result.archive)) == ["a/file1", "b/file3"]
    assert result.succeeded_count == 2
    assert result.skipped_count == 1
    skipped = result.skipped[0]
    assert skipped.record.file_name == "file2"
    assert skipped.locator == "uploads/2"
    assert "uploads/2" in (skipped.error or "")
    assert not skipped.succeeded
    assert blobs.requests == ["uploads/1", "uploads/2", "uploads/3"]
    assert any("file2" in message for message in caplog.messages)


def test_metadata_failure_is_fatal_and_produces_no_archive() -> None:
    recorder = ProgressRecorder()
    blobs = FakeBlobStore({})
    metadata = FakeMetadataStore(error=RuntimeError("database offline"))

    with pytest.raises(ExportFailedError) as excinfo:
        _exporter(metadata, blobs, recorder).export_all(ADMIN)

    assert excinfo.value.user_message == "Failed to download files: database offline"
    assert blobs.requests == []
    assert recorder.events[-1].phase == "failed"
    assert all(event.overall < 100 for event in recorder.events)


def test_empty_listing_is_an_error() -> None:
    recorder = ProgressRecorder()
    blobs = FakeBlobStore({})

    with pytest.raises(NothingToExportError) as excinfo:
        _exporter(FakeMetadataStore([]), blobs, recorder).export_all(ADMIN)

    assert excinfo.value.user_message == "No files found in the database"
    assert blobs.requests == []
    assert [event.phase for event in recorder.events] == ["failed"]


def test_non_admin_caller_is_rejected_before_any_store_call() -> None:
    records, contents = _three_files()
    metadata = FakeMetadataStore(records)
    blobs = FakeBlobStore(contents)
    recorder = ProgressRecorder()

    with pytest.raises(ExportAuthorizationError) as excinfo:
        _exporter(metadata, blobs, recorder).export_all(ExportCaller(identity="guest"))

    assert excinfo.value.user_message == "You do not have permission to download all files"
    assert metadata.calls == 0
    assert blobs.requests == []
    assert recorder.events[-1].phase == "failed"


def test_progress_is_monotonic_and_reaches_100_only_at_the_end() -> None:
    records, contents = _three_files()
    recorder = ProgressRecorder()

    _exporter(FakeMetadataStore(records), FakeBlobStore(contents), recorder).export_all(ADMIN)

    overall = [event.overall for event in recorder.events]
    assert overall == sorted(overall)
    assert overall[-1] == 100
    assert 100 not in overall[:-1]
    assert recorder.events[-1].phase == "completed"

    fetching = [event for event in recorder.events if event.phase == "fetching"]
    assert [(event.completed, event.percent) for event in fetching] == [
        (0, 0),
        (1, 33),
        (2, 67),
        (3, 100),
    ]
    compressing = [event.percent for event in recorder.events if event.phase == "compressing"]
    assert compressing[0] == 0
    assert compressing[-1] == 100


def test_progress_stays_monotonic_when_files_are_skipped() -> None:
    records, contents = _three_files()
    recorder = ProgressRecorder()
    blobs = FakeBlobStore(contents, failing={"uploads/1"})

    _exporter(FakeMetadataStore(records), blobs, recorder).export_all(ADMIN)

    overall = [event.overall for event in recorder.events]
    assert overall == sorted(overall)
    assert overall[-1] == 100


def test_consecutive_failure_threshold_aborts_the_run() -> None:
    records = [_record(index, f"file{index}", "a") for index in range(1, 6)]
    blobs = FakeBlobStore({}, failing={f"uploads/{index}" for index in range(1, 6)})
    recorder = ProgressRecorder()
    exporter = _exporter(
        FakeMetadataStore(records),
        blobs,
        recorder,
        settings=ExportSettings(max_consecutive_failures=2),
    )

    with pytest.raises(ExportFailedError) as excinfo:
        exporter.export_all(ADMIN)

    assert "3 consecutive files" in excinfo.value.user_message
    assert blobs.requests == ["uploads/1", "uploads/2", "uploads/3"]
    assert recorder.events[-1].phase == "failed"


def test_without_threshold_every_file_is_attempted() -> None:
    records = [_record(index, f"file{index}", "a") for index in range(1, 4)]
    contents = {"uploads/3": b"only survivor"}
    blobs = FakeBlobStore(contents, failing={"uploads/1", "uploads/2"})

    result = _exporter(FakeMetadataStore(records), blobs).export_all(ADMIN)

    assert list(_read_zip(result.archive)) == ["a/file3"]
    assert result.skipped_count == 2


def test_finalize_failure_is_fatal() -> None:
    records, contents = _three_files()

    class BrokenArchive(ArchiveBuilder):
        def finalize(self, compression_level=6, progress_callback=None):
            raise OSError("no space left on device")

    with pytest.raises(ExportFailedError) as excinfo:
        _exporter(
            FakeMetadataStore(records),
            FakeBlobStore(contents),
            archive_factory=BrokenArchive,
        ).export_all(ADMIN)

    assert excinfo.value.user_message == "Failed to download files: no space left on device"


def test_filename_embeds_the_start_timestamp() -> None:
    records, contents = _three_files()

    result = _exporter(FakeMetadataStore(records), FakeBlobStore(contents)).export_all(ADMIN)

    assert result.filename == "all-files-2024-05-01T12-30-45-123Z.zip"
    assert result.started_at == FIXED_NOW
    assert result.size == len(result.archive)


def test_locator_falls_back_to_category_and_name() -> None:
    explicit = _record(1, "w2.pdf", "tax", storage_path="custom/key")
    derived = _record(2, "w2.pdf", "tax", storage_path=None)

    assert resolve_locator(explicit) == "custom/key"
    assert resolve_locator(derived) == "files/tax/w2.pdf"


def test_archive_paths_are_not_normalized() -> None:
    record = _record(1, "Report Q1 (final).PDF", "Tax Docs")

    assert archive_path_for(record) == "Tax Docs/Report Q1 (final).PDF"


def test_duplicate_paths_are_all_kept() -> None:
    records = [_record(1, "same.txt", "a"), _record(2, "same.txt", "a")]
    contents = {"uploads/1": b"one", "uploads/2": b"two"}

    result = _exporter(FakeMetadataStore(records), FakeBlobStore(contents)).export_all(ADMIN)

    with zipfile.ZipFile(io.BytesIO(result.archive)) as bundle:
        assert [info.filename for info in bundle.infolist()] == ["a/same.txt", "a/same.txt"]


def test_archive_builder_reports_compression_progress() -> None:
    builder = ArchiveBuilder()
    builder.add_entry("a/one", b"x" * 10)
    builder.add_entry("a/two", b"y" * 30)
    reported: List[float] = []

    archive = builder.finalize(9, reported.append)

    assert reported == [25.0, 100.0]
    assert len(builder) == 2
    assert _read_zip(archive) == {"a/one": b"x" * 10, "a/two": b"y" * 30}


def test_archive_builder_counts_entries_when_all_are_empty() -> None:
    builder = ArchiveBuilder()
    builder.add_entry("a/empty1", b"")
    builder.add_entry("a/empty2", b"")
    reported: List[float] = []

    builder.finalize(progress_callback=reported.append)

    assert reported == [50.0, 100.0]
