from __future__ import annotations

import pytest

from instructor_hub.config import AppConfig
from instructor_hub.services.blobs import BlobNotFoundError, LocalBlobStore
from instructor_hub.services.storage import FileRepository, MetadataStoreError
from instructor_hub.services.uploads import FileNotFoundInStoreError, FileService, UploadError


def _service(config: AppConfig):
    repository = FileRepository(config)
    blob_store = LocalBlobStore(config.blob_root)
    return FileService(repository, blob_store), repository, blob_store


def test_upload_stores_blob_and_metadata(temp_config: AppConfig) -> None:
    service, repository, blob_store = _service(temp_config)

    record = service.upload(
        "C:\\Users\\me\\notes.txt",
        b"hello",
        category_id="teaching",
        organization=" City College ",
    )

    assert record.file_name == "notes.txt"
    assert record.file_size == 5
    assert record.file_type == "text/plain"
    assert record.storage_path == "files/teaching/notes.txt"
    assert record.organization == "City College"
    assert blob_store.get_content("files/teaching/notes.txt") == b"hello"
    assert repository.count_files() == 1


@pytest.mark.parametrize(("file_name", "category_id"), [("", "tax"), ("w2.pdf", "  ")])
def test_upload_requires_file_and_category(
    temp_config: AppConfig, file_name: str, category_id: str
) -> None:
    service, repository, _ = _service(temp_config)

    with pytest.raises(UploadError, match="Please select both a file and a category"):
        service.upload(file_name, b"data", category_id=category_id)

    assert repository.count_files() == 0


def test_upload_removes_blob_when_metadata_write_fails(
    temp_config: AppConfig, monkeypatch
) -> None:
    service, repository, blob_store = _service(temp_config)

    def failing_add_file(*args, **kwargs):
        raise MetadataStoreError("disk full")

    monkeypatch.setattr(repository, "add_file", failing_add_file)

    with pytest.raises(MetadataStoreError):
        service.upload("w2.pdf", b"data", category_id="tax")

    assert not (blob_store.root / "files" / "tax" / "w2.pdf").exists()


def test_read_and_delete(temp_config: AppConfig) -> None:
    service, repository, blob_store = _service(temp_config)
    record = service.upload("plan.md", b"# plan", category_id="teaching")

    fetched, content = service.read(record.id)
    assert fetched.id == record.id
    assert content == b"# plan"

    deleted = service.delete(record.id)
    assert deleted.file_name == "plan.md"
    assert repository.get_file(record.id) is None
    assert not (blob_store.root / "files" / "teaching" / "plan.md").exists()

    with pytest.raises(FileNotFoundInStoreError):
        service.read(record.id)
    with pytest.raises(FileNotFoundInStoreError):
        service.delete(record.id)


def test_read_uses_default_locator_for_records_without_storage_path(
    temp_config: AppConfig,
) -> None:
    service, repository, blob_store = _service(temp_config)
    file_id = repository.add_file("legacy.txt", category_id="legacy")

    with pytest.raises(BlobNotFoundError):
        service.read(file_id)

    blob_store.put("files/legacy/legacy.txt", b"old")
    _, content = service.read(file_id)
    assert content == b"old"
