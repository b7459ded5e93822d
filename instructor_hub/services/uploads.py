"""Upload and deletion flows that keep blobs and metadata in step."""

from __future__ import annotations

import logging
import mimetypes
from typing import Optional

from .blobs import BlobStoreError, LocalBlobStore, default_storage_path
from .export import resolve_locator
from .naming import sanitize_file_name
from .storage import FileRecord, FileRepository, MetadataStoreError

LOGGER = logging.getLogger(__name__)


class UploadError(ValueError):
    """Raised when an upload request is incomplete."""


class FileNotFoundInStoreError(LookupError):
    """Raised when a file id is not present in the metadata store."""


class FileService:
    def __init__(self, repository: FileRepository, blob_store: LocalBlobStore) -> None:
        self._repository = repository
        self._blob_store = blob_store

    def upload(
        self,
        file_name: str,
        data: bytes,
        *,
        category_id: str,
        file_type: Optional[str] = None,
        organization: str = "",
    ) -> FileRecord:
        cleaned_name = sanitize_file_name(file_name)
        cleaned_category = (category_id or "").strip()
        if not cleaned_name or not cleaned_category:
            raise UploadError("Please select both a file and a category")

        mime_type = file_type or mimetypes.guess_type(cleaned_name)[0] or "application/octet-stream"
        locator = default_storage_path(cleaned_category, cleaned_name)
        self._blob_store.put(locator, data)

        try:
            file_id = self._repository.add_file(
                cleaned_name,
                category_id=cleaned_category,
                file_size=len(data),
                file_type=mime_type,
                storage_path=locator,
                organization=(organization or "").strip(),
            )
        except MetadataStoreError:
            LOGGER.error("Metadata write failed for '%s'; removing stored blob", locator)
            try:
                self._blob_store.delete(locator)
            except BlobStoreError as cleanup_error:
                LOGGER.warning("Could not remove orphaned blob %s: %s", locator, cleanup_error)
            raise

        record = self._repository.get_file(file_id)
        if record is None:
            raise MetadataStoreError(f"File '{cleaned_name}' vanished after upload")
        LOGGER.info("Uploaded '%s' to category '%s' (id=%s)", cleaned_name, cleaned_category, file_id)
        return record

    def read(self, file_id: int) -> tuple[FileRecord, bytes]:
        record = self._repository.get_file(file_id)
        if record is None:
            raise FileNotFoundInStoreError(f"File {file_id} not found")
        locator = resolve_locator(record)
        return record, self._blob_store.get_content(locator)

    def delete(self, file_id: int) -> FileRecord:
        record = self._repository.get_file(file_id)
        if record is None:
            raise FileNotFoundInStoreError(f"File {file_id} not found")
        locator = resolve_locator(record)
        self._blob_store.delete(locator)
        self._repository.remove_file(file_id)
        LOGGER.info("Deleted '%s' (id=%s)", record.file_name, file_id)
        return record


__all__ = ["FileNotFoundInStoreError", "FileService", "UploadError"]
