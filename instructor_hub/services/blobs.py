"""Binary content storage rooted in a local directory."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

LOGGER = logging.getLogger(__name__)


class BlobStoreError(RuntimeError):
    """Raised when binary content cannot be stored or retrieved."""


class BlobNotFoundError(BlobStoreError):
    """Raised when no content exists for a locator."""


def default_storage_path(category_id: str, file_name: str) -> str:
    """Return the locator used for uploads that carry no explicit path."""

    return f"files/{category_id}/{file_name}"


class LocalBlobStore:
    """Store blobs as files below ``root`` addressed by POSIX-style locators."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, locator: str) -> Path:
        cleaned = (locator or "").strip().lstrip("/")
        if not cleaned:
            raise BlobStoreError("Empty blob locator")
        relative = PurePosixPath(cleaned)
        if ".." in relative.parts:
            raise BlobStoreError(f"Locator escapes the blob store: {locator}")
        candidate = (self._root / Path(*relative.parts)).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise BlobStoreError(f"Locator escapes the blob store: {locator}")
        return candidate

    def put(self, locator: str, data: bytes) -> str:
        target = self._resolve(locator)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as error:
            raise BlobStoreError(f"Could not write blob '{locator}': {error}") from error
        LOGGER.debug("Stored %d byte(s) at %s", len(data), locator)
        return locator

    def get_content(self, locator: str) -> bytes:
        target = self._resolve(locator)
        if not target.is_file():
            raise BlobNotFoundError(f"No blob stored at '{locator}'")
        try:
            return target.read_bytes()
        except OSError as error:
            raise BlobStoreError(f"Could not read blob '{locator}': {error}") from error

    def delete(self, locator: str) -> None:
        target = self._resolve(locator)
        try:
            target.unlink(missing_ok=True)
        except OSError as error:
            raise BlobStoreError(f"Could not delete blob '{locator}': {error}") from error
        LOGGER.debug("Deleted blob %s", locator)


__all__ = [
    "BlobNotFoundError",
    "BlobStoreError",
    "LocalBlobStore",
    "default_storage_path",
]
