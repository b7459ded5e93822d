from pathlib import Path

import pytest

from instructor_hub.services.blobs import (
    BlobNotFoundError,
    BlobStoreError,
    LocalBlobStore,
    default_storage_path,
)


def test_default_storage_path_groups_by_category() -> None:
    assert default_storage_path("tax", "w2.pdf") == "files/tax/w2.pdf"


def test_put_get_and_delete(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)

    locator = store.put("files/tax/w2.pdf", b"%PDF-1.4")

    assert locator == "files/tax/w2.pdf"
    assert (tmp_path / "files" / "tax" / "w2.pdf").read_bytes() == b"%PDF-1.4"
    assert (tmp_path / "files" / "tax" / "w2.pdf").is_file()
    assert store.get_content(locator) == b"%PDF-1.4"

    store.delete(locator)
    assert not (tmp_path / "files" / "tax" / "w2.pdf").exists()
    store.delete(locator)


def test_missing_blob_raises_not_found(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)

    with pytest.raises(BlobNotFoundError):
        store.get_content("files/tax/missing.pdf")


@pytest.mark.parametrize("locator", ["", "   ", "../outside.txt", "files/../../outside.txt"])
def test_rejects_locators_outside_the_root(tmp_path: Path, locator: str) -> None:
    store = LocalBlobStore(tmp_path / "blobs")

    with pytest.raises(BlobStoreError):
        store.put(locator, b"data")
    with pytest.raises(BlobStoreError):
        store.get_content(locator)
    assert not (tmp_path / "outside.txt").exists()
