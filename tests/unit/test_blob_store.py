"""Tests for tessera.core.blob_store - the file-backed blob store.

Tests cover:
- Storing, fetching and deleting blobs by reference.
- Existence checks that never read blob content.
- Rejection of references that could escape the store directory.
- Public URLs and media types derived from references.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from tessera.core.blob_store import LocalBlobStore, content_type_for
from tessera.core.exceptions import BlobNotFoundError


class TestStoreAndFetch:
    def test_round_trip(self, blob_store: LocalBlobStore):
        ref = blob_store.store(b"tile bytes", "image/jpeg")
        assert ref.endswith(".jpg")
        assert blob_store.fetch(ref) == b"tile bytes"

    def test_no_partial_files_left(self, blob_store: LocalBlobStore):
        blob_store.store(b"x", "image/png")
        assert not list(blob_store.root.glob("*.part"))
        assert blob_store.count() == 1

    def test_fetch_missing(self, blob_store: LocalBlobStore):
        with pytest.raises(BlobNotFoundError):
            blob_store.fetch("0" * 32 + ".jpg")

    def test_delete(self, blob_store: LocalBlobStore):
        ref = blob_store.store(b"x")
        assert blob_store.delete(ref) is True
        assert blob_store.delete(ref) is False
        assert blob_store.count() == 0


class TestExists:
    """Verify existence checks on the local store."""

    def test_stored_blob(self, blob_store: LocalBlobStore):
        ref = blob_store.store(b"x", "image/png")
        assert blob_store.exists(ref) is True

    def test_missing_blob(self, blob_store: LocalBlobStore):
        assert blob_store.exists("e" * 32 + ".png") is False

    @pytest.mark.parametrize("ref", ["../secret", "not-a-ref", ""])
    def test_invalid_reference(self, blob_store: LocalBlobStore, ref):
        assert blob_store.exists(ref) is False

    def test_content_not_read(self, blob_store: LocalBlobStore):
        """Checking existence does not load the blob."""
        ref = blob_store.store(b"x" * 1024, "image/png")
        with patch.object(LocalBlobStore, "fetch", side_effect=AssertionError("fetched")):
            with patch.object(Path, "read_bytes", side_effect=AssertionError("read")):
                assert blob_store.exists(ref) is True


class TestReferences:
    """Verify reference validation, URLs and media types."""

    @pytest.mark.parametrize("ref", ["../tessera.db", "a/b.jpg", "ABC.jpg"])
    def test_path_for_rejects_invalid(self, blob_store: LocalBlobStore, ref):
        with pytest.raises(BlobNotFoundError):
            blob_store.path_for(ref)

    def test_path_for_existing(self, blob_store: LocalBlobStore):
        ref = blob_store.store(b"x")
        assert blob_store.path_for(ref) == blob_store.root / ref

    def test_url_for(self, temp_dir: Path):
        store = LocalBlobStore(temp_dir / "blobs", "https://gallery.example.com/")
        assert store.url_for("a" * 32 + ".jpg") == (
            "https://gallery.example.com/blobs/" + "a" * 32 + ".jpg"
        )

    @pytest.mark.parametrize(
        "ref,content_type",
        [
            ("a" * 32 + ".jpg", "image/jpeg"),
            ("a" * 32 + ".png", "image/png"),
            ("a" * 32, "application/octet-stream"),
        ],
    )
    def test_content_type_for(self, ref, content_type):
        assert content_type_for(ref) == content_type
