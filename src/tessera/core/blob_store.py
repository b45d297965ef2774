"""File-backed blob store.

The pipeline only needs four things from a blob store: put bytes and get an
opaque reference back, fetch bytes by reference, delete by reference, and
build a public URL for a reference.  :class:`BlobStore` is that interface;
:class:`LocalBlobStore` keeps blobs as flat files in one directory, named by
a random hex id plus an extension derived from the content type.

References are opaque to callers.  They are validated on every access so a
reference can never address a path outside the store directory.
"""

from __future__ import annotations

import logging
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

from tessera.core.exceptions import BlobNotFoundError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/tiff": ".tif",
}

_REF_PATTERN = re.compile(r"^[0-9a-f]{32}(\.[a-z0-9]{1,5})?$")


def content_type_for(ref: str) -> str:
    """Return the media type implied by a blob reference's extension."""
    suffix = Path(ref).suffix
    for content_type, extension in _EXTENSIONS.items():
        if extension == suffix:
            return content_type
    return "application/octet-stream"


class BlobStore(ABC):
    """Minimal blob storage interface used by the pipeline."""

    @abstractmethod
    def store(self, data: bytes, content_type: str = "image/jpeg") -> str:
        """Persist *data* and return its reference."""

    @abstractmethod
    def fetch(self, ref: str) -> bytes:
        """Return the bytes behind *ref*.

        Raises:
            BlobNotFoundError: If nothing is stored under *ref*.
        """

    @abstractmethod
    def delete(self, ref: str) -> bool:
        """Delete *ref*; return ``False`` if it did not exist."""

    @abstractmethod
    def url_for(self, ref: str) -> str:
        """Return the public URL of *ref*."""

    def exists(self, ref: str) -> bool:
        """Return whether *ref* is stored."""
        try:
            self.fetch(ref)
        except BlobNotFoundError:
            return False
        return True


class LocalBlobStore(BlobStore):
    """Blob store backed by a local directory.

    Args:
        root: Directory holding the blob files (created if missing).
        public_base_url: Base URL under which ``/blobs/{ref}`` is served.
    """

    def __init__(self, root: Path, public_base_url: str = "") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, ref: str) -> Path:
        if not _REF_PATTERN.match(ref):
            raise BlobNotFoundError(f"Invalid blob reference: {ref!r}")
        return self.root / ref

    def store(self, data: bytes, content_type: str = "image/jpeg") -> str:
        ref = uuid.uuid4().hex + _EXTENSIONS.get(content_type, "")
        path = self.root / ref
        # Write to a temporary name first so readers never see partial blobs.
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
        logger.debug(f"Stored blob {ref} ({len(data)} bytes)")
        return ref

    def fetch(self, ref: str) -> bytes:
        path = self._path(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {ref}") from e

    def delete(self, ref: str) -> bool:
        try:
            path = self._path(ref)
        except BlobNotFoundError:
            return False
        if not path.exists():
            logger.debug(f"Blob already absent: {ref}")
            return False
        path.unlink()
        logger.debug(f"Deleted blob {ref}")
        return True

    def exists(self, ref: str) -> bool:
        try:
            return self._path(ref).is_file()
        except BlobNotFoundError:
            return False

    def url_for(self, ref: str) -> str:
        return f"{self.public_base_url}/blobs/{ref}"

    def path_for(self, ref: str) -> Path:
        """Return the on-disk path of an existing blob.

        Raises:
            BlobNotFoundError: If the reference is invalid or missing.
        """
        path = self._path(ref)
        if not path.is_file():
            raise BlobNotFoundError(f"Blob not found: {ref}")
        return path

    def count(self) -> int:
        """Return the number of stored blobs."""
        return sum(1 for p in self.root.iterdir() if _REF_PATTERN.match(p.name))
