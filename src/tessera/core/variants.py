"""Fixed-size display derivatives of an artwork's source image.

Two derivatives are produced from one decode of the source:

==========  =============  =======
Variant     Max dimension  Quality
==========  =============  =======
thumbnail   600 px         85
viewer      2000 px        90
==========  =============  =======

Images that already fit are re-encoded without upscaling.  Larger images are
scaled so the long side equals the target, preserving the aspect ratio.
Once both derivatives are stored and recorded, pyramid generation is
requested from the :class:`~tessera.core.scheduler.TileBatchScheduler`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from PIL import Image

from tessera.core.blob_store import BlobStore
from tessera.core.exceptions import BlobNotFoundError, InvalidStatusTransition, SourceImageError
from tessera.core.models import PyramidStatus
from tessera.core.scheduler import TileBatchScheduler
from tessera.core.status_store import StatusStore
from tessera.core.tile_generator import decode_image, encode_jpeg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantTarget:
    name: str
    max_dimension: int
    quality: int


THUMBNAIL = VariantTarget("thumbnail", 600, 85)
VIEWER = VariantTarget("viewer", 2000, 90)


@dataclass(frozen=True)
class VariantRefs:
    thumbnail_ref: str
    viewer_image_ref: str


def fit_dimensions(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Return the size of an image scaled down to fit *max_dimension*.

    Args:
        width: Original width.
        height: Original height.
        max_dimension: Longest side allowed.

    Returns:
        ``(width, height)`` unchanged when both sides already fit, otherwise
        the long side set to *max_dimension* and the short side rounded.
    """
    if width <= max_dimension and height <= max_dimension:
        return width, height

    aspect_ratio = width / height
    if width > height:
        return max_dimension, max(1, round(max_dimension / aspect_ratio))
    return max(1, round(max_dimension * aspect_ratio)), max_dimension


def render_variant(image: Image.Image, target: VariantTarget) -> bytes:
    """Resize (if needed) and encode one derivative."""
    size = fit_dimensions(image.width, image.height, target.max_dimension)
    if size != image.size:
        image = image.resize(size, Image.Resampling.LANCZOS)
    return encode_jpeg(image, target.quality)


class ImageVariantGenerator:
    """Produce the thumbnail and viewer derivatives, then request the pyramid.

    Args:
        store: Transactional status store.
        blobs: Blob store holding the source and derivatives.
        scheduler: Scheduler that pyramid generation is handed to.
    """

    def __init__(
        self, store: StatusStore, blobs: BlobStore, scheduler: TileBatchScheduler
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.scheduler = scheduler

    def load_source(self, source_image_ref: str) -> Image.Image:
        """Fetch and decode a source image.

        Raises:
            SourceImageError: If the blob is missing or cannot be decoded.
        """
        try:
            source = self.blobs.fetch(source_image_ref)
        except BlobNotFoundError as e:
            raise SourceImageError(f"Source image {source_image_ref} not found") from e
        return decode_image(source)

    def generate(self, source_image_ref: str, artwork_id: str) -> VariantRefs:
        """Generate both derivatives for an artwork and start its pyramid.

        Args:
            source_image_ref: Blob reference of the uploaded source image.
            artwork_id: Artwork the derivatives belong to.

        Returns:
            References of the stored thumbnail and viewer images.

        Raises:
            SourceImageError: If the source cannot be fetched or decoded.
                Nothing is stored or recorded and no pyramid is requested.
            ArtworkNotFoundError: If the artwork is unknown.
            InvalidStatusTransition: If a pyramid already exists and was not
                cleaned up first.
        """
        image = self.load_source(source_image_ref)

        status = self.store.get_pyramid_status(artwork_id)
        if status not in (PyramidStatus.NONE, PyramidStatus.FAILED):
            raise InvalidStatusTransition(artwork_id, status.value, PyramidStatus.PENDING.value)

        thumbnail = render_variant(image, THUMBNAIL)
        viewer = render_variant(image, VIEWER)

        thumbnail_ref = self.blobs.store(thumbnail, "image/jpeg")
        viewer_image_ref = self.blobs.store(viewer, "image/jpeg")
        try:
            previous = self.store.set_variants(artwork_id, thumbnail_ref, viewer_image_ref)
        except Exception:
            self.blobs.delete(thumbnail_ref)
            self.blobs.delete(viewer_image_ref)
            raise

        for old_ref in previous:
            if old_ref and old_ref not in (thumbnail_ref, viewer_image_ref):
                self.blobs.delete(old_ref)

        logger.info(
            f"Generated variants for artwork {artwork_id}: "
            f"thumbnail={thumbnail_ref} viewer={viewer_image_ref} "
            f"(source {image.width}x{image.height})"
        )

        self.scheduler.request(artwork_id, source_image_ref)
        return VariantRefs(thumbnail_ref=thumbnail_ref, viewer_image_ref=viewer_image_ref)
