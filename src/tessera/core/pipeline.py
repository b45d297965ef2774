"""Collaborator-facing entry points of the image pipeline.

:class:`GalleryPipeline` wires the blob store, status store, task queue,
scheduler and variant generator together and exposes the operations the
artwork CRUD layer calls on create, update and delete:

- :meth:`GalleryPipeline.generate_variants`: derivatives, then pyramid
- :meth:`GalleryPipeline.cleanup_pyramid`: drop every tile and reset
- :meth:`GalleryPipeline.get_pyramid_status`: read-only progress

plus source replacement, artwork deletion and the bulk migrations used to
backfill existing galleries.

Usage
-----
::

    from tessera.core.config import config
    from tessera.core.pipeline import GalleryPipeline

    pipeline = GalleryPipeline.from_config(config)
    pipeline.generate_variants(source_ref, "artwork-1")
    pipeline.run_pending()          # or pipeline.start_worker()
    pipeline.get_pyramid_status("artwork-1")
"""

from __future__ import annotations

import logging
from typing import Any

from tessera.core import geometry
from tessera.core.blob_store import BlobStore, LocalBlobStore
from tessera.core.cleanup import cleanup_pyramid
from tessera.core.config import TesseraConfig
from tessera.core.exceptions import TesseraError
from tessera.core.models import Artwork, PyramidStatus
from tessera.core.scheduler import TileBatchScheduler
from tessera.core.status_store import StatusStore
from tessera.core.task_queue import TaskQueue, TaskWorker
from tessera.core.variants import ImageVariantGenerator, VariantRefs

logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    PyramidStatus.NONE: "none",
    PyramidStatus.PENDING: "processing",
    PyramidStatus.GENERATING: "processing",
    PyramidStatus.COMPLETE: "ready",
    PyramidStatus.FAILED: "processing failed",
}


def status_label(status: PyramidStatus) -> str:
    """Return the admin list label for a pyramid status."""
    return _STATUS_LABELS[PyramidStatus(status)]


def is_publicly_displayable(artwork: Artwork) -> bool:
    """An artwork is ready for the public site once it has a thumbnail and a complete pyramid."""
    return artwork.thumbnail_ref is not None and artwork.pyramid_status == PyramidStatus.COMPLETE


class GalleryPipeline:
    """Facade over the variant, pyramid and cleanup components.

    Attributes:
        store: Transactional status store.
        blobs: Blob store.
        queue: Task queue carrying worker invocations.
        scheduler: Tile batch scheduler.
        variants: Image variant generator.
    """

    def __init__(
        self,
        store: StatusStore,
        blobs: BlobStore,
        queue: TaskQueue,
        batch_size: int = 20,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.queue = queue
        self.scheduler = TileBatchScheduler(store, blobs, queue, batch_size=batch_size)
        self.variants = ImageVariantGenerator(store, blobs, self.scheduler)

    @classmethod
    def from_config(cls, config: TesseraConfig) -> GalleryPipeline:
        """Build a pipeline backed by the local blob store and SQLite database."""
        blobs = LocalBlobStore(config.blob_dir, config.public_base_url)
        store = StatusStore(config.database_path)
        queue = TaskQueue(config.database_path)
        return cls(store, blobs, queue, batch_size=config.batch_size)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def run_pending(self, max_tasks: int | None = None) -> int:
        """Run queued worker tasks in the calling thread until none are left."""
        return self.queue.run_until_empty(max_tasks)

    def start_worker(self, poll_interval: float = 0.5) -> TaskWorker:
        """Start a background thread that drains the task queue."""
        self.queue.requeue_stale()
        worker = TaskWorker(self.queue, poll_interval=poll_interval)
        worker.start()
        return worker

    # ------------------------------------------------------------------
    # Collaborator operations
    # ------------------------------------------------------------------

    def generate_variants(self, source_image_ref: str, artwork_id: str) -> VariantRefs:
        """Generate derivatives for an artwork and request its pyramid.

        The artwork is registered with *source_image_ref* if the pipeline has
        not seen it before.  A known artwork whose recorded source differs
        from *source_image_ref* goes through :meth:`replace_source_image`, so
        the pyramid is always built from the recorded source.

        Raises:
            SourceImageError: If the source cannot be fetched or decoded.
            InvalidStatusTransition: If a pyramid for the same source already
                exists and was not cleaned up first.
        """
        artwork = self.store.find_artwork(artwork_id)
        if artwork is None:
            self.store.register_artwork(artwork_id, source_image_ref)
        elif artwork.source_image_ref != source_image_ref:
            return self.replace_source_image(artwork_id, source_image_ref)
        return self.variants.generate(source_image_ref, artwork_id)

    def cleanup_pyramid(self, artwork_id: str) -> int:
        """Remove every tile of an artwork and reset its pyramid to ``none``."""
        return cleanup_pyramid(self.store, self.blobs, artwork_id)

    def get_pyramid_status(self, artwork_id: str) -> PyramidStatus:
        """Return the current pyramid status.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
        """
        return self.store.get_pyramid_status(artwork_id)

    def pyramid_summary(self, artwork_id: str) -> dict[str, Any]:
        """Return status, label, metadata and tile progress for an artwork."""
        artwork = self.store.get_artwork(artwork_id)
        metadata = artwork.pyramid_metadata
        expected = geometry.tile_count(metadata.width, metadata.height) if metadata else 0
        return {
            "artwork_id": artwork_id,
            "status": artwork.pyramid_status.value,
            "label": status_label(artwork.pyramid_status),
            "metadata": metadata.model_dump() if metadata else None,
            "tiles_generated": self.store.count_tiles(artwork_id),
            "tiles_expected": expected,
            "publicly_displayable": is_publicly_displayable(artwork),
        }

    def replace_source_image(
        self, artwork_id: str, source_image_ref: str, *, delete_previous: bool = True
    ) -> VariantRefs:
        """Swap an artwork's source image and rebuild everything derived from it.

        The new source is decoded first so that an unusable upload leaves the
        artwork untouched.  The old pyramid is then cleaned up before the new
        reference is recorded, so no tile of the previous image survives the
        replacement.

        Args:
            artwork_id: Artwork to update.
            source_image_ref: Blob reference of the new source image.
            delete_previous: Delete the previous source blob once replaced.

        Returns:
            References of the regenerated derivatives.

        Raises:
            SourceImageError: If the new source cannot be fetched or decoded.
            ArtworkNotFoundError: If the artwork is unknown.
        """
        self.store.get_artwork(artwork_id)
        self.variants.load_source(source_image_ref)

        self.cleanup_pyramid(artwork_id)
        previous = self.store.set_source_image(artwork_id, source_image_ref)
        refs = self.variants.generate(source_image_ref, artwork_id)
        if delete_previous and previous != source_image_ref:
            self.blobs.delete(previous)
        logger.info(f"Replaced source image of artwork {artwork_id}")
        return refs

    def delete_artwork(self, artwork_id: str) -> bool:
        """Clean up an artwork's pyramid, delete its image blobs and its row.

        Returns:
            ``False`` if the artwork was not known.
        """
        artwork = self.store.find_artwork(artwork_id)
        if artwork is None:
            return False
        self.cleanup_pyramid(artwork_id)
        for ref in (artwork.source_image_ref, artwork.thumbnail_ref, artwork.viewer_image_ref):
            if ref:
                self.blobs.delete(ref)
        self.store.delete_artwork(artwork_id)
        logger.info(f"Deleted artwork {artwork_id}")
        return True

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def migrate_existing_artworks(self) -> dict[str, int]:
        """Queue pyramid generation for artworks that have none (or failed).

        Artworks whose source blob is missing are skipped.

        Returns:
            ``{"queued": n, "skipped": m}``
        """
        queued = 0
        skipped = 0
        for artwork in self.store.list_artworks_without_pyramid():
            if not self.blobs.exists(artwork.source_image_ref):
                skipped += 1
                continue
            self.scheduler.request(artwork.artwork_id, artwork.source_image_ref)
            queued += 1
        logger.info(f"Pyramid migration: {queued} queued, {skipped} skipped")
        return {"queued": queued, "skipped": skipped}

    def migrate_missing_variants(self) -> dict[str, Any]:
        """Generate derivatives for artworks that have no thumbnail yet."""
        artworks = [a for a in self.store.list_artworks() if a.thumbnail_ref is None]
        return self._regenerate(artworks)

    def regenerate_all_variants(self) -> dict[str, Any]:
        """Regenerate derivatives and pyramids for every artwork."""
        return self._regenerate(self.store.list_artworks())

    def _regenerate(self, artworks: list[Artwork]) -> dict[str, Any]:
        processed = 0
        failed: list[str] = []
        for artwork in artworks:
            try:
                if artwork.pyramid_status not in (PyramidStatus.NONE, PyramidStatus.FAILED):
                    self.cleanup_pyramid(artwork.artwork_id)
                self.variants.generate(artwork.source_image_ref, artwork.artwork_id)
            except TesseraError as e:
                logger.error(f"Variant generation failed for artwork {artwork.artwork_id}: {e}")
                failed.append(f"{artwork.artwork_id}: {e}")
            else:
                processed += 1
        return {"processed": processed, "failed": failed}
