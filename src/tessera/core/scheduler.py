"""Tile batch scheduling for pyramid generation.

A pyramid for a large image has hundreds or thousands of tiles, far more
than one time-bounded worker invocation can render.  The scheduler splits
the work into fixed-size batches and chains them through the task queue:

1. :meth:`TileBatchScheduler.request` marks the pyramid ``pending`` and
   enqueues a ``pyramid.start`` task.
2. :meth:`TileBatchScheduler.start` measures the source, records the pyramid
   metadata, moves the status to ``generating`` and enqueues the first
   ``pyramid.batch`` task carrying a :class:`BatchContinuation`.
3. :meth:`TileBatchScheduler.run_batch` renders its slice, persists each tile
   through the status store, and then either enqueues the continuation for
   the next slice or marks the pyramid ``complete``.

Each batch carries the whole remaining-work list forward, so there is never
more than one batch in flight per artwork.

Failure handling
----------------
- Source missing or undecodable at ``start``: :class:`SourceImageError` is
  raised before anything is written; the pyramid keeps its prior status.
- One tile fails to render or persist, a database error included: the
  failure is logged, the tile is left out of the pyramid, and the batch
  carries on.
- Source missing or undecodable during a batch: the pyramid is marked
  ``failed`` and no continuation is scheduled.
- The pyramid is no longer ``generating`` (Cleanup ran while the batch was
  queued or running), or the artwork now points at a different source: the
  batch stops without writing anything further.
- Any other error escaping a batch: the pyramid is marked ``failed`` before
  the error propagates to the task queue, which records the task as
  ``error``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from tessera.core import geometry
from tessera.core.blob_store import BlobStore
from tessera.core.exceptions import (
    ArtworkNotFoundError,
    BlobNotFoundError,
    InvalidStatusTransition,
    SourceImageError,
    TileGenerationError,
)
from tessera.core.models import (
    BatchContinuation,
    PyramidMetadata,
    PyramidRequest,
    PyramidStatus,
    TileRecord,
    TileSpec,
)
from tessera.core.status_store import StatusStore
from tessera.core.task_queue import TaskQueue
from tessera.core.tile_generator import LevelImageCache, read_image_size

logger = logging.getLogger(__name__)

START_TASK = "pyramid.start"
BATCH_TASK = "pyramid.batch"

DEFAULT_BATCH_SIZE = 20


@dataclass
class BatchResult:
    """Outcome of one batch.

    Attributes:
        successes: Tiles rendered and recorded.
        failures: Tiles skipped, with the reason.
        aborted: The batch stopped early because the pyramid left the
            ``generating`` state.
        next_task_id: Task id of the scheduled continuation, if any.
    """

    successes: list[TileSpec] = field(default_factory=list)
    failures: list[tuple[TileSpec, str]] = field(default_factory=list)
    aborted: bool = False
    next_task_id: int | None = None


class TileBatchScheduler:
    """Drive a pyramid to completion one bounded batch at a time.

    Args:
        store: Transactional status store.
        blobs: Blob store holding source images and tiles.
        queue: Task queue that carries start requests and continuations.
        batch_size: Tiles rendered per invocation.
    """

    def __init__(
        self,
        store: StatusStore,
        blobs: BlobStore,
        queue: TaskQueue,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.blobs = blobs
        self.queue = queue
        self.batch_size = batch_size

        queue.register(START_TASK, self._handle_start)
        queue.register(BATCH_TASK, self._handle_batch)

    # ------------------------------------------------------------------
    # Task handlers
    # ------------------------------------------------------------------

    def _handle_start(self, payload: dict) -> None:
        request = PyramidRequest.model_validate(payload)
        self.start(request.artwork_id, request.source_image_ref)

    def _handle_batch(self, payload: dict) -> None:
        self.run_batch(BatchContinuation.model_validate(payload))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def request(self, artwork_id: str, source_image_ref: str) -> int:
        """Mark the pyramid ``pending`` and queue its start.

        Returns:
            The id of the queued start task.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
            InvalidStatusTransition: If the pyramid is not ``none`` or
                ``failed``; a complete or running pyramid must be cleaned up
                first.
        """
        self.store.set_pyramid_status(artwork_id, PyramidStatus.PENDING)
        task_id = self.queue.enqueue(
            START_TASK,
            PyramidRequest(artwork_id=artwork_id, source_image_ref=source_image_ref),
        )
        logger.info(f"Queued pyramid generation for artwork {artwork_id} (task {task_id})")
        return task_id

    def start(self, artwork_id: str, source_image_ref: str) -> BatchContinuation | None:
        """Record pyramid metadata, set ``generating`` and schedule the first batch.

        Args:
            artwork_id: Artwork to generate the pyramid for.
            source_image_ref: Blob reference of the source image.

        Returns:
            The scheduled first continuation, or ``None`` if the pyramid was
            no longer ``pending`` and nothing was scheduled.

        Raises:
            SourceImageError: If the source cannot be fetched or decoded.
        """
        try:
            source = self.blobs.fetch(source_image_ref)
        except BlobNotFoundError as e:
            raise SourceImageError(f"Source image {source_image_ref} not found") from e
        width, height = read_image_size(source)

        top_level = geometry.max_level(width, height)
        metadata = PyramidMetadata(
            width=width,
            height=height,
            tile_size=geometry.TILE_SIZE,
            overlap=geometry.TILE_OVERLAP,
            format=geometry.TILE_FORMAT,
            max_level=top_level,
        )
        try:
            self.store.start_generation(artwork_id, metadata)
        except InvalidStatusTransition as e:
            logger.warning(f"Not starting pyramid for artwork {artwork_id}: {e}")
            return None

        specs = geometry.all_tile_specs(width, height)
        continuation = BatchContinuation(
            artwork_id=artwork_id,
            source_image_ref=source_image_ref,
            current_batch=specs[: self.batch_size],
            remaining=specs[self.batch_size :],
            width=width,
            height=height,
            max_level=top_level,
        )
        self.queue.enqueue(BATCH_TASK, continuation)
        logger.info(
            f"Started pyramid for artwork {artwork_id}: {width}x{height}, "
            f"{top_level + 1} levels, {len(specs)} tiles"
        )
        return continuation

    def run_batch(self, continuation: BatchContinuation) -> BatchResult:
        """Render one batch of tiles and schedule the next one.

        Per-tile failures are folded into the result rather than raised, so
        the continuation decision at the end is the same whatever happened to
        individual tiles.

        Args:
            continuation: The batch to render plus the remaining work.

        Returns:
            The :class:`BatchResult` of this invocation.

        Raises:
            Exception: Any error the batch cannot skip, after the pyramid has
                been marked ``failed``.
        """
        artwork_id = continuation.artwork_id
        result = BatchResult()

        if not self._is_current(continuation):
            logger.info(f"Dropping stale batch for artwork {artwork_id}")
            result.aborted = True
            return result

        try:
            source = self.blobs.fetch(continuation.source_image_ref)
            cache = LevelImageCache(
                source, continuation.width, continuation.height, continuation.max_level
            )
        except (BlobNotFoundError, SourceImageError) as e:
            logger.error(f"Pyramid for artwork {artwork_id} failed: {e}")
            self._mark(artwork_id, PyramidStatus.FAILED)
            result.aborted = True
            return result

        try:
            for spec in continuation.current_batch:
                try:
                    self._generate_and_record(artwork_id, spec, cache)
                except _PyramidGone:
                    logger.info(f"Artwork {artwork_id} left generating mid-batch; stopping")
                    result.aborted = True
                    return result
                except (TileGenerationError, OSError, sqlite3.Error) as e:
                    logger.error(
                        f"Failed to generate tile {spec.key} for artwork {artwork_id}: {e}",
                        exc_info=True,
                    )
                    result.failures.append((spec, str(e)))
                else:
                    result.successes.append(spec)

            logger.info(
                f"Artwork {artwork_id} batch done: {len(result.successes)} ok, "
                f"{len(result.failures)} failed, {len(continuation.remaining)} remaining"
            )

            next_batch = continuation.next(self.batch_size)
            if next_batch is not None:
                result.next_task_id = self.queue.enqueue(BATCH_TASK, next_batch)
            else:
                self._mark(artwork_id, PyramidStatus.COMPLETE)
        except Exception:
            logger.error(f"Pyramid for artwork {artwork_id} failed mid-batch", exc_info=True)
            self._mark(artwork_id, PyramidStatus.FAILED)
            raise
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_current(self, continuation: BatchContinuation) -> bool:
        # A batch left over from a replaced source must not touch the new pyramid.
        artwork = self.store.find_artwork(continuation.artwork_id)
        return (
            artwork is not None
            and artwork.pyramid_status == PyramidStatus.GENERATING
            and artwork.source_image_ref == continuation.source_image_ref
        )

    def _generate_and_record(self, artwork_id: str, spec: TileSpec, cache: LevelImageCache) -> None:
        tile = cache.render(spec)
        blob_ref = self.blobs.store(tile, "image/jpeg")
        record = TileRecord(
            artwork_id=artwork_id,
            level=spec.level,
            col=spec.col,
            row=spec.row,
            blob_ref=blob_ref,
        )
        try:
            inserted = self.store.insert_tile(record)
        except sqlite3.Error:
            self.blobs.delete(blob_ref)
            raise
        if not inserted:
            # The record was refused, so nothing references this blob.
            self.blobs.delete(blob_ref)
            raise _PyramidGone(artwork_id)

    def _mark(self, artwork_id: str, status: PyramidStatus) -> None:
        try:
            self.store.set_pyramid_status(artwork_id, status)
        except (ArtworkNotFoundError, InvalidStatusTransition) as e:
            logger.warning(f"Could not mark artwork {artwork_id} {status.value}: {e}")


class _PyramidGone(Exception):
    """Internal signal: a tile insert was refused because the pyramid stopped generating."""
