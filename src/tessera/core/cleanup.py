"""Tile pyramid cleanup.

Cleanup is the only deletion path for tile records.  It removes every tile
blob and record of an artwork, clears the pyramid metadata and forces the
status back to ``none``.  It is idempotent and safe to run while a batch is
still queued: the batch sees the status change and stops (see
:mod:`tessera.core.scheduler`).
"""

import logging

from tessera.core.blob_store import BlobStore
from tessera.core.models import PyramidStatus
from tessera.core.status_store import StatusStore

logger = logging.getLogger(__name__)


def cleanup_pyramid(store: StatusStore, blobs: BlobStore, artwork_id: str) -> int:
    """Delete all tiles of an artwork and reset its pyramid state.

    The status is reset first so that an in-flight batch stops inserting
    records, then each tile's blob is deleted followed by its record.

    Args:
        store: Transactional status store.
        blobs: Blob store holding the tiles.
        artwork_id: Artwork to clean up.

    Returns:
        Number of tile records removed.

    Raises:
        ArtworkNotFoundError: If the artwork is unknown.
    """
    store.set_pyramid_status(artwork_id, PyramidStatus.NONE, force=True)

    removed = 0
    for tile in store.list_tiles(artwork_id):
        if not blobs.delete(tile.blob_ref):
            logger.warning(
                f"Tile blob {tile.blob_ref} for artwork {artwork_id} was already missing"
            )
        if store.delete_tile(artwork_id, tile.level, tile.col, tile.row):
            removed += 1

    store.set_pyramid_metadata(artwork_id, None)

    if removed:
        logger.info(f"Cleaned up {removed} tile(s) for artwork {artwork_id}")
    return removed
