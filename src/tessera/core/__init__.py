"""Core image pipeline: geometry, rendering, scheduling and persistence.

Architecture Overview
---------------------
The core splits into two execution contexts that only meet through
:class:`~tessera.core.status_store.StatusStore`:

1. **Transactional context** (status_store.py):
   - Short SQLite transactions for artwork pyramid state and tile records
   - No network or image work

2. **Worker context** (scheduler.py, variants.py, tile_generator.py):
   - Blob fetches and Pillow decode/resample/encode
   - Every persisted effect goes back through the status store
   - Work is chained through the persistent task queue (task_queue.py) in
     bounded batches

Supporting modules:

- geometry.py: pure pyramid math
- blob_store.py: file-backed blob storage
- cleanup.py: tile deletion and status reset
- pipeline.py: collaborator-facing facade
- config.py: Pydantic Settings configuration

Usage Example
-------------
    from tessera.core import GalleryPipeline, config

    pipeline = GalleryPipeline.from_config(config)
    pipeline.generate_variants(source_ref, artwork_id)
"""

from tessera.core.config import TesseraConfig, config
from tessera.core.pipeline import GalleryPipeline

__all__ = [
    "GalleryPipeline",
    "TesseraConfig",
    "config",
]
