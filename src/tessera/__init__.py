"""Tessera - deep zoom tile pyramids and display derivatives for gallery artworks."""

__version__ = "0.3.0"

from tessera.core.config import TesseraConfig, config
from tessera.core.pipeline import GalleryPipeline

__all__ = [
    "GalleryPipeline",
    "TesseraConfig",
    "config",
]
