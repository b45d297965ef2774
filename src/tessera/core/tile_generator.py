"""Tile rendering for the deep zoom pyramid.

A tile is produced in three steps:

1. **Resample** the full-resolution source to the level's dimensions
   (skipped at ``max_level`` where the scale is 1).
2. **Crop** the tile rectangle from :func:`tessera.core.geometry.tile_rect`,
   overlap included.
3. **Encode** the crop as JPEG at :data:`TILE_QUALITY`.

:func:`generate_tile` is the self-contained form: it decodes the source bytes
for every call.  Batches use :class:`LevelImageCache` instead, which decodes
the source once and keeps each resampled level for the rest of the batch.
Every level is always resampled from the full-resolution decode, so cached
and uncached tiles are pixel-identical.
"""

from __future__ import annotations

import io
import logging

from PIL import Image

from tessera.core import geometry
from tessera.core.exceptions import SourceImageError, TileGenerationError
from tessera.core.models import TileSpec

logger = logging.getLogger(__name__)

TILE_QUALITY = 85

# Errors Pillow raises for unreadable or hostile input.
_DECODE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def decode_image(data: bytes) -> Image.Image:
    """Decode image bytes into an RGB :class:`PIL.Image.Image`.

    Transparent images are composited onto white because JPEG has no alpha
    channel.

    Args:
        data: Encoded image bytes in any format Pillow reads.

    Returns:
        A fully loaded RGB image.

    Raises:
        SourceImageError: If the bytes cannot be decoded.
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except _DECODE_ERRORS as e:
        raise SourceImageError(f"Cannot decode image: {e}") from e

    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def read_image_size(data: bytes) -> tuple[int, int]:
    """Return ``(width, height)`` of encoded image bytes without decoding pixels.

    Raises:
        SourceImageError: If the bytes are not an image Pillow can identify.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except _DECODE_ERRORS as e:
        raise SourceImageError(f"Cannot decode image: {e}") from e


def encode_jpeg(image: Image.Image, quality: int) -> bytes:
    """Encode an image as JPEG bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def resample_for_level(
    image: Image.Image, width: int, height: int, level: int, max_level: int
) -> Image.Image:
    """Return *image* scaled to the dimensions of *level*.

    The full-resolution level is returned unchanged.
    """
    level_width, level_height = geometry.level_dimensions(width, height, level, max_level)
    if level >= max_level:
        return image
    return image.resize((level_width, level_height), Image.Resampling.LANCZOS)


def crop_tile(level_image: Image.Image, spec: TileSpec) -> Image.Image:
    """Crop one tile, overlap included, from an already resampled level image.

    Raises:
        TileGenerationError: If the tile rectangle falls outside the level.
    """
    level_width, level_height = level_image.size
    x, y, tile_width, tile_height = geometry.tile_rect(spec, level_width, level_height)
    if x < 0 or y < 0 or tile_width <= 0 or tile_height <= 0:
        raise TileGenerationError(
            f"Tile {spec.key} is outside level bounds {level_width}x{level_height}"
        )
    return level_image.crop((x, y, x + tile_width, y + tile_height))


def render_tile(level_image: Image.Image, spec: TileSpec) -> bytes:
    """Crop and encode one tile from a resampled level image."""
    tile = crop_tile(level_image, spec)
    try:
        return encode_jpeg(tile, TILE_QUALITY)
    except _DECODE_ERRORS as e:
        raise TileGenerationError(f"Cannot encode tile {spec.key}: {e}") from e


def generate_tile(
    source: bytes, width: int, height: int, max_level: int, spec: TileSpec
) -> bytes:
    """Generate one encoded tile straight from the source bytes.

    Args:
        source: Encoded source image.
        width: Source width recorded in the pyramid metadata.
        height: Source height recorded in the pyramid metadata.
        max_level: Full-resolution level index.
        spec: Tile to render.

    Returns:
        JPEG bytes of the tile.

    Raises:
        TileGenerationError: If decoding, cropping or encoding fails.
    """
    try:
        image = decode_image(source)
    except SourceImageError as e:
        raise TileGenerationError(f"Tile {spec.key}: {e}") from e
    level_image = resample_for_level(image, width, height, spec.level, max_level)
    return render_tile(level_image, spec)


class LevelImageCache:
    """Decoded source plus resampled levels, shared by the tiles of one batch.

    A batch rarely spans more than a couple of levels, so at most a handful of
    level images are kept.  The cache lives for a single batch invocation and
    is discarded with it.

    Attributes:
        width: Source width recorded in the pyramid metadata.
        height: Source height recorded in the pyramid metadata.
        max_level: Full-resolution level index.
    """

    def __init__(self, source: bytes, width: int, height: int, max_level: int) -> None:
        self.width = width
        self.height = height
        self.max_level = max_level
        self._image = decode_image(source)
        self._levels: dict[int, Image.Image] = {}

        if self._image.size != (width, height):
            logger.warning(
                f"Decoded source is {self._image.size[0]}x{self._image.size[1]}, "
                f"pyramid metadata says {width}x{height}"
            )

    def level(self, level: int) -> Image.Image:
        """Return the resampled image for *level*, computing it on first use."""
        if level not in self._levels:
            self._levels[level] = resample_for_level(
                self._image, self.width, self.height, level, self.max_level
            )
        return self._levels[level]

    def render(self, spec: TileSpec) -> bytes:
        """Generate one encoded tile.

        Raises:
            TileGenerationError: If resampling, cropping or encoding fails.
        """
        try:
            level_image = self.level(spec.level)
        except _DECODE_ERRORS as e:
            raise TileGenerationError(f"Cannot resample level {spec.level}: {e}") from e
        return render_tile(level_image, spec)
