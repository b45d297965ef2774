"""Tests for tessera.core.tile_generator - resample, crop and encode.

Tests cover:
- Source decoding, including alpha flattening and corrupt input.
- Reading source dimensions without decoding pixels.
- Tile sizes with overlap at the full-resolution level.
- Out-of-range tiles raising TileGenerationError.
- Cached and uncached rendering producing identical tiles.
"""

from __future__ import annotations

import io
from unittest.mock import patch

import pytest
from PIL import Image, PngImagePlugin

from tessera.core.exceptions import SourceImageError, TileGenerationError
from tessera.core.models import TileSpec
from tessera.core.tile_generator import (
    LevelImageCache,
    decode_image,
    generate_tile,
    read_image_size,
    resample_for_level,
)


def _size_of(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as image:
        assert image.format == "JPEG"
        return image.size


class TestDecodeImage:
    """Verify source decoding."""

    def test_rgb_png(self, image_bytes):
        """A PNG should decode to an RGB image of the same size."""
        image = decode_image(image_bytes(30, 20))
        assert image.mode == "RGB"
        assert image.size == (30, 20)

    def test_alpha_flattened_onto_white(self, image_bytes):
        """Fully transparent pixels should become white."""
        data = image_bytes(10, 10, mode="RGBA", color=(0, 0, 0, 0))
        image = decode_image(data)
        assert image.mode == "RGB"
        assert image.getpixel((5, 5)) == (255, 255, 255)

    def test_greyscale_converted(self, image_bytes):
        """Greyscale sources should be converted to RGB."""
        image = decode_image(image_bytes(8, 8, mode="L", color=128))
        assert image.mode == "RGB"

    def test_corrupt_bytes(self):
        """Undecodable bytes should raise SourceImageError."""
        with pytest.raises(SourceImageError):
            decode_image(b"definitely not an image")


class TestReadImageSize:
    """Verify the lazy dimension read used when a pyramid starts."""

    def test_png_size(self, image_bytes):
        assert read_image_size(image_bytes(600, 400)) == (600, 400)

    def test_pixels_not_decoded(self, image_bytes):
        """Only the header is read; pixel data is never loaded."""
        data = image_bytes(64, 32)
        with patch.object(
            PngImagePlugin.PngImageFile, "load", side_effect=AssertionError("loaded")
        ):
            assert read_image_size(data) == (64, 32)

    def test_corrupt_bytes(self):
        with pytest.raises(SourceImageError):
            read_image_size(b"definitely not an image")


class TestGenerateTile:
    """Verify single tile rendering."""

    def test_top_level_tiles_include_overlap(self, image_bytes):
        """600x400 at max level: the left tile is 513 wide, the right 89."""
        source = image_bytes(600, 400)
        left = generate_tile(source, 600, 400, 10, TileSpec(level=10, col=0, row=0))
        right = generate_tile(source, 600, 400, 10, TileSpec(level=10, col=1, row=0))
        assert _size_of(left) == (513, 400)
        assert _size_of(right) == (89, 400)

    def test_lower_level_resampled(self, image_bytes):
        """Level 9 of a 600x400 image is a single 300x200 tile."""
        source = image_bytes(600, 400)
        tile = generate_tile(source, 600, 400, 10, TileSpec(level=9, col=0, row=0))
        assert _size_of(tile) == (300, 200)

    def test_level_zero_is_one_pixel(self, image_bytes):
        """Level 0 is a 1x1 tile."""
        source = image_bytes(600, 400)
        tile = generate_tile(source, 600, 400, 10, TileSpec(level=0, col=0, row=0))
        assert _size_of(tile) == (1, 1)

    def test_out_of_range_tile(self, image_bytes):
        """A tile outside the level grid should raise TileGenerationError."""
        source = image_bytes(600, 400)
        with pytest.raises(TileGenerationError):
            generate_tile(source, 600, 400, 10, TileSpec(level=10, col=5, row=0))

    def test_corrupt_source(self):
        """An undecodable source is a tile failure, not a source failure."""
        with pytest.raises(TileGenerationError):
            generate_tile(b"garbage", 600, 400, 10, TileSpec(level=0, col=0, row=0))


class TestLevelImageCache:
    """Verify the per-batch decode cache."""

    def test_matches_uncached_output(self, image_bytes):
        """Cached tiles should be byte-identical to uncached ones."""
        source = image_bytes(700, 300, color=(10, 200, 90))
        cache = LevelImageCache(source, 700, 300, 10)
        for spec in [
            TileSpec(level=10, col=1, row=0),
            TileSpec(level=8, col=0, row=0),
            TileSpec(level=0, col=0, row=0),
        ]:
            assert cache.render(spec) == generate_tile(source, 700, 300, 10, spec)

    def test_level_reused(self, image_bytes):
        """A level image should be computed once per cache."""
        cache = LevelImageCache(image_bytes(600, 400), 600, 400, 10)
        assert cache.level(9) is cache.level(9)

    def test_top_level_not_resampled(self, image_bytes):
        """The full-resolution level is the decoded source itself."""
        image = decode_image(image_bytes(40, 30))
        assert resample_for_level(image, 40, 30, 6, 6) is image

    def test_corrupt_source_raises_source_error(self):
        """A cache over undecodable bytes should raise SourceImageError."""
        with pytest.raises(SourceImageError):
            LevelImageCache(b"garbage", 600, 400, 10)
