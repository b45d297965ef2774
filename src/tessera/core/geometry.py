"""Deep zoom pyramid geometry.

Pure functions only: no I/O, no image work.  Every value is computed with
integer arithmetic so results are exact for any image size.

Level ``0`` is the image shrunk to a single pixel (one 1x1 tile) and level
``max_level`` is the full-resolution image.  Each level halves the one
above it, rounding up::

    max_level    = ceil(log2(max(width, height)))
    scale(L)     = 2 ** (L - max_level)
    level_width  = ceil(width * scale(L))
    level_height = ceil(height * scale(L))
    cols, rows   = ceil(level_width / TILE_SIZE), ceil(level_height / TILE_SIZE)
"""

from __future__ import annotations

from collections.abc import Iterator

from tessera.core.models import TileSpec

TILE_SIZE = 512
TILE_OVERLAP = 1
TILE_FORMAT = "jpg"


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _require_positive(width: int, height: int) -> None:
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")


def max_level(width: int, height: int) -> int:
    """Return the index of the full-resolution pyramid level.

    Equivalent to ``ceil(log2(max(width, height)))`` without floating point.

    Args:
        width: Source width in pixels.
        height: Source height in pixels.

    Returns:
        The highest level index; ``0`` for a 1x1 image.

    Raises:
        ValueError: If either dimension is not positive.
    """
    _require_positive(width, height)
    return (max(width, height) - 1).bit_length()


def level_dimensions(width: int, height: int, level: int, top_level: int) -> tuple[int, int]:
    """Return ``(level_width, level_height)`` of *level* in a pyramid topped at *top_level*."""
    shift = top_level - level
    if shift <= 0:
        return width, height
    divisor = 1 << shift
    return _ceil_div(width, divisor), _ceil_div(height, divisor)


def tile_grid(level_width: int, level_height: int) -> tuple[int, int]:
    """Return ``(cols, rows)`` of the tile grid covering a level."""
    return _ceil_div(level_width, TILE_SIZE), _ceil_div(level_height, TILE_SIZE)


def tiles_for_level(level_width: int, level_height: int, level: int) -> list[TileSpec]:
    """Enumerate every tile of one level in row-major order."""
    cols, rows = tile_grid(level_width, level_height)
    return [TileSpec(level=level, col=col, row=row) for row in range(rows) for col in range(cols)]


def iter_levels(width: int, height: int) -> Iterator[tuple[int, int, int]]:
    """Yield ``(level, level_width, level_height)`` from level 0 to the top."""
    top = max_level(width, height)
    for level in range(top + 1):
        level_width, level_height = level_dimensions(width, height, level, top)
        yield level, level_width, level_height


def all_tile_specs(width: int, height: int) -> list[TileSpec]:
    """Return every tile of the pyramid, level 0 first.

    Args:
        width: Source width in pixels.
        height: Source height in pixels.

    Returns:
        Tile specs for levels ``0..max_level`` inclusive, each level in
        row-major order.

    Raises:
        ValueError: If either dimension is not positive.
    """
    specs: list[TileSpec] = []
    for level, level_width, level_height in iter_levels(width, height):
        specs.extend(tiles_for_level(level_width, level_height, level))
    return specs


def tile_count(width: int, height: int) -> int:
    """Return the total number of tiles in the pyramid without building the list."""
    total = 0
    for _level, level_width, level_height in iter_levels(width, height):
        cols, rows = tile_grid(level_width, level_height)
        total += cols * rows
    return total


def tile_rect(spec: TileSpec, level_width: int, level_height: int) -> tuple[int, int, int, int]:
    """Return the crop rectangle ``(x, y, width, height)`` of a tile, overlap included.

    Interior edges gain ``TILE_OVERLAP`` pixels on each side; the outer edges
    of the level are clamped to the level bounds.  A tile outside the level
    yields a non-positive width or height, which callers treat as an error.
    """
    left_overlap = TILE_OVERLAP if spec.col > 0 else 0
    top_overlap = TILE_OVERLAP if spec.row > 0 else 0

    x = spec.col * TILE_SIZE - left_overlap
    y = spec.row * TILE_SIZE - top_overlap
    width = min(TILE_SIZE + left_overlap + TILE_OVERLAP, level_width - x)
    height = min(TILE_SIZE + top_overlap + TILE_OVERLAP, level_height - y)
    return x, y, width, height
