"""Deep zoom (DZI) manifest rendering and tile address parsing.

Browser deep zoom viewers address a pyramid as::

    {artwork_id}.dzi                               XML manifest
    {artwork_id}_files/{level}/{col}_{row}.{ext}   one tile

This module turns those addresses into lookups and the stored metadata back
into the manifest.  It holds no state and performs no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass

from tessera.core.models import PyramidMetadata

DZI_NAMESPACE = "http://schemas.microsoft.com/deepzoom/2008"

MANIFEST_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<Image xmlns="{namespace}"
  Format="{format}"
  Overlap="{overlap}"
  TileSize="{tile_size}">
  <Size Width="{width}" Height="{height}"/>
</Image>"""


class TileAddressError(ValueError):
    """A tile address has non-numeric or malformed segments."""


@dataclass(frozen=True)
class TileAddress:
    artwork_id: str
    level: int
    col: int
    row: int
    extension: str


def render_manifest(metadata: PyramidMetadata) -> str:
    """Return the DZI XML manifest for a pyramid."""
    return MANIFEST_TEMPLATE.format(
        namespace=DZI_NAMESPACE,
        format=metadata.format,
        overlap=metadata.overlap,
        tile_size=metadata.tile_size,
        width=metadata.width,
        height=metadata.height,
    )


def _parse_index(value: str, name: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise TileAddressError(f"Invalid {name}: {value!r}")
    return int(value)


def parse_tile_address(artwork_id: str, level: str, tile_name: str) -> TileAddress:
    """Parse the variable parts of a tile URL.

    Args:
        artwork_id: Artwork id taken from the ``{artwork_id}_files`` segment.
        level: Level segment.
        tile_name: Final segment, ``{col}_{row}.{ext}``.

    Returns:
        The parsed :class:`TileAddress`.

    Raises:
        TileAddressError: If any numeric part is missing or not a
            non-negative integer.
    """
    stem, dot, extension = tile_name.rpartition(".")
    if not dot:
        stem, extension = tile_name, ""
    col_text, sep, row_text = stem.partition("_")
    if not sep:
        raise TileAddressError(f"Invalid tile name: {tile_name!r}")
    return TileAddress(
        artwork_id=artwork_id,
        level=_parse_index(level, "level"),
        col=_parse_index(col_text, "column"),
        row=_parse_index(row_text, "row"),
        extension=extension.lower(),
    )
