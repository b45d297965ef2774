"""Tests for tessera.api.dzi - manifest rendering and tile addresses."""

from __future__ import annotations

import xml.etree.ElementTree as ET

import pytest

from tessera.api.dzi import DZI_NAMESPACE, TileAddressError, parse_tile_address, render_manifest
from tessera.core.models import PyramidMetadata


class TestRenderManifest:
    """Test the DZI XML manifest."""

    def test_manifest_fields(self):
        xml = render_manifest(PyramidMetadata(width=4000, height=3000, max_level=12))
        root = ET.fromstring(xml.encode("utf-8"))
        assert root.tag == f"{{{DZI_NAMESPACE}}}Image"
        assert root.attrib == {"Format": "jpg", "Overlap": "1", "TileSize": "512"}
        size = root.find(f"{{{DZI_NAMESPACE}}}Size")
        assert size.attrib == {"Width": "4000", "Height": "3000"}

    def test_xml_declaration(self):
        xml = render_manifest(PyramidMetadata(width=1, height=1, max_level=0))
        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')


class TestParseTileAddress:
    """Test parsing of ``{level}/{col}_{row}.{ext}`` segments."""

    def test_valid(self):
        address = parse_tile_address("a1", "10", "1_0.jpg")
        assert (address.level, address.col, address.row) == (10, 1, 0)
        assert address.extension == "jpg"
        assert address.artwork_id == "a1"

    def test_extension_lowercased(self):
        assert parse_tile_address("a1", "0", "0_0.JPG").extension == "jpg"

    @pytest.mark.parametrize(
        "level,tile_name",
        [
            ("x", "0_0.jpg"),
            ("0", "a_0.jpg"),
            ("0", "0_b.jpg"),
            ("0", "00.jpg"),
            ("-1", "0_0.jpg"),
            ("0", "_0.jpg"),
            ("1.5", "0_0.jpg"),
            ("١", "0_0.jpg"),
        ],
    )
    def test_invalid(self, level, tile_name):
        """Non-numeric or malformed segments raise TileAddressError."""
        with pytest.raises(TileAddressError):
            parse_tile_address("a1", level, tile_name)

    def test_error_is_value_error(self):
        assert issubclass(TileAddressError, ValueError)
