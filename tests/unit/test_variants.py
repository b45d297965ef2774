"""Tests for tessera.core.variants - thumbnail and viewer derivatives."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from tessera.core.blob_store import LocalBlobStore
from tessera.core.exceptions import InvalidStatusTransition, SourceImageError
from tessera.core.models import PyramidStatus
from tessera.core.pipeline import GalleryPipeline
from tessera.core.variants import THUMBNAIL, VIEWER, fit_dimensions, render_variant


def _jpeg_size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as image:
        assert image.format == "JPEG"
        return image.size


class TestFitDimensions:
    """Test aspect-preserving downscaling."""

    @pytest.mark.parametrize(
        "size,max_dimension,expected",
        [
            ((4000, 3000), 600, (600, 450)),
            ((3000, 4000), 600, (450, 600)),
            ((5000, 5000), 2000, (2000, 2000)),
            ((4000, 3000), 2000, (2000, 1500)),
            ((1000, 333), 600, (600, 200)),
            ((333, 1000), 600, (200, 600)),
        ],
    )
    def test_downscale(self, size, max_dimension, expected):
        assert fit_dimensions(*size, max_dimension) == expected

    def test_no_upscaling(self):
        """Images that already fit keep their size."""
        assert fit_dimensions(400, 300, 600) == (400, 300)
        assert fit_dimensions(600, 600, 600) == (600, 600)

    def test_extreme_aspect_keeps_one_pixel(self):
        assert fit_dimensions(10000, 2, 600) == (600, 1)


class TestRenderVariant:
    """Test encoding of individual derivatives."""

    def test_thumbnail_size(self):
        image = Image.new("RGB", (1200, 800), (1, 2, 3))
        assert _jpeg_size(render_variant(image, THUMBNAIL)) == (600, 400)

    def test_viewer_not_upscaled(self):
        image = Image.new("RGB", (1200, 800), (1, 2, 3))
        assert _jpeg_size(render_variant(image, VIEWER)) == (1200, 800)


class TestImageVariantGenerator:
    """Test variant generation through the pipeline."""

    def test_generate_stores_and_schedules(
        self, pipeline: GalleryPipeline, source_ref, blob_store: LocalBlobStore
    ):
        """Both refs are recorded and the pyramid becomes pending."""
        refs = pipeline.generate_variants(source_ref, "a1")

        artwork = pipeline.store.get_artwork("a1")
        assert artwork.thumbnail_ref == refs.thumbnail_ref
        assert artwork.viewer_image_ref == refs.viewer_image_ref
        assert artwork.pyramid_status == PyramidStatus.PENDING
        assert _jpeg_size(blob_store.fetch(refs.thumbnail_ref)) == (600, 400)
        assert _jpeg_size(blob_store.fetch(refs.viewer_image_ref)) == (600, 400)

    def test_large_source_downscaled(
        self, pipeline: GalleryPipeline, blob_store: LocalBlobStore, image_bytes
    ):
        ref = blob_store.store(image_bytes(3000, 1500, fmt="JPEG"), "image/jpeg")
        refs = pipeline.generate_variants(ref, "wide")
        assert _jpeg_size(blob_store.fetch(refs.thumbnail_ref)) == (600, 300)
        assert _jpeg_size(blob_store.fetch(refs.viewer_image_ref)) == (2000, 1000)

    def test_undecodable_source(self, pipeline: GalleryPipeline, blob_store: LocalBlobStore):
        """A bad source stores nothing, records nothing, schedules nothing."""
        bad_ref = blob_store.store(b"not an image", "image/png")
        with pytest.raises(SourceImageError):
            pipeline.generate_variants(bad_ref, "a1")

        artwork = pipeline.store.get_artwork("a1")
        assert artwork.thumbnail_ref is None
        assert artwork.viewer_image_ref is None
        assert artwork.pyramid_status == PyramidStatus.NONE
        assert pipeline.queue.list_tasks() == []
        assert blob_store.count() == 1

    def test_missing_source(self, pipeline: GalleryPipeline):
        with pytest.raises(SourceImageError):
            pipeline.generate_variants("f" * 32 + ".png", "a1")
        assert pipeline.queue.list_tasks() == []

    def test_existing_pyramid_rejected(
        self, pipeline: GalleryPipeline, source_ref, blob_store: LocalBlobStore
    ):
        """Regenerating over a live pyramid is refused before storing blobs."""
        pipeline.generate_variants(source_ref, "a1")
        blobs_before = blob_store.count()
        with pytest.raises(InvalidStatusTransition):
            pipeline.generate_variants(source_ref, "a1")
        assert blob_store.count() == blobs_before

    def test_regenerate_replaces_old_blobs(
        self, pipeline: GalleryPipeline, source_ref, blob_store: LocalBlobStore
    ):
        """Regeneration after cleanup deletes the superseded derivatives."""
        first = pipeline.generate_variants(source_ref, "a1")
        pipeline.cleanup_pyramid("a1")
        second = pipeline.generate_variants(source_ref, "a1")

        assert second != first
        assert not blob_store.exists(first.thumbnail_ref)
        assert not blob_store.exists(first.viewer_image_ref)
        assert blob_store.exists(second.thumbnail_ref)
