"""Pydantic request and response models for the Tessera API.

Models
------
VariantsRequest
    Payload for ``POST /api/artworks/{id}/variants`` - the source image to
    derive display variants and the pyramid from.
VariantsResponse
    References of the generated derivatives plus the pyramid status.
PyramidStatusResponse
    Progress view of an artwork's pyramid for the admin UI.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from tessera.core.models import PyramidMetadata


class VariantsRequest(BaseModel):
    """Request body for the ``POST /api/artworks/{id}/variants`` endpoint.

    Attributes:
        source_image_ref: Blob reference of the uploaded source image.  If it
            differs from the artwork's current source, the old pyramid is
            cleaned up and the old source blob is replaced.
    """

    source_image_ref: str = Field(
        ...,
        min_length=1,
        description="Blob reference of the uploaded source image.",
    )


class VariantsResponse(BaseModel):
    artwork_id: str
    thumbnail_ref: str
    viewer_image_ref: str
    pyramid_status: str


class PyramidStatusResponse(BaseModel):
    """Response body for ``GET /api/artworks/{id}/pyramid``.

    Attributes:
        artwork_id: Artwork the pyramid belongs to.
        status: Raw pyramid status.
        label: Admin display label (``processing``, ``processing failed``...).
        metadata: Pyramid geometry once generation has started.
        tiles_generated: Tile records persisted so far.
        tiles_expected: Tiles in the full pyramid (0 before start).
        publicly_displayable: Thumbnail present and pyramid complete.
    """

    artwork_id: str
    status: str
    label: str
    metadata: PyramidMetadata | None = None
    tiles_generated: int = Field(default=0, ge=0)
    tiles_expected: int = Field(default=0, ge=0)
    publicly_displayable: bool = False
