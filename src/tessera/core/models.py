"""Pydantic models shared by the pipeline components.

Models
------
PyramidStatus
    Lifecycle state of an artwork's tile pyramid.
TileSpec
    One unit of tile work: ``(level, col, row)``.
PyramidMetadata
    Geometry recorded on the artwork when generation starts; everything the
    DZI manifest needs.
TileRecord
    Persisted pointer from a tile coordinate to its stored blob.
Artwork
    The pipeline-owned columns of an artwork row.
PyramidRequest
    Task payload for starting a pyramid.
BatchContinuation
    Task payload carried from one ``run_batch`` invocation to the next.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PyramidStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


# Allowed forward transitions.  Cleanup bypasses this table with ``force``.
STATUS_TRANSITIONS: dict[PyramidStatus, frozenset[PyramidStatus]] = {
    PyramidStatus.NONE: frozenset({PyramidStatus.PENDING}),
    PyramidStatus.FAILED: frozenset({PyramidStatus.PENDING}),
    PyramidStatus.PENDING: frozenset({PyramidStatus.GENERATING}),
    PyramidStatus.GENERATING: frozenset({PyramidStatus.COMPLETE, PyramidStatus.FAILED}),
    PyramidStatus.COMPLETE: frozenset(),
}


class TileSpec(BaseModel):
    """A single tile coordinate within the pyramid."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=0)
    col: int = Field(..., ge=0)
    row: int = Field(..., ge=0)

    @property
    def key(self) -> str:
        """Human-readable ``level/col_row`` form used in logs."""
        return f"{self.level}/{self.col}_{self.row}"


class PyramidMetadata(BaseModel):
    """Geometry of a generated pyramid.

    Attributes:
        width: Source image width in pixels.
        height: Source image height in pixels.
        tile_size: Edge length of a tile before overlap.
        overlap: Border pixels shared with each neighbouring tile.
        format: Tile file format / extension.
        max_level: Index of the full-resolution level.
    """

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    tile_size: int = 512
    overlap: int = 1
    format: str = "jpg"
    max_level: int = Field(..., ge=0)


class TileRecord(BaseModel):
    artwork_id: str
    level: int
    col: int
    row: int
    blob_ref: str

    @property
    def spec(self) -> TileSpec:
        return TileSpec(level=self.level, col=self.col, row=self.row)


class Artwork(BaseModel):
    """Pipeline-owned view of an artwork row.

    The surrounding CRUD layer owns titles, ordering, publishing and so on;
    the pipeline only reads and writes the fields below.
    """

    artwork_id: str
    source_image_ref: str
    thumbnail_ref: str | None = None
    viewer_image_ref: str | None = None
    pyramid_status: PyramidStatus = PyramidStatus.NONE
    pyramid_metadata: PyramidMetadata | None = None
    created_at: float | None = None
    updated_at: float | None = None


class PyramidRequest(BaseModel):
    """Task payload asking the scheduler to start a pyramid."""

    artwork_id: str
    source_image_ref: str


class BatchContinuation(BaseModel):
    """Remaining-work payload handed from one batch invocation to the next.

    It travels through the task queue as JSON and is never kept in process
    memory between invocations.

    Attributes:
        artwork_id: Artwork whose pyramid is being generated.
        source_image_ref: Blob reference of the source image.
        current_batch: Tiles to generate in this invocation.
        remaining: Tiles left for later invocations, in order.
        width: Source width in pixels.
        height: Source height in pixels.
        max_level: Full-resolution level index.
    """

    artwork_id: str
    source_image_ref: str
    current_batch: list[TileSpec]
    remaining: list[TileSpec] = Field(default_factory=list)
    width: int
    height: int
    max_level: int

    def next(self, batch_size: int) -> BatchContinuation | None:
        """Return the continuation for the following batch, or ``None`` when done."""
        if not self.remaining:
            return None
        return self.model_copy(
            update={
                "current_batch": self.remaining[:batch_size],
                "remaining": self.remaining[batch_size:],
            }
        )
