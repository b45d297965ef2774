"""Tessera - FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, the deep zoom serving routes, the pipeline
management routes used by the artwork CRUD layer, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Deep zoom serving** is a stateless translator: a manifest or tile
  address is parsed, looked up in the status store, and answered with XML or
  a redirect to the tile's blob.  Nothing is written.
- **Pipeline management** routes call into
  :class:`~tessera.core.pipeline.GalleryPipeline`.  Image work triggered by
  a request (derivatives) runs in FastAPI's threadpool; pyramid tiles are
  generated by the background task worker started in the lifespan.
- **Blobs** of the local blob store are served from ``/blobs/{ref}`` so the
  tile redirects resolve.

Endpoints
---------
========  ====================================  ===============================
Method    Path                                  Purpose
========  ====================================  ===============================
GET       ``/dzi/{id}.dzi``                     DZI XML manifest
GET       ``/dzi/{id}_files/{level}/{c}_{r}``   Redirect to a tile blob
OPTIONS   ``/dzi/{path}``                       CORS preflight
GET       ``/blobs/{ref}``                      Stored blob content
GET       ``/api/health``                       Version and queue counts
POST      ``/api/artworks/{id}/variants``       Derivatives + pyramid
GET       ``/api/artworks/{id}/pyramid``        Pyramid progress
DELETE    ``/api/artworks/{id}/pyramid``        Cleanup
DELETE    ``/api/artworks/{id}``                Cleanup + blob deletion
POST      ``/api/migrations/pyramids``          Backfill missing pyramids
POST      ``/api/migrations/variants``          Backfill/regenerate variants
========  ====================================  ===============================

Usage
-----
CLI (installed entry point)::

    tessera

Direct invocation::

    python -m tessera.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse, RedirectResponse, Response

from tessera import __version__
from tessera.api.dzi import TileAddressError, parse_tile_address, render_manifest
from tessera.api.models import PyramidStatusResponse, VariantsRequest, VariantsResponse
from tessera.core.blob_store import LocalBlobStore, content_type_for
from tessera.core.config import TesseraConfig, config
from tessera.core.exceptions import (
    ArtworkNotFoundError,
    BlobNotFoundError,
    InvalidStatusTransition,
    SourceImageError,
)
from tessera.core.geometry import TILE_FORMAT
from tessera.core.models import PyramidStatus
from tessera.core.pipeline import GalleryPipeline

logger = logging.getLogger(__name__)

DZI_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}

# ---------------------------------------------------------------------------
# Application lifecycle - pipeline and task worker setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Builds a :class:`GalleryPipeline` from the configuration (unless one
        was already placed on ``app.state``) and starts the background task
        worker when ``worker_enabled`` is set.

    On shutdown:
        Stops the worker after its current task.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    settings: TesseraConfig = getattr(app.state, "settings", None) or config
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = GalleryPipeline.from_config(settings)
    app.state.settings = settings

    worker = None
    if settings.worker_enabled:
        worker = app.state.pipeline.start_worker(settings.worker_poll_interval)
        logger.info("Task worker started.")

    yield  # Application runs here.

    if worker is not None:
        worker.stop()
        logger.info("Task worker stopped on shutdown.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Tessera",
    description="Deep zoom tile pyramids and display variants for gallery artworks.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _pipeline(request: Request) -> GalleryPipeline:
    return request.app.state.pipeline


def _settings(request: Request) -> TesseraConfig:
    return request.app.state.settings


# ---------------------------------------------------------------------------
# Deep zoom serving.
# ---------------------------------------------------------------------------


@app.get("/dzi/{artwork_id}.dzi")
def get_manifest(artwork_id: str, request: Request) -> Response:
    """Serve the DZI XML manifest of a completed pyramid.

    Returns:
        ``application/xml`` manifest with long-lived cache headers, or a
        plain 404 when the artwork is unknown, has no metadata, or its
        pyramid is not ``complete``.
    """
    pyramid = _pipeline(request).store.get_pyramid(artwork_id)
    if pyramid is None:
        return PlainTextResponse("Not found", status_code=404)

    status, metadata = pyramid
    if metadata is None or status != PyramidStatus.COMPLETE:
        return PlainTextResponse("Not found", status_code=404)

    max_age = _settings(request).manifest_max_age
    return Response(
        content=render_manifest(metadata),
        media_type="application/xml",
        headers={
            "Cache-Control": f"public, max-age={max_age}",
            "Access-Control-Allow-Origin": "*",
        },
    )


@app.get("/dzi/{artwork_id}_files/{level}/{tile_name}")
def get_tile(artwork_id: str, level: str, tile_name: str, request: Request) -> Response:
    """Redirect to the blob of one tile.

    Returns:
        302 to the tile's blob URL, 400 for non-numeric address segments,
        404 for unknown tiles or another file extension.
    """
    try:
        address = parse_tile_address(artwork_id, level, tile_name)
    except TileAddressError:
        return PlainTextResponse("Bad request", status_code=400)
    if address.extension != TILE_FORMAT:
        return PlainTextResponse("Not found", status_code=404)

    pipeline = _pipeline(request)
    tile = pipeline.store.get_tile(address.artwork_id, address.level, address.col, address.row)
    if tile is None:
        return PlainTextResponse("Not found", status_code=404)

    return RedirectResponse(
        pipeline.blobs.url_for(tile.blob_ref),
        status_code=302,
        headers={"Access-Control-Allow-Origin": "*"},
    )


@app.options("/dzi/{path:path}")
def dzi_preflight(path: str) -> Response:
    """Answer CORS preflight requests for deep zoom resources."""
    return Response(status_code=204, headers=DZI_CORS_HEADERS)


@app.get("/blobs/{blob_ref}")
def get_blob(blob_ref: str, request: Request) -> Response:
    """Serve a blob from the local blob store.

    Blob references are immutable, so responses are cacheable forever.
    """
    blobs = _pipeline(request).blobs
    if not isinstance(blobs, LocalBlobStore):
        return PlainTextResponse("Not found", status_code=404)
    try:
        path = blobs.path_for(blob_ref)
    except BlobNotFoundError:
        return PlainTextResponse("Not found", status_code=404)
    return FileResponse(
        path,
        media_type=content_type_for(blob_ref),
        headers={
            "Cache-Control": "public, max-age=31536000, immutable",
            "Access-Control-Allow-Origin": "*",
        },
    )


# ---------------------------------------------------------------------------
# Pipeline management.
# ---------------------------------------------------------------------------


@app.get("/api/health")
def health(request: Request) -> dict:
    """Return the API version and task queue counts."""
    return {
        "status": "ok",
        "version": __version__,
        "tasks": _pipeline(request).queue.counts(),
    }


@app.post("/api/artworks/{artwork_id}/variants", response_model=VariantsResponse)
def generate_variants(artwork_id: str, req: VariantsRequest, request: Request) -> VariantsResponse:
    """Generate display variants for an artwork and queue its pyramid.

    New artworks are registered with the given source.  If the artwork
    already has a different source, the old pyramid is cleaned up and the
    source replaced before regenerating.

    Raises:
        HTTPException: 422 if the source image cannot be read, 409 if a
            pyramid for the same source already exists.
    """
    pipeline = _pipeline(request)
    try:
        refs = pipeline.generate_variants(req.source_image_ref, artwork_id)
    except SourceImageError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return VariantsResponse(
        artwork_id=artwork_id,
        thumbnail_ref=refs.thumbnail_ref,
        viewer_image_ref=refs.viewer_image_ref,
        pyramid_status=pipeline.get_pyramid_status(artwork_id).value,
    )


@app.get("/api/artworks/{artwork_id}/pyramid", response_model=PyramidStatusResponse)
def get_pyramid(artwork_id: str, request: Request) -> PyramidStatusResponse:
    """Return pyramid progress for the admin UI.

    Raises:
        HTTPException: 404 if the artwork is not known.
    """
    try:
        summary = _pipeline(request).pyramid_summary(artwork_id)
    except ArtworkNotFoundError as e:
        raise HTTPException(status_code=404, detail="Artwork not found") from e
    return PyramidStatusResponse(**summary)


@app.delete("/api/artworks/{artwork_id}/pyramid")
def delete_pyramid(artwork_id: str, request: Request) -> dict:
    """Remove every tile of an artwork and reset its pyramid.

    Raises:
        HTTPException: 404 if the artwork is not known.
    """
    try:
        removed = _pipeline(request).cleanup_pyramid(artwork_id)
    except ArtworkNotFoundError as e:
        raise HTTPException(status_code=404, detail="Artwork not found") from e
    return {"success": True, "artwork_id": artwork_id, "tiles_removed": removed}


@app.delete("/api/artworks/{artwork_id}")
def delete_artwork(artwork_id: str, request: Request) -> dict:
    """Delete an artwork's pyramid, image blobs and pipeline record.

    Raises:
        HTTPException: 404 if the artwork is not known.
    """
    if not _pipeline(request).delete_artwork(artwork_id):
        raise HTTPException(status_code=404, detail="Artwork not found")
    return {"success": True, "deleted": artwork_id}


@app.post("/api/migrations/pyramids")
def migrate_pyramids(request: Request) -> dict:
    """Queue pyramid generation for every artwork without a pyramid."""
    return _pipeline(request).migrate_existing_artworks()


@app.post("/api/migrations/variants")
def migrate_variants(request: Request, regenerate: bool = False) -> dict:
    """Generate variants for artworks missing them, or for all with ``regenerate``."""
    pipeline = _pipeline(request)
    if regenerate:
        return pipeline.regenerate_all_variants()
    return pipeline.migrate_missing_variants()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~tessera.core.config.config` (which
    loads from ``TESSERA_SERVER_HOST`` and ``TESSERA_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:7870``.

    This function is registered as the ``tessera`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "tessera.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
