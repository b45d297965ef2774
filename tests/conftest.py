"""Shared pytest fixtures for Tessera tests."""

import io
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest
from PIL import Image

from tessera.core.blob_store import LocalBlobStore
from tessera.core.config import TesseraConfig
from tessera.core.pipeline import GalleryPipeline
from tessera.core.status_store import StatusStore
from tessera.core.task_queue import TaskQueue


def make_image_bytes(
    width: int,
    height: int,
    mode: str = "RGB",
    fmt: str = "PNG",
    color=(200, 120, 40),
) -> bytes:
    """Encode a solid-colour test image.

    Args:
        width: Image width in pixels.
        height: Image height in pixels.
        mode: Pillow image mode.
        fmt: Pillow format name.
        color: Fill colour, matching *mode*.

    Returns:
        Encoded image bytes.
    """
    image = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> TesseraConfig:
    """Create a test configuration rooted in a temporary directory.

    The background worker is disabled so tests drain the queue explicitly,
    and the batch size is small so multi-batch pyramids stay cheap.
    """
    return TesseraConfig(
        data_dir=temp_dir / "data",
        batch_size=5,
        worker_enabled=False,
        public_base_url="http://testserver",
        _env_file=None,
    )


@pytest.fixture
def blob_store(test_config: TesseraConfig) -> LocalBlobStore:
    return LocalBlobStore(test_config.blob_dir, test_config.public_base_url)


@pytest.fixture
def status_store(test_config: TesseraConfig) -> StatusStore:
    return StatusStore(test_config.database_path)


@pytest.fixture
def task_queue(test_config: TesseraConfig) -> TaskQueue:
    return TaskQueue(test_config.database_path)


@pytest.fixture
def pipeline(
    test_config: TesseraConfig,
    status_store: StatusStore,
    blob_store: LocalBlobStore,
    task_queue: TaskQueue,
) -> GalleryPipeline:
    """Pipeline wired to the temporary store, blob directory and queue."""
    return GalleryPipeline(
        status_store, blob_store, task_queue, batch_size=test_config.batch_size
    )


@pytest.fixture
def image_bytes() -> Callable[..., bytes]:
    """Factory fixture producing encoded test images."""
    return make_image_bytes


@pytest.fixture
def source_ref(blob_store: LocalBlobStore) -> str:
    """A 600x400 PNG source image already stored in the blob store."""
    return blob_store.store(make_image_bytes(600, 400), "image/png")


@pytest.fixture
def test_client(test_config: TesseraConfig, pipeline: GalleryPipeline):
    """FastAPI TestClient bound to the test pipeline.

    The pipeline and settings are placed on ``app.state`` before the lifespan
    runs, so the application never touches the global configuration.
    """
    from fastapi.testclient import TestClient

    from tessera.api.main import app

    app.state.settings = test_config
    app.state.pipeline = pipeline
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.state.settings = None
        app.state.pipeline = None
