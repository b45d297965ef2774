"""Configuration management for the Tessera pyramid pipeline.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the TESSERA_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (TESSERA_* prefix)
2. .env file in the project root
3. Default values defined in TesseraConfig

Example .env file:
    TESSERA_DATA_DIR=data
    TESSERA_BLOB_DIR=data/blobs
    TESSERA_PUBLIC_BASE_URL=https://gallery.example.com
    TESSERA_BATCH_SIZE=20

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from tessera.core.config import config

    print(config.database_path)
    print(config.batch_size)

Pyramid Constants
-----------------
The deep zoom layout itself is not configurable: tile size, overlap, tile
format and encoder quality are fixed module constants in
:mod:`tessera.core.geometry` and :mod:`tessera.core.tile_generator`.  The
only tunable that bounds the duration of a worker invocation is
``batch_size`` (tiles per continuation task).
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TesseraConfig(BaseSettings):
    """Main configuration for the Tessera pipeline and API server.

    Values are loaded from environment variables with the TESSERA_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Paths:
        data_dir : Path
            Root directory for persistent state
        blob_dir : Path
            Directory backing the file blob store
        database_path : Path | None
            SQLite database file (defaults to ``data_dir / "tessera.db"``)

    Pipeline:
        batch_size : int
            Number of tiles generated per worker invocation
        worker_enabled : bool
            Start the background task worker with the API server
        worker_poll_interval : float
            Seconds the worker sleeps when the queue is empty

    Serving:
        public_base_url : str
            Base URL used to build blob locations for tile redirects
        manifest_max_age : int
            ``Cache-Control`` max-age for DZI manifests, in seconds
        server_host : str
            Server bind address
        server_port : int
            Server port (1024-65535)

    Examples
    --------
        >>> custom_config = TesseraConfig(
        ...     data_dir="/tmp/tessera",
        ...     batch_size=5,
        ...     worker_enabled=False,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TESSERA_",
        case_sensitive=False,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Root directory for persistent state",
    )
    blob_dir: Path | None = Field(
        default=None,
        description="Directory backing the file blob store (defaults to data_dir/blobs)",
    )
    database_path: Path | None = Field(
        default=None,
        description="SQLite database file (defaults to data_dir/tessera.db)",
    )

    # Pipeline settings
    batch_size: int = Field(
        default=20,
        description="Tiles generated per worker invocation",
        ge=1,
        le=500,
    )
    worker_enabled: bool = Field(
        default=True,
        description="Run the background task worker inside the API process",
    )
    worker_poll_interval: float = Field(
        default=0.5,
        description="Seconds to wait between polls of an empty task queue",
        gt=0,
    )

    # Serving settings
    public_base_url: str = Field(
        default="http://localhost:7870",
        description="Base URL that blob locations are built from",
    )
    manifest_max_age: int = Field(
        default=31536000,
        description="Cache-Control max-age for DZI manifests (1 year)",
        ge=0,
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7870,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration, resolve derived paths and create directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        if self.blob_dir is None:
            self.blob_dir = self.data_dir / "blobs"
        if self.database_path is None:
            self.database_path = self.data_dir / "tessera.db"

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.blob_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance, loaded from TESSERA_* variables and .env.
config = TesseraConfig()
