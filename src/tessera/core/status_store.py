"""SQLite store for artwork pyramid state and tile records.

This is the transactional side of the pipeline.  Every persisted effect of
the worker code (variant references, pyramid status and metadata, tile
records) crosses this narrow interface; nothing else opens the database.

Each method is a short, self-contained transaction on its own connection
with no network or image work inside it.  Checks that guard a write are
folded into the write statement itself so they are atomic:

- status changes are conditional ``UPDATE`` statements against the transition table
- tile inserts only succeed while the artwork is ``generating``, so a batch
  that is still in flight when Cleanup runs cannot resurrect a tile record
"""

import logging
import sqlite3
import time
from pathlib import Path

from tessera.core.exceptions import ArtworkNotFoundError, InvalidStatusTransition
from tessera.core.models import (
    STATUS_TRANSITIONS,
    Artwork,
    PyramidMetadata,
    PyramidStatus,
    TileRecord,
)

logger = logging.getLogger(__name__)


class StatusStore:
    """Persist artworks' pipeline fields and their tile records.

    Args:
        db_path: Path to the SQLite database file (created if missing).
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized status store at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS artworks (
                    artwork_id TEXT PRIMARY KEY,
                    source_image_ref TEXT NOT NULL,
                    thumbnail_ref TEXT,
                    viewer_image_ref TEXT,
                    pyramid_status TEXT NOT NULL DEFAULT 'none',
                    pyramid_metadata TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tiles (
                    artwork_id TEXT NOT NULL REFERENCES artworks(artwork_id),
                    level INTEGER NOT NULL,
                    col INTEGER NOT NULL,
                    row INTEGER NOT NULL,
                    blob_ref TEXT NOT NULL,
                    PRIMARY KEY (artwork_id, level, col, row)
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_artworks_status
                ON artworks(pyramid_status)
                """)
        conn.close()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_artwork(row: sqlite3.Row) -> Artwork:
        metadata = row["pyramid_metadata"]
        return Artwork(
            artwork_id=row["artwork_id"],
            source_image_ref=row["source_image_ref"],
            thumbnail_ref=row["thumbnail_ref"],
            viewer_image_ref=row["viewer_image_ref"],
            pyramid_status=PyramidStatus(row["pyramid_status"]),
            pyramid_metadata=PyramidMetadata.model_validate_json(metadata) if metadata else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _to_tile(row: sqlite3.Row) -> TileRecord:
        return TileRecord(
            artwork_id=row["artwork_id"],
            level=row["level"],
            col=row["col"],
            row=row["row"],
            blob_ref=row["blob_ref"],
        )

    def _fetch_artwork_row(self, conn: sqlite3.Connection, artwork_id: str) -> sqlite3.Row:
        row = conn.execute(
            "SELECT * FROM artworks WHERE artwork_id = ?", (artwork_id,)
        ).fetchone()
        if row is None:
            raise ArtworkNotFoundError(f"Artwork not found: {artwork_id}")
        return row

    # ------------------------------------------------------------------
    # Artworks
    # ------------------------------------------------------------------

    def register_artwork(self, artwork_id: str, source_image_ref: str) -> Artwork:
        """Create the pipeline row for a new artwork.

        Raises:
            sqlite3.IntegrityError: If the artwork is already registered.
        """
        now = time.time()
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO artworks (artwork_id, source_image_ref, pyramid_status,
                                          created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (artwork_id, source_image_ref, PyramidStatus.NONE.value, now, now),
                )
                row = self._fetch_artwork_row(conn, artwork_id)
        finally:
            conn.close()
        logger.info(f"Registered artwork {artwork_id}")
        return self._to_artwork(row)

    def find_artwork(self, artwork_id: str) -> Artwork | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM artworks WHERE artwork_id = ?", (artwork_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._to_artwork(row) if row else None

    def get_artwork(self, artwork_id: str) -> Artwork:
        """Return an artwork.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
        """
        artwork = self.find_artwork(artwork_id)
        if artwork is None:
            raise ArtworkNotFoundError(f"Artwork not found: {artwork_id}")
        return artwork

    def list_artworks(self) -> list[Artwork]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM artworks ORDER BY created_at").fetchall()
        finally:
            conn.close()
        return [self._to_artwork(row) for row in rows]

    def list_artworks_without_pyramid(self) -> list[Artwork]:
        """Return artworks whose pyramid was never generated or failed."""
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM artworks
                WHERE pyramid_status IN (?, ?)
                ORDER BY created_at
                """,
                (PyramidStatus.NONE.value, PyramidStatus.FAILED.value),
            ).fetchall()
        finally:
            conn.close()
        return [self._to_artwork(row) for row in rows]

    def set_source_image(self, artwork_id: str, source_image_ref: str) -> str:
        """Point an artwork at a new source image.

        Returns:
            The previous source image reference.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
        """
        conn = self._connect()
        try:
            with conn:
                previous = self._fetch_artwork_row(conn, artwork_id)["source_image_ref"]
                conn.execute(
                    """
                    UPDATE artworks SET source_image_ref = ?, updated_at = ?
                    WHERE artwork_id = ?
                    """,
                    (source_image_ref, time.time(), artwork_id),
                )
        finally:
            conn.close()
        return previous

    def set_variants(
        self, artwork_id: str, thumbnail_ref: str | None, viewer_image_ref: str | None
    ) -> tuple[str | None, str | None]:
        """Record derivative references on an artwork.

        Returns:
            The previous ``(thumbnail_ref, viewer_image_ref)`` pair so the
            caller can delete superseded blobs.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
        """
        conn = self._connect()
        try:
            with conn:
                row = self._fetch_artwork_row(conn, artwork_id)
                conn.execute(
                    """
                    UPDATE artworks
                    SET thumbnail_ref = ?, viewer_image_ref = ?, updated_at = ?
                    WHERE artwork_id = ?
                    """,
                    (thumbnail_ref, viewer_image_ref, time.time(), artwork_id),
                )
        finally:
            conn.close()
        return row["thumbnail_ref"], row["viewer_image_ref"]

    def delete_artwork(self, artwork_id: str) -> bool:
        """Delete an artwork row.  Tile records must already be cleaned up.

        Raises:
            sqlite3.IntegrityError: If tile records still reference the artwork.
        """
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM artworks WHERE artwork_id = ?", (artwork_id,))
        finally:
            conn.close()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Pyramid status and metadata
    # ------------------------------------------------------------------

    def get_pyramid(self, artwork_id: str) -> tuple[PyramidStatus, PyramidMetadata | None] | None:
        """Return ``(status, metadata)`` for an artwork, or ``None`` if unknown."""
        artwork = self.find_artwork(artwork_id)
        if artwork is None:
            return None
        return artwork.pyramid_status, artwork.pyramid_metadata

    def get_pyramid_status(self, artwork_id: str) -> PyramidStatus:
        """Return the pyramid status.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
        """
        return self.get_artwork(artwork_id).pyramid_status

    def set_pyramid_metadata(self, artwork_id: str, metadata: PyramidMetadata | None) -> None:
        """Set or clear (``None``) the pyramid metadata.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
        """
        payload = metadata.model_dump_json() if metadata is not None else None
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute(
                    """
                    UPDATE artworks SET pyramid_metadata = ?, updated_at = ?
                    WHERE artwork_id = ?
                    """,
                    (payload, time.time(), artwork_id),
                )
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise ArtworkNotFoundError(f"Artwork not found: {artwork_id}")

    def set_pyramid_status(
        self, artwork_id: str, status: PyramidStatus, *, force: bool = False
    ) -> PyramidStatus:
        """Move the pyramid to *status*.

        The change is applied only if it is allowed from the current state
        (see :data:`tessera.core.models.STATUS_TRANSITIONS`); the check and the
        write happen in one statement.  ``force=True`` skips the check and is
        reserved for Cleanup.

        Returns:
            The status the artwork had before the change.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
            InvalidStatusTransition: If the move is not allowed.
        """
        status = PyramidStatus(status)
        allowed_from = [
            current.value for current, targets in STATUS_TRANSITIONS.items() if status in targets
        ]
        conn = self._connect()
        try:
            with conn:
                previous = PyramidStatus(
                    self._fetch_artwork_row(conn, artwork_id)["pyramid_status"]
                )
                if force:
                    conn.execute(
                        """
                        UPDATE artworks SET pyramid_status = ?, updated_at = ?
                        WHERE artwork_id = ?
                        """,
                        (status.value, time.time(), artwork_id),
                    )
                else:
                    placeholders = ", ".join("?" for _ in allowed_from) or "NULL"
                    cursor = conn.execute(
                        f"""
                        UPDATE artworks SET pyramid_status = ?, updated_at = ?
                        WHERE artwork_id = ? AND pyramid_status IN ({placeholders})
                        """,
                        (status.value, time.time(), artwork_id, *allowed_from),
                    )
                    if cursor.rowcount == 0:
                        raise InvalidStatusTransition(artwork_id, previous.value, status.value)
        finally:
            conn.close()
        logger.info(f"Artwork {artwork_id} pyramid status: {previous.value} -> {status.value}")
        return previous

    def start_generation(self, artwork_id: str, metadata: PyramidMetadata) -> None:
        """Write the pyramid metadata and move ``pending`` to ``generating`` together.

        Raises:
            ArtworkNotFoundError: If the artwork is unknown.
            InvalidStatusTransition: If the artwork is not ``pending`` (for
                example because Cleanup ran after the pyramid was requested).
        """
        conn = self._connect()
        try:
            with conn:
                current = self._fetch_artwork_row(conn, artwork_id)["pyramid_status"]
                cursor = conn.execute(
                    """
                    UPDATE artworks
                    SET pyramid_metadata = ?, pyramid_status = ?, updated_at = ?
                    WHERE artwork_id = ? AND pyramid_status = ?
                    """,
                    (
                        metadata.model_dump_json(),
                        PyramidStatus.GENERATING.value,
                        time.time(),
                        artwork_id,
                        PyramidStatus.PENDING.value,
                    ),
                )
                if cursor.rowcount == 0:
                    raise InvalidStatusTransition(
                        artwork_id, current, PyramidStatus.GENERATING.value
                    )
        finally:
            conn.close()
        logger.info(f"Artwork {artwork_id} pyramid status: pending -> generating")

    # ------------------------------------------------------------------
    # Tile records
    # ------------------------------------------------------------------

    def insert_tile(self, record: TileRecord) -> bool:
        """Insert one tile record.

        The insert only takes effect while the artwork's status is
        ``generating``.

        Returns:
            ``True`` if the record was inserted, ``False`` if the artwork is
            no longer generating (cleaned up, failed or deleted).

        Raises:
            sqlite3.IntegrityError: If a record already exists for the tile.
        """
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO tiles (artwork_id, level, col, row, blob_ref)
                    SELECT ?, ?, ?, ?, ?
                    WHERE EXISTS (
                        SELECT 1 FROM artworks
                        WHERE artwork_id = ? AND pyramid_status = ?
                    )
                    """,
                    (
                        record.artwork_id,
                        record.level,
                        record.col,
                        record.row,
                        record.blob_ref,
                        record.artwork_id,
                        PyramidStatus.GENERATING.value,
                    ),
                )
        finally:
            conn.close()
        return cursor.rowcount > 0

    def get_tile(self, artwork_id: str, level: int, col: int, row: int) -> TileRecord | None:
        conn = self._connect()
        try:
            result = conn.execute(
                """
                SELECT * FROM tiles
                WHERE artwork_id = ? AND level = ? AND col = ? AND row = ?
                """,
                (artwork_id, level, col, row),
            ).fetchone()
        finally:
            conn.close()
        return self._to_tile(result) if result else None

    def list_tiles(self, artwork_id: str) -> list[TileRecord]:
        """Return every tile record of an artwork, ordered by level, row, col."""
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM tiles WHERE artwork_id = ?
                ORDER BY level, row, col
                """,
                (artwork_id,),
            ).fetchall()
        finally:
            conn.close()
        return [self._to_tile(row) for row in rows]

    def count_tiles(self, artwork_id: str) -> int:
        conn = self._connect()
        try:
            result = conn.execute(
                "SELECT COUNT(*) FROM tiles WHERE artwork_id = ?", (artwork_id,)
            ).fetchone()
        finally:
            conn.close()
        return result[0] if result else 0

    def delete_tile(self, artwork_id: str, level: int, col: int, row: int) -> bool:
        """Delete one tile record; return ``False`` if it did not exist."""
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute(
                    """
                    DELETE FROM tiles
                    WHERE artwork_id = ? AND level = ? AND col = ? AND row = ?
                    """,
                    (artwork_id, level, col, row),
                )
        finally:
            conn.close()
        return cursor.rowcount > 0
