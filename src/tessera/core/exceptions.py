"""Exception hierarchy for the Tessera pipeline."""


class TesseraError(Exception):
    """Base class for all pipeline errors."""

    pass


class BlobNotFoundError(TesseraError):
    """Raised when a blob reference does not resolve to stored content."""

    pass


class SourceImageError(TesseraError):
    """The source image could not be fetched or decoded.

    Fatal to the step that raised it: variant generation and pyramid start
    abort before writing anything.
    """

    pass


class TileGenerationError(TesseraError):
    """A single tile could not be resampled, cropped or encoded.

    Recoverable: the batch logs it and moves on to the next tile.
    """

    pass


class ArtworkNotFoundError(TesseraError):
    """Raised when an artwork id is not known to the status store."""

    pass


class InvalidStatusTransition(TesseraError):
    """Raised when a pyramid status change is not allowed from the current state."""

    def __init__(self, artwork_id: str, current: str, requested: str):
        super().__init__(
            f"Cannot move pyramid of artwork {artwork_id} from '{current}' to '{requested}'"
        )
        self.artwork_id = artwork_id
        self.current = current
        self.requested = requested
