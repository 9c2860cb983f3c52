"""Custom exceptions for the application."""


class ValidationError(Exception):
    """Raised when a request is missing or has malformed required fields."""

    pass


class NotFoundError(Exception):
    """Raised when an operation references an unknown document."""

    pass


class UpstreamError(Exception):
    """Raised when an external collaborator fails during a pipeline stage."""

    pass


class FetchError(UpstreamError):
    """Raised when the document source cannot be fetched."""

    pass


class EmbeddingError(UpstreamError):
    """Raised when embedding generation fails."""

    pass


class EmbeddingValidationError(EmbeddingError):
    """Raised when input text violates provider limits before dispatch."""

    pass


class VectorDBError(UpstreamError):
    """Raised when vector database operations fail."""

    pass


class BlobStorageError(UpstreamError):
    """Raised when blob storage operations fail."""

    pass


class OperationTimeoutError(UpstreamError):
    """Raised when a provider or store call exceeds its timeout."""

    pass


class ChunkingError(Exception):
    """Raised when no usable chunks can be produced from a document."""

    pass


class InvalidStatusTransitionError(Exception):
    """Raised when a document status change is not permitted."""

    pass


class PipelineCancelledError(Exception):
    """Raised inside a pipeline run once cancellation has been observed."""

    pass
