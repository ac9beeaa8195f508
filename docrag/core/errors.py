"""
Exception taxonomy for the ingestion and retrieval pipeline.

Indexing failures stay local to one document (they end up as a `failed`
status), chat-turn failures are mapped to HTTP errors by the routers.
"""


class RAGError(Exception):
    """Base class for all pipeline errors."""


class EmptyContent(RAGError):
    """Chunking produced zero chunks."""


class ContentUnavailable(RAGError):
    """The document has no stored text to (re-)index."""


class EmbeddingServiceError(RAGError):
    """The embedding service failed after exhausting retries."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class VectorStoreError(RAGError):
    """Insertion into or search of the vector store failed."""


class WebSearchError(RAGError):
    """Every web search provider failed (or none is configured)."""


class StreamError(RAGError):
    """The chat-completion stream was interrupted."""


class DocumentNotFound(RAGError):
    """Document does not exist or is not owned by the caller."""


class ChatNotFound(RAGError):
    """Chat does not exist or is not owned by the caller."""


class IndexingInProgress(RAGError):
    """A retry was requested while the document is still being indexed."""
