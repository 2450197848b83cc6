"""
Exception taxonomy for the knowledge base.

Every error raised by the core derives from :class:`KnowledgeBaseError` so
callers can catch the whole family at the operation boundary.
"""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base class for all knowledge-base errors."""


class DocumentNotFoundError(KnowledgeBaseError):
    """Raised when a source path or document id does not exist."""


class ParseError(KnowledgeBaseError):
    """Raised when a document cannot be turned into non-empty text."""


class EmbeddingError(KnowledgeBaseError):
    """Raised when the embedding provider cannot produce a vector."""


class StorageError(KnowledgeBaseError):
    """Raised when a read or write against the SQLite file fails."""


class DimensionMismatchError(KnowledgeBaseError):
    """Raised when stored vectors and the active provider disagree on dimension."""


class MediaError(Exception):
    """Raised when ffmpeg is missing or fails to extract audio."""


class TranscriptionError(Exception):
    """Raised when the speech-to-text service fails or returns no text."""
