"""
semantic_kb: local semantic-search knowledge base.

Public API for library usage::

    from semantic_kb import init

    kb = init("knowledge_base.db")
    kb.add_document(content="The quick brown fox", category="documents")
    results = kb.search("quick brown", limit=5)
"""

from .errors import (
    DimensionMismatchError,
    DocumentNotFoundError,
    EmbeddingError,
    KnowledgeBaseError,
    ParseError,
    StorageError,
)
from .knowledge_base import KnowledgeBase, init
from .models import Document, SearchResult

__all__ = [
    "init",
    "KnowledgeBase",
    "Document",
    "SearchResult",
    "KnowledgeBaseError",
    "DocumentNotFoundError",
    "ParseError",
    "EmbeddingError",
    "StorageError",
    "DimensionMismatchError",
]
