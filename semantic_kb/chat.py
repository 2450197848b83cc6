"""
Retrieval-augmented prompt assembly.

The chat-completion backend is not wired up yet; :class:`EchoChatService`
stands in for it so the retrieval path can be exercised end to end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import KnowledgeBaseError

if TYPE_CHECKING:
    from .knowledge_base import KnowledgeBase
    from .models import SearchResult

logger = logging.getLogger(__name__)

CONTEXT_LIMIT = 3

_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use the following knowledge base "
    "excerpts to answer the user's question:\n\n{context}"
)


@dataclass
class ChatMessage:
    role: str
    content: str


def build_context(results: list["SearchResult"]) -> str:
    """Format search results as reference blocks separated by blank lines."""
    return "\n\n".join(
        f"Reference [{r.document.name}]: {r.snippet}" for r in results
    )


def augment_messages(
    kb: "KnowledgeBase",
    messages: list[ChatMessage],
    limit: int = CONTEXT_LIMIT,
) -> list[ChatMessage]:
    """Prepend a system message with retrieved context for the last user turn.

    Returns a new list; *messages* is unchanged.  Retrieval failures are
    logged and the conversation passes through without context.
    """
    final = list(messages)
    if not messages or messages[-1].role != "user":
        return final

    try:
        results = kb.search(messages[-1].content, limit)
    except KnowledgeBaseError as exc:
        logger.warning("Context retrieval failed: %s", exc)
        return final

    if results:
        prompt = _SYSTEM_PROMPT.format(context=build_context(results))
        final.insert(0, ChatMessage(role="system", content=prompt))
    return final


class EchoChatService:
    """Placeholder chat backend that echoes the last message."""

    def chat(self, messages: list[ChatMessage]) -> str:
        last = messages[-1].content if messages else ""
        return f"(AI reply) I received your message: {last}"
