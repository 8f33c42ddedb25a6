"""Conversation history collaborator.

The core only reads ordered message lists by topic; storage belongs to
the embedding application.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict


class ConversationHistory(ABC):
    @abstractmethod
    async def messages_for(self, topic_id: str) -> list[dict]:
        """Messages of ``topic_id``, oldest first."""
        ...


class InMemoryConversationHistory(ConversationHistory):
    """Dict-backed history, used by the CLI and in tests."""

    def __init__(self) -> None:
        self._topics: dict[str, list[dict]] = defaultdict(list)

    def append(self, topic_id: str, role: str, content: str) -> None:
        self._topics[topic_id].append({"role": role, "content": content})

    def clear(self, topic_id: str) -> None:
        self._topics.pop(topic_id, None)

    async def messages_for(self, topic_id: str) -> list[dict]:
        return [dict(m) for m in self._topics.get(topic_id, [])]
