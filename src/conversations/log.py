"""Append-only conversation history keyed by caller-chosen conversation id."""

from __future__ import annotations

import threading

from src.errors import NotFoundError
from src.models import Conversation, ResponseRecord


class ConversationLog:
    """Holds finished response records per conversation, in insertion order."""

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._lock = threading.Lock()

    def append(self, conversation_id: str, record: ResponseRecord) -> None:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                conversation = Conversation(id=conversation_id)
                self._conversations[conversation_id] = conversation
            conversation.messages.append(record)

    def get(self, conversation_id: str) -> Conversation:
        """Return a snapshot of the conversation; raises NotFoundError if unknown."""
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise NotFoundError(f"Conversation not found: {conversation_id}")
            return conversation.model_copy(
                update={"messages": list(conversation.messages)},
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._conversations)
