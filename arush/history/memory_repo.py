#!/usr/bin/env python3
"""
In-Memory Chat Repository Implementation

Fast in-memory storage for session-only conversations.

CONFIG: chat.storage.type = "memory"
PURPOSE: Development/testing - all data lost on restart
"""

from __future__ import annotations

import logging

from .models import Conversation, Turn, Visibility
from .repository import ChatRepository

logger = logging.getLogger(__name__)


class InMemoryRepo(ChatRepository):
    """Fast in-memory storage - configure with type='memory'. Data lost on restart."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._turns: dict[str, list[Turn]] = {}
        self._turn_ids: set[str] = set()

    async def get_conversation(self, chat_id: str) -> Conversation | None:
        return self._conversations.get(chat_id)

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        return self._conversations.setdefault(conversation.id, conversation)

    async def delete_conversation(self, chat_id: str) -> bool:
        found = self._conversations.pop(chat_id, None) is not None
        for turn in self._turns.pop(chat_id, []):
            self._turn_ids.discard(turn.id)
        return found

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        owned = [c for c in self._conversations.values() if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.created_at, reverse=True)

    async def update_visibility(self, chat_id: str, visibility: Visibility) -> bool:
        conversation = self._conversations.get(chat_id)
        if conversation is None:
            return False
        self._conversations[chat_id] = conversation.model_copy(update={"visibility": visibility})
        return True

    async def append_turns(self, turns: list[Turn]) -> int:
        added = 0
        for turn in turns:
            if turn.id in self._turn_ids:
                logger.debug("Turn %s already stored, skipping", turn.id)
                continue
            if turn.chat_id not in self._conversations:
                raise KeyError(f"Conversation {turn.chat_id} does not exist")

            history = self._turns.setdefault(turn.chat_id, [])
            turn.seq = len(history) + 1
            history.append(turn)
            self._turn_ids.add(turn.id)
            added += 1
        return added

    async def get_turns(self, chat_id: str, limit: int | None = None) -> list[Turn]:
        turns = list(self._turns.get(chat_id, []))
        return turns[:limit] if limit else turns

    async def close(self) -> None:
        return None
