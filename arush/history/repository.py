#!/usr/bin/env python3
"""
Chat Repository Interface

This module defines the repository protocol for conversations and turns.
"""

from __future__ import annotations

from typing import Protocol

from .models import Conversation, Turn, Visibility


class ChatRepository(Protocol):
    """Protocol defining the interface for chat storage backends.

    Turns are append-only: ``append_turns`` never rewrites an existing turn,
    a turn whose id is already stored is skipped.
    """

    async def get_conversation(self, chat_id: str) -> Conversation | None: ...

    async def save_conversation(self, conversation: Conversation) -> Conversation: ...

    async def delete_conversation(self, chat_id: str) -> bool:
        """Delete a conversation and, transitively, all its turns."""
        ...

    async def list_conversations(self, user_id: str) -> list[Conversation]: ...

    async def update_visibility(self, chat_id: str, visibility: Visibility) -> bool: ...

    async def append_turns(self, turns: list[Turn]) -> int:
        """Append turns in order and return how many were newly stored."""
        ...

    async def get_turns(self, chat_id: str, limit: int | None = None) -> list[Turn]: ...

    async def close(self) -> None: ...
