#!/usr/bin/env python3
"""
Chat History Module

Persistence gateway for conversations and turns, with multiple storage backends.
"""

from __future__ import annotations

from .factory import create_repository
from .memory_repo import InMemoryRepo
from .models import Conversation, Turn, TurnRole
from .repository import ChatRepository
from .sqlite_repo import SQLiteRepo

__all__ = [
    "ChatRepository",
    "Conversation",
    "InMemoryRepo",
    "SQLiteRepo",
    "Turn",
    "TurnRole",
    "create_repository",
]
