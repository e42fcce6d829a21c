#!/usr/bin/env python3
"""
Repository Factory

Factory function to create appropriate repository based on configuration.
"""

from __future__ import annotations

import logging
from typing import Any

from .memory_repo import InMemoryRepo
from .repository import ChatRepository
from .sqlite_repo import SQLiteRepo

logger = logging.getLogger(__name__)


def create_repository(storage_config: dict[str, Any]) -> ChatRepository:
    """Create the chat repository from the ``chat.storage`` section."""
    storage_type = storage_config.get("type", "sqlite")

    if storage_type == "memory":
        logger.info("Using in-memory chat storage (data lost on restart)")
        return InMemoryRepo()

    if storage_type == "sqlite":
        db_path = storage_config.get("db_path", "arush_chat.db")
        logger.info("Using SQLite chat storage at %s", db_path)
        return SQLiteRepo(db_path)

    raise ValueError(f"Unknown chat storage type: {storage_type!r}")
