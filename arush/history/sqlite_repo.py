#!/usr/bin/env python3
"""
SQLite Chat Repository Implementation

Durable storage for conversations and turns.

CONFIG: chat.storage.type = "sqlite"
PURPOSE: Default persistence gateway
FEATURES: WAL mode, cascade delete, per-conversation append serialization,
          idempotent turn ids, opaque JSON parts/attachments
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import aiosqlite

from .models import Conversation, Turn, TurnRole, Visibility
from .repository import ChatRepository

logger = logging.getLogger(__name__)


class SQLiteRepo(ChatRepository):
    """SQLite storage for conversations and their append-only turns."""

    def __init__(self, db_path: str = "arush_chat.db"):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._initialized = False
        # One lock per conversation serializes seq assignment within this process.
        # A lock is dropped once no append holds or waits on it.
        self._append_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA foreign_keys=ON")
            db.row_factory = aiosqlite.Row
            yield db

    async def _ensure_initialized(self) -> None:
        """Initialize database schema if not already done."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            async with self._connect() as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("PRAGMA synchronous=NORMAL")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS chats (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        visibility TEXT NOT NULL DEFAULT 'private',
                        created_at TEXT NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS messages (
                        id TEXT PRIMARY KEY,
                        chat_id TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
                        seq INTEGER NOT NULL,
                        role TEXT NOT NULL,
                        parts TEXT NOT NULL,
                        attachments TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_chats_user
                    ON chats(user_id, created_at)
                """)
                await db.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_chat_seq
                    ON messages(chat_id, seq)
                """)
                await db.commit()

            self._initialized = True

    def _append_lock(self, chat_id: str) -> asyncio.Lock:
        lock = self._append_locks.get(chat_id)
        if lock is None:
            lock = self._append_locks[chat_id] = asyncio.Lock()
        return lock

    # ---------- row conversion ----------

    def _deserialize_conversation(self, row: dict[str, Any]) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            visibility=row["visibility"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _serialize_turn(self, turn: Turn) -> dict[str, Any]:
        return {
            "id": turn.id,
            "chat_id": turn.chat_id,
            "seq": turn.seq,
            "role": turn.role.value,
            "parts": json.dumps(turn.parts),
            "attachments": json.dumps(turn.attachments),
            "created_at": turn.created_at.isoformat(),
        }

    def _deserialize_turn(self, row: dict[str, Any]) -> Turn:
        return Turn(
            id=row["id"],
            chat_id=row["chat_id"],
            seq=row["seq"],
            role=TurnRole(row["role"]),
            parts=json.loads(row["parts"]),
            attachments=json.loads(row["attachments"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ---------- conversations ----------

    async def get_conversation(self, chat_id: str) -> Conversation | None:
        await self._ensure_initialized()

        async with self._connect() as db, db.execute("SELECT * FROM chats WHERE id = ?", (chat_id,)) as cursor:
            row = await cursor.fetchone()
            return self._deserialize_conversation(dict(row)) if row else None

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """Insert a conversation; an existing row with the same id wins."""
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                "INSERT OR IGNORE INTO chats (id, user_id, title, visibility, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    conversation.id,
                    conversation.user_id,
                    conversation.title,
                    conversation.visibility,
                    conversation.created_at.isoformat(),
                ),
            )
            await db.commit()

        stored = await self.get_conversation(conversation.id)
        if stored is None:
            raise RuntimeError(f"Conversation {conversation.id} was not stored")
        return stored

    async def delete_conversation(self, chat_id: str) -> bool:
        await self._ensure_initialized()

        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
            await db.commit()
            deleted = cursor.rowcount > 0

        logger.info("← Repository: deleted conversation %s (found=%s)", chat_id, deleted)
        return deleted

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        await self._ensure_initialized()

        async with (
            self._connect() as db,
            db.execute("SELECT * FROM chats WHERE user_id = ? ORDER BY created_at DESC", (user_id,)) as cursor,
        ):
            rows = await cursor.fetchall()
            return [self._deserialize_conversation(dict(row)) for row in rows]

    async def update_visibility(self, chat_id: str, visibility: Visibility) -> bool:
        await self._ensure_initialized()

        async with self._connect() as db:
            cursor = await db.execute("UPDATE chats SET visibility = ? WHERE id = ?", (visibility, chat_id))
            await db.commit()
            return cursor.rowcount > 0

    # ---------- turns ----------

    async def append_turns(self, turns: list[Turn]) -> int:
        await self._ensure_initialized()

        added = 0
        for chat_id in dict.fromkeys(t.chat_id for t in turns):
            batch = [t for t in turns if t.chat_id == chat_id]
            async with self._append_lock(chat_id), self._connect() as db:
                for turn in batch:
                    async with db.execute("SELECT 1 FROM messages WHERE id = ?", (turn.id,)) as cursor:
                        if await cursor.fetchone():
                            logger.debug("Turn %s already stored, skipping", turn.id)
                            continue

                    async with db.execute(
                        "SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE chat_id = ?",
                        (chat_id,),
                    ) as cursor:
                        row = await cursor.fetchone()
                        turn.seq = row[0] if row else 1

                    row_data = self._serialize_turn(turn)
                    columns = ", ".join(row_data.keys())
                    placeholders = ", ".join("?" * len(row_data))
                    await db.execute(
                        f"INSERT INTO messages ({columns}) VALUES ({placeholders})",
                        list(row_data.values()),
                    )
                    added += 1
                await db.commit()

        return added

    async def get_turns(self, chat_id: str, limit: int | None = None) -> list[Turn]:
        await self._ensure_initialized()

        query = "SELECT * FROM messages WHERE chat_id = ? ORDER BY seq"
        params: list[Any] = [chat_id]
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        async with self._connect() as db, db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._deserialize_turn(dict(row)) for row in rows]

    async def close(self) -> None:
        """Connections are per-operation; nothing to release."""
        self._append_locks.clear()
