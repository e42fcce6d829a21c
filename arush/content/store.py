#!/usr/bin/env python3
"""
Content Store

SQLite storage for localized site content (news and programs) read and
written by the domain tools. Each item has a unique slug per kind and at most
one translation per locale. Chat documents are kept as versions keyed by id
and creation time.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from .models import (
    ContentKind,
    ContentNotFound,
    ContentView,
    Document,
    DuplicateSlug,
    DuplicateTranslation,
    Locale,
    TranslationFields,
    TranslationRecord,
)

logger = logging.getLogger(__name__)

_VIEW_QUERY = """
    SELECT i.id, i.kind, i.slug, i.date, i.image, t.locale, t.title, t.excerpt, t.content,
           t.meta_title, t.meta_description, t.keywords, t.age_group, t.schedule
    FROM content_items i
    JOIN content_translations t ON t.item_id = i.id
"""

_UPDATABLE = ("title", "content", "excerpt", "meta_title", "meta_description", "keywords", "age_group", "schedule")


class ContentStore:
    def __init__(self, db_path: str = "arush_content.db"):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._initialized = False

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA foreign_keys=ON")
            db.row_factory = aiosqlite.Row
            yield db

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            async with self._connect() as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS content_items (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        kind TEXT NOT NULL,
                        slug TEXT NOT NULL,
                        date TEXT NOT NULL,
                        image TEXT,
                        UNIQUE(kind, slug)
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS content_translations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        item_id INTEGER NOT NULL REFERENCES content_items(id) ON DELETE CASCADE,
                        locale TEXT NOT NULL,
                        title TEXT NOT NULL,
                        content TEXT NOT NULL,
                        excerpt TEXT NOT NULL,
                        meta_title TEXT,
                        meta_description TEXT,
                        keywords TEXT,
                        age_group TEXT,
                        schedule TEXT,
                        UNIQUE(item_id, locale)
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        id TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        title TEXT NOT NULL,
                        kind TEXT NOT NULL,
                        content TEXT,
                        user_id TEXT,
                        PRIMARY KEY (id, created_at)
                    )
                """)
                await db.commit()

            self._initialized = True

    async def _item_id(self, db: aiosqlite.Connection, kind: ContentKind, slug: str) -> int:
        async with db.execute("SELECT id FROM content_items WHERE kind = ? AND slug = ?", (kind, slug)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise ContentNotFound(f"{kind.capitalize()} item with slug '{slug}' not found.")
        return int(row["id"])

    async def _translation(self, db: aiosqlite.Connection, item_id: int, locale: Locale) -> TranslationRecord:
        async with db.execute(
            "SELECT * FROM content_translations WHERE item_id = ? AND locale = ?", (item_id, locale)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise ContentNotFound(f"No '{locale}' translation exists for item {item_id}.")
        return TranslationRecord(**dict(row))

    async def _insert_translation(
        self, db: aiosqlite.Connection, item_id: int, locale: Locale, fields: TranslationFields
    ) -> TranslationRecord:
        try:
            cursor = await db.execute(
                """
                INSERT INTO content_translations
                    (item_id, locale, title, content, excerpt, meta_title, meta_description, keywords,
                     age_group, schedule)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item_id,
                    locale,
                    fields.title,
                    fields.content,
                    fields.excerpt,
                    fields.meta_title,
                    fields.meta_description,
                    fields.keywords,
                    fields.age_group,
                    fields.schedule,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateTranslation(
                f"Translation for locale '{locale}' already exists for this item. Use update instead."
            ) from e
        return TranslationRecord(id=cursor.lastrowid, item_id=item_id, locale=locale, **fields.model_dump())

    # ---------- writes ----------

    async def create_item(
        self,
        kind: ContentKind,
        slug: str,
        locale: Locale,
        fields: TranslationFields,
        image: str | None = None,
        date: str | None = None,
    ) -> ContentView:
        await self._ensure_initialized()

        date = date or datetime.now(UTC).date().isoformat()
        async with self._connect() as db:
            try:
                cursor = await db.execute(
                    "INSERT INTO content_items (kind, slug, date, image) VALUES (?, ?, ?, ?)",
                    (kind, slug, date, image),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateSlug(f"A {kind} item with slug '{slug}' already exists.") from e
            item_id = cursor.lastrowid
            if item_id is None:
                raise RuntimeError("content item insert returned no id")
            await self._insert_translation(db, item_id, locale, fields)
            await db.commit()

        logger.info("← ContentStore: created %s '%s' (%s)", kind, slug, locale)
        return await self.get_by_slug(kind, slug, locale)

    async def add_translation(
        self, kind: ContentKind, slug: str, locale: Locale, fields: TranslationFields
    ) -> TranslationRecord:
        await self._ensure_initialized()

        async with self._connect() as db:
            item_id = await self._item_id(db, kind, slug)
            record = await self._insert_translation(db, item_id, locale, fields)
            await db.commit()

        logger.info("← ContentStore: added %s translation to %s '%s'", locale, kind, slug)
        return record

    async def update_translation(
        self, kind: ContentKind, slug: str, locale: Locale, changes: dict[str, Any]
    ) -> TranslationRecord:
        await self._ensure_initialized()

        updates = {k: v for k, v in changes.items() if k in _UPDATABLE and v is not None}
        async with self._connect() as db:
            item_id = await self._item_id(db, kind, slug)
            current = await self._translation(db, item_id, locale)
            if updates:
                assignments = ", ".join(f"{column} = ?" for column in updates)
                await db.execute(
                    f"UPDATE content_translations SET {assignments} WHERE id = ?",
                    [*updates.values(), current.id],
                )
                await db.commit()

        return current.model_copy(update=updates)

    # ---------- reads ----------

    async def get_by_slug(self, kind: ContentKind, slug: str, locale: Locale = "en") -> ContentView:
        await self._ensure_initialized()

        async with self._connect() as db:
            item_id = await self._item_id(db, kind, slug)
            async with db.execute(f"{_VIEW_QUERY} WHERE i.id = ? AND t.locale = ?", (item_id, locale)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise ContentNotFound(f"{kind.capitalize()} item '{slug}' has no '{locale}' translation.")
        return ContentView(**dict(row))

    async def search_by_title(
        self, kind: ContentKind, query: str, locale: Locale | None = None, take: int = 10
    ) -> list[ContentView]:
        await self._ensure_initialized()

        sql = f"{_VIEW_QUERY} WHERE i.kind = ? AND t.title LIKE ? ESCAPE '\\'"
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        params: list[Any] = [kind, f"%{escaped}%"]
        if locale:
            sql += " AND t.locale = ?"
            params.append(locale)
        sql += " ORDER BY i.date DESC, i.id DESC LIMIT ?"
        params.append(take)

        async with self._connect() as db, db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [ContentView(**dict(row)) for row in rows]

    async def latest(self, kind: ContentKind, limit: int = 5, locale: Locale = "en") -> list[ContentView]:
        await self._ensure_initialized()

        async with (
            self._connect() as db,
            db.execute(
                f"{_VIEW_QUERY} WHERE i.kind = ? AND t.locale = ? ORDER BY i.date DESC, i.id DESC LIMIT ?",
                (kind, locale, limit),
            ) as cursor,
        ):
            rows = await cursor.fetchall()
        return [ContentView(**dict(row)) for row in rows]

    # ---------- documents ----------

    async def save_document(self, document: Document) -> Document:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                "INSERT INTO documents (id, created_at, title, kind, content, user_id) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    document.id,
                    document.created_at.isoformat(),
                    document.title,
                    document.kind,
                    document.content,
                    document.user_id,
                ),
            )
            await db.commit()
        return document

    async def get_document(self, document_id: str) -> Document:
        """Latest version of a document."""
        await self._ensure_initialized()

        async with (
            self._connect() as db,
            db.execute(
                "SELECT * FROM documents WHERE id = ? ORDER BY created_at DESC LIMIT 1", (document_id,)
            ) as cursor,
        ):
            row = await cursor.fetchone()
        if row is None:
            raise ContentNotFound("Document not found")
        return Document(**dict(row))
