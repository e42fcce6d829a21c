"""Content data models for site news, programs and chat documents."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

Locale = Literal["en", "fa", "ar"]
ContentKind = Literal["news", "program"]


class TranslationFields(BaseModel):
    """Localized fields of a content item."""

    title: str
    content: str
    excerpt: str = ""
    # Programs only
    age_group: str | None = None
    schedule: str | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    keywords: str | None = None


class TranslationRecord(TranslationFields):
    id: int
    item_id: int
    locale: Locale


class ContentView(BaseModel):
    """One content item joined with one of its translations."""

    id: int
    kind: ContentKind
    slug: str
    date: str
    image: str | None = None
    locale: Locale
    title: str
    excerpt: str
    content: str
    meta_title: str | None = None
    meta_description: str | None = None
    keywords: str | None = None
    age_group: str | None = None
    schedule: str | None = None


class Document(BaseModel):
    """A document written during a chat; the latest version wins."""

    id: str
    title: str
    kind: str = "text"
    content: str | None = None
    user_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ContentError(Exception):
    pass


class ContentNotFound(ContentError):
    pass


class DuplicateSlug(ContentError):
    pass


class DuplicateTranslation(ContentError):
    pass
