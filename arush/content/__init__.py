"""Localized site content (news and programs) and chat documents used by the domain tools."""

from __future__ import annotations

from .models import (
    ContentError,
    ContentNotFound,
    ContentView,
    Document,
    DuplicateSlug,
    DuplicateTranslation,
    TranslationFields,
    TranslationRecord,
)
from .store import ContentStore

__all__ = [
    "ContentError",
    "ContentNotFound",
    "ContentStore",
    "ContentView",
    "Document",
    "DuplicateSlug",
    "DuplicateTranslation",
    "TranslationFields",
    "TranslationRecord",
]
