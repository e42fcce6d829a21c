#!/usr/bin/env python3
"""
Chat History Data Models

Pydantic models for conversations and their append-only turns.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

# ---------- Type definitions ----------


class TurnRole(str, Enum):
    """Persisted role of a turn."""

    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"
    TOOL = "TOOL"

    @classmethod
    def from_ui(cls, role: str) -> TurnRole:
        return cls(role.upper())

    def to_ui(self) -> str:
        return self.value.lower()


Visibility = Literal["private", "public"]


# ---------- Main models ----------


class Conversation(BaseModel):
    id: str
    user_id: str
    title: str
    visibility: Visibility = "private"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Turn(BaseModel):
    """One persisted message.

    ``parts`` and ``attachments`` are opaque JSON; the repository stores and
    returns them without interpreting their structure.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chat_id: str
    role: TurnRole
    parts: list[dict[str, Any]] = Field(default_factory=list)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    # sequence must always be filled by the repo; start with None
    seq: int | None = None
