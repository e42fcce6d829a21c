"""
Chat Service Data Models

Data structures for the chat pipeline: LLM API types, tool definitions,
streaming deltas, and the UI-facing request/message shapes.
All strongly typed with Pydantic for validation and type safety.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ==============================================================================
# CORE CHAT MESSAGES (LLM API Types)
# ==============================================================================


class SystemMessage(BaseModel):
    """System message for setting context."""

    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    """User message."""

    role: Literal["user"] = "user"
    content: str


class FunctionCall(BaseModel):
    """Function call within a tool call."""

    name: str
    arguments: str = Field(default="{}")  # JSON string


class ToolCall(BaseModel):
    """Tool call from LLM."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class AssistantMessage(BaseModel):
    """Assistant message with optional tool calls."""

    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None

    @field_validator("tool_calls")
    @classmethod
    def validate_tool_calls(cls, v: list[ToolCall] | None) -> list[ToolCall] | None:
        """Convert empty tool_calls list to None to avoid API errors."""
        if v is not None and len(v) == 0:
            return None
        return v

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict format for LLM client compatibility."""
        result: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
        }
        if self.tool_calls:
            result["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        return result


class ToolMessage(BaseModel):
    """Tool response message."""

    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str


# Union of all message types for conversation
ChatCompletionMessage = SystemMessage | UserMessage | AssistantMessage | ToolMessage


# ==============================================================================
# TOOL DEFINITIONS AND SCHEMAS
# ==============================================================================


class ToolFunctionDefinition(BaseModel):
    """Tool function definition."""

    name: str
    description: str
    parameters: dict[str, Any]


class ToolDefinition(BaseModel):
    """Complete tool definition for OpenAI API."""

    type: Literal["function"] = "function"
    function: ToolFunctionDefinition


# ==============================================================================
# STREAMING MODELS
# ==============================================================================


class FunctionCallDelta(BaseModel):
    """Partial function call data in streaming response."""

    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    """Partial tool call data in streaming response."""

    index: int | None = None
    id: str | None = None
    type: Literal["function"] | None = None
    function: FunctionCallDelta | None = None


# ==============================================================================
# UI MESSAGES (client-facing)
# ==============================================================================

UIRole = Literal["user", "assistant", "system", "tool"]


class UIMessage(BaseModel):
    """One message as the client sends it: legacy ``content`` plus ordered ``parts``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    role: UIRole
    content: str = ""
    parts: list[dict[str, Any]] | None = None
    attachments: list[dict[str, Any]] = Field(default_factory=list, alias="experimental_attachments")

    def content_parts(self) -> list[dict[str, Any]]:
        """Ordered content parts, synthesized from ``content`` for legacy clients."""
        if self.parts:
            return self.parts
        return [{"type": "text", "text": self.content}] if self.content else []

    def text(self) -> str:
        """Concatenated text of all text parts."""
        texts = [p.get("text", "") for p in self.content_parts() if p.get("type") == "text"]
        return "".join(texts) if texts else self.content


def derived_message_id(chat_id: str, index: int, message: UIMessage) -> str:
    """Stable id for a client message sent without one."""
    body = json.dumps([message.content_parts(), message.attachments], sort_keys=True)
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"arush:{chat_id}:{index}:{message.role}:{body}"))


class ChatRequest(BaseModel):
    """Inbound turn request body."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    messages: list[UIMessage]
    selected_chat_model: str | None = Field(default=None, alias="selectedChatModel")

    @model_validator(mode="after")
    def _fill_message_ids(self) -> ChatRequest:
        # Retries of an id-less body must map to the same turn ids
        for index, message in enumerate(self.messages):
            if not message.id:
                message.id = derived_message_id(self.id, index, message)
        return self

    def most_recent_user_message(self) -> UIMessage | None:
        """The last entry, provided it is user-authored."""
        if self.messages and self.messages[-1].role == "user":
            return self.messages[-1]
        return None


class VisibilityUpdate(BaseModel):
    visibility: Literal["private", "public"]


def _user_content(message: UIMessage) -> str | list[dict[str, Any]]:
    images = [a for a in message.attachments if str(a.get("contentType", "")).startswith("image/") and a.get("url")]
    if not images:
        return message.text()
    content: list[dict[str, Any]] = [{"type": "text", "text": message.text()}]
    content.extend({"type": "image_url", "image_url": {"url": a["url"]}} for a in images)
    return content


def to_model_messages(messages: list[UIMessage]) -> list[dict[str, Any]]:
    """
    Convert client history into chat-completion messages.

    Completed tool invocations on assistant messages become an assistant
    ``tool_calls`` message followed by one ``tool`` message per result, so the
    model sees what earlier rounds did. Invocations without a result and
    client-side ``tool`` messages are dropped.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "user":
            converted.append({"role": "user", "content": _user_content(message)})
        elif message.role == "system":
            converted.append(SystemMessage(content=message.text()).model_dump())
        elif message.role == "assistant":
            invocations = [
                p["toolInvocation"]
                for p in message.content_parts()
                if p.get("type") == "tool-invocation" and p.get("toolInvocation", {}).get("state") == "result"
            ]
            text = message.text() or None
            if not invocations:
                if text:
                    converted.append(AssistantMessage(content=text).to_dict())
                continue
            calls = [
                ToolCall(
                    id=inv["toolCallId"],
                    function=FunctionCall(name=inv["toolName"], arguments=json.dumps(inv.get("args") or {})),
                )
                for inv in invocations
            ]
            converted.append(AssistantMessage(content=text, tool_calls=calls).to_dict())
            converted.extend(
                ToolMessage(content=json.dumps(inv.get("result")), tool_call_id=inv["toolCallId"]).model_dump()
                for inv in invocations
            )
    return converted
