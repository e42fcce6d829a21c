"""
Line-delimited stream protocol.

Every fragment is written as ``<code>:<json>\\n``. The code identifies the
fragment kind; the JSON value is the payload. The ``finish`` fragment is
always the last line of a response.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel

FragmentKind = Literal[
    "step_start",
    "text",
    "reasoning",
    "tool_call_start",
    "tool_call_delta",
    "tool_call",
    "tool_result",
    "data",
    "error",
    "step_finish",
    "finish",
]

PART_CODES: dict[str, str] = {
    "step_start": "f",
    "text": "0",
    "reasoning": "g",
    "tool_call_start": "b",
    "tool_call_delta": "c",
    "tool_call": "9",
    "tool_result": "a",
    "data": "2",
    "error": "3",
    "step_finish": "e",
    "finish": "d",
}

CODE_KINDS: dict[str, str] = {code: kind for kind, code in PART_CODES.items()}

FinishReason = Literal["stop", "tool-calls", "length", "error"]

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"


class StreamProtocolError(ValueError):
    """A line does not follow the ``<code>:<json>`` format."""


class StreamFragment(BaseModel):
    """One unit of streamed output."""

    kind: FragmentKind
    value: Any = None

    def encode(self) -> str:
        return encode_fragment(self.kind, self.value)

    # ---------- constructors ----------

    @classmethod
    def step_start(cls, message_id: str) -> StreamFragment:
        return cls(kind="step_start", value={"messageId": message_id})

    @classmethod
    def text(cls, delta: str) -> StreamFragment:
        return cls(kind="text", value=delta)

    @classmethod
    def reasoning(cls, delta: str) -> StreamFragment:
        return cls(kind="reasoning", value=delta)

    @classmethod
    def tool_call_start(cls, tool_call_id: str, tool_name: str) -> StreamFragment:
        return cls(kind="tool_call_start", value={"toolCallId": tool_call_id, "toolName": tool_name})

    @classmethod
    def tool_call_delta(cls, tool_call_id: str, args_text_delta: str) -> StreamFragment:
        return cls(kind="tool_call_delta", value={"toolCallId": tool_call_id, "argsTextDelta": args_text_delta})

    @classmethod
    def tool_call(cls, tool_call_id: str, tool_name: str, args: Any) -> StreamFragment:
        return cls(kind="tool_call", value={"toolCallId": tool_call_id, "toolName": tool_name, "args": args})

    @classmethod
    def tool_result(cls, tool_call_id: str, result: dict[str, Any]) -> StreamFragment:
        return cls(kind="tool_result", value={"toolCallId": tool_call_id, "result": result})

    @classmethod
    def data(cls, events: list[dict[str, Any]]) -> StreamFragment:
        return cls(kind="data", value=events)

    @classmethod
    def error(cls, message: str) -> StreamFragment:
        return cls(kind="error", value=message)

    @classmethod
    def step_finish(cls, finish_reason: FinishReason, is_continued: bool = False) -> StreamFragment:
        return cls(kind="step_finish", value={"finishReason": finish_reason, "isContinued": is_continued})

    @classmethod
    def finish(cls, finish_reason: FinishReason) -> StreamFragment:
        return cls(kind="finish", value={"finishReason": finish_reason})


def encode_fragment(kind: str, value: Any) -> str:
    """Encode one fragment as a protocol line."""
    code = PART_CODES[kind]
    return f"{code}:{json.dumps(value, ensure_ascii=False, separators=(',', ':'))}\n"


def decode_line(line: str) -> StreamFragment:
    """Decode one protocol line back into a fragment."""
    code, sep, payload = line.rstrip("\n").partition(":")
    if not sep or code not in CODE_KINDS:
        raise StreamProtocolError(f"Unknown stream line: {line[:80]!r}")
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as e:
        raise StreamProtocolError(f"Invalid JSON payload for code {code!r}: {e}") from e
    return StreamFragment(kind=CODE_KINDS[code], value=value)  # type: ignore[arg-type]


def decode_stream(body: str) -> list[StreamFragment]:
    """Decode a full response body, skipping blank lines."""
    return [decode_line(line) for line in body.splitlines() if line.strip()]
