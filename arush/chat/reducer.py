"""
Client-side stream reducer.

Applies streamed fragments, in order, to an in-memory view of the assistant
turn being generated. The server uses the same reducer to derive the turn it
persists, so what is stored is exactly what the client reconstructed.
"""

from __future__ import annotations

import logging
from typing import Any

from .stream_protocol import StreamFragment, decode_line

logger = logging.getLogger(__name__)


class ChatStreamReducer:
    """Incrementally rebuilds one assistant turn from stream fragments."""

    def __init__(self) -> None:
        self.message_id: str | None = None
        self.parts: list[dict[str, Any]] = []
        self.data_events: list[dict[str, Any]] = []
        self.errors: list[str] = []
        self.finish_reason: str | None = None
        self._invocations: dict[str, dict[str, Any]] = {}
        self._args_text: dict[str, str] = {}

    @property
    def finished(self) -> bool:
        return self.finish_reason is not None

    @property
    def text(self) -> str:
        return "".join(p["text"] for p in self.parts if p["type"] == "text")

    @property
    def reasoning(self) -> str:
        return "".join(p["reasoning"] for p in self.parts if p["type"] == "reasoning")

    def tool_invocations(self) -> list[dict[str, Any]]:
        return [p["toolInvocation"] for p in self.parts if p["type"] == "tool-invocation"]

    def apply_line(self, line: str) -> None:
        self.apply(decode_line(line))

    def apply(self, fragment: StreamFragment) -> None:
        if self.finished:
            logger.warning("Ignoring %s fragment received after finish", fragment.kind)
            return

        value = fragment.value
        match fragment.kind:
            case "step_start":
                self.message_id = self.message_id or value.get("messageId")
                self.parts.append({"type": "step-start"})
            case "text":
                self._append_delta("text", value)
            case "reasoning":
                self._append_delta("reasoning", value)
            case "tool_call_start":
                self._invocation(value["toolCallId"], value["toolName"])
                self._args_text[value["toolCallId"]] = ""
            case "tool_call_delta":
                call_id = value["toolCallId"]
                self._args_text[call_id] = self._args_text.get(call_id, "") + value["argsTextDelta"]
            case "tool_call":
                invocation = self._invocation(value["toolCallId"], value["toolName"])
                invocation.update(state="call", args=value["args"])
                self._args_text.pop(value["toolCallId"], None)
            case "tool_result":
                invocation = self._invocations.get(value["toolCallId"])
                if invocation is None:
                    logger.warning("Result for unknown tool call %s", value["toolCallId"])
                    return
                invocation.update(state="result", result=value["result"])
            case "data":
                self.data_events.extend(value)
            case "error":
                self.errors.append(value)
            case "step_finish":
                pass
            case "finish":
                self.finish_reason = value["finishReason"]

    def _append_delta(self, part_type: str, delta: str) -> None:
        if self.parts and self.parts[-1]["type"] == part_type:
            self.parts[-1][part_type] += delta
        else:
            self.parts.append({"type": part_type, part_type: delta})

    def _invocation(self, call_id: str, tool_name: str) -> dict[str, Any]:
        invocation = self._invocations.get(call_id)
        if invocation is None:
            invocation = {"state": "partial-call", "toolCallId": call_id, "toolName": tool_name, "args": None}
            self._invocations[call_id] = invocation
            self.parts.append({"type": "tool-invocation", "toolInvocation": invocation})
        return invocation

    def to_parts(self) -> list[dict[str, Any]]:
        """Ordered parts of the turn, safe to persist."""
        parts: list[dict[str, Any]] = []
        for part in self.parts:
            if part["type"] == "tool-invocation":
                parts.append({"type": "tool-invocation", "toolInvocation": dict(part["toolInvocation"])})
            else:
                parts.append(dict(part))
        return parts
