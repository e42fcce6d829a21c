"""
Tool side channel.

A per-turn, write-only event channel tool executors use to report progress
and partial results. Events are queued in emission order and drained by the
streaming handler onto the same response as the model output.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class SideChannel:
    """Event queue owned by one turn."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._closed = False
        self.emitted = 0

    def bind(self, tool_call_id: str | None) -> ToolSideChannel:
        """Writer handle whose events carry ``tool_call_id``."""
        return ToolSideChannel(self, tool_call_id)

    def emit(self, event_type: str, content: Any = "", tool_call_id: str | None = None) -> None:
        if self._closed:
            logger.debug("Dropping side-channel event %s after turn closed", event_type)
            return
        event: dict[str, Any] = {"type": event_type, "content": content}
        if tool_call_id is not None:
            event["toolCallId"] = tool_call_id
        self._queue.put_nowait(event)
        self.emitted += 1

    async def get(self) -> dict[str, Any]:
        return await self._queue.get()

    def drain(self) -> list[dict[str, Any]]:
        """Take every queued event without waiting."""
        events: list[dict[str, Any]] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        self._closed = True


class ToolSideChannel:
    """The handle a single tool invocation writes to."""

    def __init__(self, channel: SideChannel, tool_call_id: str | None):
        self._channel = channel
        self.tool_call_id = tool_call_id

    def write(self, event_type: str, content: Any = "") -> None:
        self._channel.emit(event_type, content, self.tool_call_id)

    def finish(self) -> None:
        self.write("finish", "")
