"""
Tool Execution Handler

Runs the tool calls requested in one model round:
- JSON argument parsing
- Lookup in the tools active for this turn
- Concurrent execution of same-round calls
- Outcome logging

Every call produces a ``ToolInvocation`` whose result is folded into the
transcript; nothing raised here reaches the stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any

from arush.auth import Session
from arush.tools.base import InvocationState, Tool, ToolContext, ToolErr, ToolInvocation

from .logging_utils import (
    log_tool_args_error,
    log_tool_arguments,
    log_tool_execution_error,
    log_tool_execution_start,
    log_tool_execution_success,
    log_tool_rejected,
    log_tool_results,
)
from .models import ToolCall
from .side_channel import SideChannel

logger = logging.getLogger(__name__)


def parse_tool_arguments(arguments: str | None) -> dict[str, Any]:
    """Decode a tool call's JSON arguments; anything but a JSON object is rejected."""
    parsed = json.loads(arguments or "{}")
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


class ToolExecutor:
    """Executes tool calls against the tools active for a turn."""

    def __init__(self, chat_conf: dict[str, Any]):
        self.arguments_truncate = chat_conf.get("logging", {}).get("tool_arguments_truncate", 500)

    async def execute_tool_calls(
        self,
        calls: list[ToolCall],
        tools: Mapping[str, Tool],
        session: Session,
        side_channel: SideChannel,
    ) -> list[ToolInvocation]:
        """Run all calls of one round concurrently; results keep the calls' order."""
        logger.info("→ Tools: executing %d tool call(s)", len(calls))
        invocations = await asyncio.gather(
            *(
                self.execute_tool_call(call, i, len(calls), tools, session, side_channel)
                for i, call in enumerate(calls)
            )
        )
        logger.info("← Tools: completed all tool executions")
        return list(invocations)

    async def execute_tool_call(
        self,
        call: ToolCall,
        index: int,
        total: int,
        tools: Mapping[str, Tool],
        session: Session,
        side_channel: SideChannel,
    ) -> ToolInvocation:
        tool_name = call.function.name

        try:
            args = parse_tool_arguments(call.function.arguments)
        except ValueError as e:
            log_tool_args_error(tool_name, e)
            return self._rejected(call, f"Malformed arguments for {tool_name}", str(e))

        tool = tools.get(tool_name)
        if tool is None:
            log_tool_rejected(tool_name, "not available for this turn")
            return self._rejected(call, f"Tool '{tool_name}' is not available.", "unknown_tool", args)

        log_tool_arguments(tool_name, args, f"call {index + 1}/{total}", self.arguments_truncate)
        log_tool_execution_start(tool_name, index, total)

        ctx = ToolContext(session=session, side_channel=side_channel.bind(call.id))
        try:
            invocation = await tool.invoke(args, ctx)
        except Exception as e:
            # Tool.invoke is itself a failure boundary; this only guards overrides of it
            log_tool_execution_error(tool_name, str(e))
            invocation = ToolInvocation(tool_name=tool_name, tool_call_id=call.id, args=args)
            invocation.result = ToolErr(message=f"Tool execution failed: {e!s}", error_details=str(e))
            invocation.advance(InvocationState.FAILED)
            return invocation

        assert invocation.result is not None
        match invocation.outcome:
            case InvocationState.SUCCEEDED:
                log_tool_execution_success(tool_name, invocation.result.message)
            case InvocationState.REJECTED:
                log_tool_rejected(tool_name, invocation.result.message)
            case _:
                log_tool_execution_error(tool_name, invocation.result.message)
        log_tool_results(tool_name, invocation.result.to_dict())
        return invocation

    @staticmethod
    def _rejected(call: ToolCall, message: str, details: Any, args: dict[str, Any] | None = None) -> ToolInvocation:
        invocation = ToolInvocation(tool_name=call.function.name, tool_call_id=call.id, args=args or {})
        invocation.advance(InvocationState.VALIDATING)
        invocation.advance(InvocationState.REJECTED)
        invocation.result = ToolErr(message=message, error_details=details)
        return invocation
