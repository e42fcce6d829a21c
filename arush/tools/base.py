"""
Tool contract.

Every tool declares a pydantic argument model, a description for the model,
and an async ``run`` body. ``Tool.invoke`` is the failure boundary: it
validates the arguments before any side effect, converts any exception raised
by ``run`` into a failure result, and always closes the tool's side channel
with a ``finish`` event. It never raises.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from arush.auth import Session
from arush.chat.models import ToolDefinition, ToolFunctionDefinition
from arush.chat.side_channel import ToolSideChannel

logger = logging.getLogger(__name__)


# ==============================================================================
# RESULTS
# ==============================================================================

RESERVED_RESULT_KEYS = frozenset({"success", "message", "errorDetails"})


class ToolOk(BaseModel):
    message: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload")
    @classmethod
    def _no_reserved_keys(cls, payload: dict[str, Any]) -> dict[str, Any]:
        reserved = RESERVED_RESULT_KEYS.intersection(payload)
        if reserved:
            raise ValueError(f"payload may not set {sorted(reserved)}")
        return payload

    @property
    def success(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "message": self.message, **self.payload}


class ToolErr(BaseModel):
    message: str
    error_details: Any = None

    @property
    def success(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "errorDetails": self.error_details}


ToolResult = ToolOk | ToolErr


# ==============================================================================
# INVOCATION
# ==============================================================================


class InvocationState(str, Enum):
    PENDING = "pending"
    VALIDATING = "validating"
    REJECTED = "rejected"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    FINISHED = "finished"


class ToolContext(BaseModel):
    """Per-invocation context handed to a tool body."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session: Session
    side_channel: ToolSideChannel


class ToolInvocation(BaseModel):
    """Transient record of one tool call within a turn."""

    tool_name: str
    tool_call_id: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)
    states: list[InvocationState] = Field(default_factory=lambda: [InvocationState.PENDING])
    result: ToolOk | ToolErr | None = None

    @property
    def state(self) -> InvocationState:
        return self.states[-1]

    @property
    def outcome(self) -> InvocationState:
        """The terminal outcome: rejected, succeeded or failed."""
        for state in reversed(self.states):
            if state in (InvocationState.REJECTED, InvocationState.SUCCEEDED, InvocationState.FAILED):
                return state
        return self.state

    def advance(self, state: InvocationState) -> None:
        self.states.append(state)


# ==============================================================================
# TOOL BASE
# ==============================================================================


class ToolArgs(BaseModel):
    """Base for tool argument schemas."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EmptyArgs(ToolArgs):
    pass


class Tool(ABC):
    name: ClassVar[str]
    description: ClassVar[str]
    Args: ClassVar[type[ToolArgs]] = EmptyArgs
    failure_message: ClassVar[str] = "The tool failed"

    def definition(self) -> ToolDefinition:
        schema = self.Args.model_json_schema()
        schema.pop("title", None)
        schema.pop("description", None)
        return ToolDefinition(
            function=ToolFunctionDefinition(name=self.name, description=self.description, parameters=schema)
        )

    @abstractmethod
    async def run(self, args: Any, ctx: ToolContext) -> ToolResult: ...

    async def invoke(self, raw_args: dict[str, Any], ctx: ToolContext) -> ToolInvocation:
        invocation = ToolInvocation(tool_name=self.name, tool_call_id=ctx.side_channel.tool_call_id, args=raw_args)

        invocation.advance(InvocationState.VALIDATING)
        try:
            args = self.Args.model_validate(raw_args)
        except ValidationError as e:
            invocation.advance(InvocationState.REJECTED)
            invocation.result = ToolErr(
                message=f"Invalid arguments for {self.name}",
                error_details=e.errors(include_url=False, include_context=False),
            )
            ctx.side_channel.finish()
            invocation.advance(InvocationState.FINISHED)
            return invocation

        invocation.advance(InvocationState.EXECUTING)
        try:
            result = await self.run(args, ctx)
        except Exception as e:
            logger.exception("Tool %s raised", self.name)
            result = ToolErr(message=f"{self.failure_message}: {e}", error_details=str(e))
        finally:
            ctx.side_channel.finish()

        invocation.result = result
        invocation.advance(InvocationState.SUCCEEDED if result.success else InvocationState.FAILED)
        invocation.advance(InvocationState.FINISHED)
        return invocation
