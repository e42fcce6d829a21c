"""
Streaming Response Handler

Adapts model output into stream fragments for one assistant turn:
- Model round streaming and tool call delta accumulation
- Reasoning extraction and word-level smoothing of text
- Tool execution with side-channel events interleaved as they happen
- Bounded model/tool round trips

This is the most fragile part of the chat system. Fragment order here is what
the client reducer depends on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator, Mapping
from typing import TYPE_CHECKING, Any

from arush.tools.registry import ToolRegistry

from .logging_utils import log_llm_reply
from .models import AssistantMessage, ToolCall, ToolCallDelta, ToolMessage
from .reasoning import ReasoningExtractor
from .smoothing import WordSmoother
from .stream_protocol import FinishReason, StreamFragment

if TYPE_CHECKING:
    from arush.auth import Session
    from arush.tools.base import Tool, ToolInvocation

    from .providers import LanguageModel, ModelSpec
    from .side_channel import SideChannel
    from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

STREAM_ERROR_MESSAGE = "Oops, an error occurred!"


class RoundOutput:
    """What one model round produced once its stream is exhausted."""

    def __init__(self) -> None:
        self.content_parts: list[str] = []
        self.reasoning_parts: list[str] = []
        self.tool_calls: list[ToolCall] = []
        self.finish_reason: str | None = None

    @property
    def content(self) -> str | None:
        return "".join(self.content_parts) or None


class StreamingHandler:
    """Runs the model/tool loop for one turn and yields its fragments."""

    def __init__(self, tool_executor: ToolExecutor, chat_conf: dict[str, Any]):
        self.tool_executor = tool_executor
        self.chat_conf = chat_conf
        smoothing = chat_conf.get("smoothing", {})
        self.smoothing_enabled = bool(smoothing.get("enabled", True))
        self.smoothing_delay_ms = int(smoothing.get("delay_ms", 10))
        # Tool batches outlive a disconnected stream; keep them referenced until done
        self._background_tasks: set[asyncio.Future[Any]] = set()

    async def stream(
        self,
        model: LanguageModel,
        spec: ModelSpec,
        messages: list[dict[str, Any]],
        tools: Mapping[str, Tool],
        session: Session,
        side_channel: SideChannel,
        message_id: str,
        max_rounds: int,
    ) -> AsyncGenerator[StreamFragment, None]:
        """
        Stream one assistant turn.

        Each round starts with a step-start and ends with a step-finish. A round
        that requests tools runs them, feeds their results back and continues,
        up to ``max_rounds`` model calls. Model failures become an in-band error
        fragment; the final fragment is always a finish.
        """
        conversation = list(messages)
        tool_payload = [d.model_dump() for d in ToolRegistry.definitions(tools)] or None
        finish_reason: FinishReason = "stop"

        try:
            for round_index in range(max_rounds):
                logger.info("→ LLM: round %d/%d with model %s", round_index + 1, max_rounds, model.model_id)
                yield StreamFragment.step_start(message_id)

                output = RoundOutput()
                async for fragment in self._stream_round(model, spec, conversation, tool_payload, output):
                    yield fragment

                log_llm_reply(
                    {
                        "content": output.content,
                        "reasoning": "".join(output.reasoning_parts),
                        "tool_calls": [c.model_dump() for c in output.tool_calls],
                        "model": model.model_id,
                    },
                    f"round {round_index + 1}",
                    self.chat_conf,
                )

                if not output.tool_calls:
                    finish_reason = "length" if output.finish_reason == "length" else "stop"
                    yield StreamFragment.step_finish(finish_reason)
                    break

                for call in output.tool_calls:
                    yield StreamFragment.tool_call(call.id, call.function.name, _display_args(call))

                invocations: list[ToolInvocation] = []
                async for fragment in self._execute_round(output.tool_calls, tools, session, side_channel, invocations):
                    yield fragment

                conversation.append(AssistantMessage(content=output.content, tool_calls=output.tool_calls).to_dict())
                for invocation in invocations:
                    assert invocation.result is not None and invocation.tool_call_id is not None
                    conversation.append(
                        ToolMessage(
                            content=json.dumps(invocation.result.to_dict(), ensure_ascii=False),
                            tool_call_id=invocation.tool_call_id,
                        ).model_dump()
                    )

                finish_reason = "tool-calls"
                yield StreamFragment.step_finish("tool-calls", is_continued=round_index + 1 < max_rounds)
            else:
                logger.warning("Reached maximum tool call rounds (%d); ending turn", max_rounds)
        except Exception as e:
            logger.error("Model stream failed: %s", e)
            yield StreamFragment.error(STREAM_ERROR_MESSAGE)
            finish_reason = "error"

        logger.info("← LLM: turn finished, finish_reason=%s", finish_reason)
        yield StreamFragment.finish(finish_reason)

    async def _stream_round(
        self,
        model: LanguageModel,
        spec: ModelSpec,
        conversation: list[dict[str, Any]],
        tool_payload: list[dict[str, Any]] | None,
        output: RoundOutput,
    ) -> AsyncGenerator[StreamFragment, None]:
        extractor = ReasoningExtractor(spec.reasoning_tag) if spec.reasoning_tag else None
        smoother = WordSmoother(self.smoothing_delay_ms) if self.smoothing_enabled else None
        accumulated: list[dict[str, Any]] = []
        started: set[int] = set()

        async def text_fragments(chunks: list[str]) -> AsyncGenerator[StreamFragment, None]:
            for chunk in chunks:
                output.content_parts.append(chunk)
                yield StreamFragment.text(chunk)
                if smoother is not None and smoother.delay:
                    await asyncio.sleep(smoother.delay)

        def flush_text() -> list[str]:
            return smoother.flush() if smoother is not None else []

        def reasoning_fragment(delta: str) -> StreamFragment:
            output.reasoning_parts.append(delta)
            return StreamFragment.reasoning(delta)

        async for chunk in model.stream(conversation, tool_payload):
            choices: list[dict[str, Any]] = chunk.get("choices", [])
            if not choices:
                continue
            choice = choices[0]
            delta: dict[str, Any] = choice.get("delta") or {}

            native_reasoning = delta.get("reasoning") or delta.get("reasoning_content")
            if native_reasoning:
                async for fragment in text_fragments(flush_text()):
                    yield fragment
                yield reasoning_fragment(native_reasoning)

            content = delta.get("content")
            if content:
                segments = extractor.feed(content) if extractor is not None else [("text", content)]
                for kind, segment in segments:
                    if kind == "reasoning":
                        async for fragment in text_fragments(flush_text()):
                            yield fragment
                        yield reasoning_fragment(segment)
                    else:
                        pieces = smoother.feed(segment) if smoother is not None else [segment]
                        async for fragment in text_fragments(pieces):
                            yield fragment

            tool_call_deltas: list[dict[str, Any]] | None = delta.get("tool_calls")
            if tool_call_deltas:
                async for fragment in text_fragments(flush_text()):
                    yield fragment
                for raw_delta in tool_call_deltas:
                    tcd = ToolCallDelta.model_validate(raw_delta)
                    index = self._accumulate_tool_call_delta(accumulated, tcd)
                    call = accumulated[index]
                    if index not in started:
                        if not (call["id"] and call["function"]["name"]):
                            continue
                        started.add(index)
                        yield StreamFragment.tool_call_start(call["id"], call["function"]["name"])
                        # Arguments that arrived before the call was identifiable
                        if call["function"]["arguments"]:
                            yield StreamFragment.tool_call_delta(call["id"], call["function"]["arguments"])
                    elif tcd.function is not None and tcd.function.arguments:
                        yield StreamFragment.tool_call_delta(call["id"], tcd.function.arguments)

            if choice.get("finish_reason"):
                output.finish_reason = choice["finish_reason"]

        if extractor is not None:
            for kind, segment in extractor.flush():
                if kind == "reasoning":
                    yield reasoning_fragment(segment)
                else:
                    pieces = smoother.feed(segment) if smoother is not None else [segment]
                    async for fragment in text_fragments(pieces):
                        yield fragment
        async for fragment in text_fragments(flush_text()):
            yield fragment

        output.tool_calls = self._complete_tool_calls(accumulated)
        logger.info(
            "← LLM: round completed, finish_reason=%s, tool_calls=%d",
            output.finish_reason,
            len(output.tool_calls),
        )

    async def _execute_round(
        self,
        calls: list[ToolCall],
        tools: Mapping[str, Tool],
        session: Session,
        side_channel: SideChannel,
        invocations: list[ToolInvocation],
    ) -> AsyncGenerator[StreamFragment, None]:
        """Run one round's tools, yielding side-channel events while they execute."""
        batch = asyncio.ensure_future(self.tool_executor.execute_tool_calls(calls, tools, session, side_channel))
        self._background_tasks.add(batch)
        batch.add_done_callback(self._background_tasks.discard)

        getter: asyncio.Future[dict[str, Any]] | None = None
        try:
            while True:
                getter = asyncio.ensure_future(side_channel.get())
                done, _ = await asyncio.wait({getter, batch}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    logger.debug("→ Frontend: side-channel event %s", getter.result().get("type"))
                    yield StreamFragment.data([getter.result()])
                    continue
                break
        finally:
            if getter is not None and not getter.done():
                getter.cancel()

        for event in side_channel.drain():
            yield StreamFragment.data([event])

        invocations.extend(batch.result())
        for invocation in invocations:
            assert invocation.result is not None and invocation.tool_call_id is not None
            yield StreamFragment.tool_result(invocation.tool_call_id, invocation.result.to_dict())

    def _accumulate_tool_call_delta(self, current_tool_calls: list[dict[str, Any]], delta: ToolCallDelta) -> int:
        """
        Accumulate a tool call delta into the current tool calls list.

        Each delta may carry part of a call (id, function name, argument text);
        deltas for the same call share an index. Returns the index updated.
        """
        index = delta.index if delta.index is not None else len(current_tool_calls)

        while len(current_tool_calls) <= index:
            current_tool_calls.append({"id": None, "type": "function", "function": {"name": None, "arguments": ""}})

        current_call = current_tool_calls[index]
        if delta.id:
            current_call["id"] = delta.id
        if delta.function is not None:
            if delta.function.name:
                current_call["function"]["name"] = delta.function.name
            if delta.function.arguments:
                current_call["function"]["arguments"] += delta.function.arguments
        return index

    @staticmethod
    def _complete_tool_calls(accumulated: list[dict[str, Any]]) -> list[ToolCall]:
        """Calls with a function name; a missing id is generated."""
        calls: list[ToolCall] = []
        for call in accumulated:
            name = call["function"]["name"]
            if not name:
                logger.warning("Dropping tool call without a function name: %s", call)
                continue
            calls.append(
                ToolCall(
                    id=call["id"] or f"call_{uuid.uuid4().hex[:24]}",
                    function={"name": name, "arguments": call["function"]["arguments"] or "{}"},
                )
            )
        return calls


def _display_args(call: ToolCall) -> Any:
    try:
        return json.loads(call.function.arguments or "{}")
    except json.JSONDecodeError:
        return call.function.arguments
