import asyncio

import pytest

from arush.auth import Session
from arush.chat.providers import ModelSpec
from arush.chat.reducer import ChatStreamReducer
from arush.chat.side_channel import SideChannel
from arush.chat.stream_protocol import StreamFragment
from arush.chat.streaming_handler import StreamingHandler
from arush.chat.tool_executor import ToolExecutor
from arush.tools.base import Tool, ToolArgs, ToolContext, ToolErr, ToolOk, ToolResult
from fakes import (
    ExplodingTool,
    ProgressTool,
    ScriptedModel,
    finish_chunk,
    reasoning_chunk,
    text_chunk,
    text_round,
    tool_call_chunks,
    tool_round,
)


class RendezvousTool(Tool):
    """Succeeds only if a second call of the same round is running concurrently."""

    name = "rendezvous"
    description = "Waits for a partner call."

    def __init__(self) -> None:
        self.arrived = 0
        self.both_here = asyncio.Event()

    async def run(self, args: ToolArgs, ctx: ToolContext) -> ToolResult:
        self.arrived += 1
        if self.arrived == 2:
            self.both_here.set()
        try:
            await asyncio.wait_for(self.both_here.wait(), timeout=1.0)
        except TimeoutError:
            return ToolErr(message="partner never arrived")
        return ToolOk(message="met")


async def run_handler(
    model: ScriptedModel,
    tools: list[Tool] | None = None,
    *,
    reasoning_tag: str | None = "think",
    max_rounds: int = 5,
    smoothing: bool = False,
) -> list[StreamFragment]:
    handler = StreamingHandler(ToolExecutor({}), {"smoothing": {"enabled": smoothing, "delay_ms": 0}})
    spec = ModelSpec(mode="test", model=model.model_id, tools="all", reasoning_tag=reasoning_tag)
    return [
        fragment
        async for fragment in handler.stream(
            model=model,
            spec=spec,
            messages=[{"role": "user", "content": "hi"}],
            tools={t.name: t for t in tools or []},
            session=Session(user_id="user-1"),
            side_channel=SideChannel(),
            message_id="msg-1",
            max_rounds=max_rounds,
        )
    ]


def results_by_id(fragments: list[StreamFragment]) -> dict[str, dict]:
    return {f.value["toolCallId"]: f.value["result"] for f in fragments if f.kind == "tool_result"}


@pytest.mark.asyncio
async def test_plain_text_round():
    fragments = await run_handler(ScriptedModel(rounds=[text_round("Hi there")]))

    assert fragments[0] == StreamFragment.step_start("msg-1")
    assert [f.kind for f in fragments] == ["step_start", "text", "step_finish", "finish"]
    assert fragments[-2] == StreamFragment.step_finish("stop", is_continued=False)
    assert fragments[-1] == StreamFragment.finish("stop")


@pytest.mark.asyncio
async def test_no_tools_sends_no_tool_payload():
    model = ScriptedModel()
    await run_handler(model)
    assert model.calls[0]["tools"] is None


@pytest.mark.asyncio
async def test_tool_definitions_are_sent_to_model():
    model = ScriptedModel()
    await run_handler(model, [ProgressTool()])
    [definition] = model.calls[0]["tools"]
    assert definition["function"]["name"] == "reportProgress"
    assert definition["function"]["parameters"]["required"] == ["topic"]


@pytest.mark.asyncio
async def test_reasoning_tag_split_across_chunks():
    model = ScriptedModel(
        rounds=[[text_chunk("<thi"), text_chunk("nk>pondering</think>Answer "), text_chunk("here"), finish_chunk()]]
    )
    reducer = ChatStreamReducer()
    for fragment in await run_handler(model):
        reducer.apply(fragment)

    assert reducer.reasoning == "pondering"
    assert reducer.text == "Answer here"


@pytest.mark.asyncio
async def test_reasoning_tag_ignored_without_extraction():
    model = ScriptedModel(rounds=[[text_chunk("<think>x</think>y"), finish_chunk()]])
    reducer = ChatStreamReducer()
    for fragment in await run_handler(model, reasoning_tag=None):
        reducer.apply(fragment)
    assert reducer.text == "<think>x</think>y"
    assert reducer.reasoning == ""


@pytest.mark.asyncio
async def test_native_reasoning_deltas():
    model = ScriptedModel(rounds=[[reasoning_chunk("thinking"), text_chunk("done"), finish_chunk()]])
    fragments = await run_handler(model)
    assert [f.kind for f in fragments if f.kind in ("reasoning", "text")] == ["reasoning", "text"]


@pytest.mark.asyncio
async def test_smoothing_rechunks_on_word_boundaries():
    model = ScriptedModel(rounds=[[text_chunk("one tw"), text_chunk("o three"), finish_chunk()]])
    fragments = await run_handler(model, smoothing=True)
    assert [f.value for f in fragments if f.kind == "text"] == ["one ", "two ", "three"]


@pytest.mark.asyncio
async def test_tool_call_fragments_in_order():
    model = ScriptedModel(rounds=[tool_round("call-1", "reportProgress", {"topic": "a"}), text_round("ok")])
    fragments = await run_handler(model, [ProgressTool()])

    kinds = [f.kind for f in fragments]
    assert kinds.index("tool_call_start") < kinds.index("tool_call_delta") < kinds.index("tool_call")
    assert kinds.index("tool_call") < kinds.index("tool_result")
    deltas = "".join(f.value["argsTextDelta"] for f in fragments if f.kind == "tool_call_delta")
    assert deltas == '{"topic": "a"}'
    [call] = [f.value for f in fragments if f.kind == "tool_call"]
    assert call == {"toolCallId": "call-1", "toolName": "reportProgress", "args": {"topic": "a"}}
    assert fragments[-1] == StreamFragment.finish("stop")


@pytest.mark.asyncio
async def test_failing_tool_does_not_affect_sibling():
    round_one = [
        *tool_call_chunks("c-explode", "explode", {}, index=0),
        *tool_call_chunks("c-progress", "reportProgress", {"topic": "x"}, index=1),
        finish_chunk("tool_calls"),
    ]
    model = ScriptedModel(rounds=[round_one, text_round("summary")])
    fragments = await run_handler(model, [ExplodingTool(), ProgressTool()])

    results = results_by_id(fragments)
    assert results["c-explode"]["success"] is False
    assert "kaboom" in results["c-explode"]["message"]
    assert results["c-progress"] == {"success": True, "message": "Progress reported.", "topic": "x"}
    assert fragments[-1] == StreamFragment.finish("stop")

    # Both calls closed their side channel
    finishes = [f.value[0]["toolCallId"] for f in fragments if f.kind == "data" and f.value[0]["type"] == "finish"]
    assert sorted(finishes) == ["c-explode", "c-progress"]


@pytest.mark.asyncio
async def test_same_round_tools_run_concurrently():
    tool = RendezvousTool()
    round_one = [
        *tool_call_chunks("c-1", "rendezvous", {}, index=0),
        *tool_call_chunks("c-2", "rendezvous", {}, index=1),
        finish_chunk("tool_calls"),
    ]
    fragments = await run_handler(ScriptedModel(rounds=[round_one, text_round("done")]), [tool])

    results = results_by_id(fragments)
    assert results["c-1"]["success"] is True
    assert results["c-2"]["success"] is True


@pytest.mark.asyncio
async def test_malformed_arguments_are_rejected_without_running():
    bad_call = [
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {"index": 0, "id": "c-bad", "function": {"name": "reportProgress", "arguments": "{nope"}}
                        ]
                    }
                }
            ]
        },
        finish_chunk("tool_calls"),
    ]
    model = ScriptedModel(rounds=[bad_call, text_round("sorry")])
    fragments = await run_handler(model, [ProgressTool()])

    result = results_by_id(fragments)["c-bad"]
    assert result["success"] is False
    assert result["message"] == "Malformed arguments for reportProgress"
    assert not [f for f in fragments if f.kind == "data"]
    [call] = [f.value for f in fragments if f.kind == "tool_call"]
    assert call["args"] == "{nope"


@pytest.mark.asyncio
async def test_schema_violation_is_rejected():
    model = ScriptedModel(rounds=[tool_round("c-1", "reportProgress", {"subject": "x"}), text_round("sorry")])
    fragments = await run_handler(model, [ProgressTool()])

    result = results_by_id(fragments)["c-1"]
    assert result["success"] is False
    assert result["message"] == "Invalid arguments for reportProgress"
    assert list(result["errorDetails"][0]["loc"]) == ["topic"]


@pytest.mark.asyncio
async def test_unknown_tool_is_rejected_and_turn_continues():
    model = ScriptedModel(rounds=[tool_round("c-1", "launchRocket", {}), text_round("cannot")])
    fragments = await run_handler(model, [ProgressTool()])

    assert results_by_id(fragments)["c-1"]["success"] is False
    assert len(model.calls) == 2
    assert fragments[-1] == StreamFragment.finish("stop")


@pytest.mark.asyncio
async def test_round_cap_counts_model_calls():
    rounds = [tool_round(f"c-{i}", "reportProgress", {"topic": str(i)}) for i in range(5)]
    model = ScriptedModel(rounds=rounds)
    fragments = await run_handler(model, [ProgressTool()], max_rounds=3)

    assert len(model.calls) == 3
    assert len([f for f in fragments if f.kind == "tool_result"]) == 3
    assert fragments[-2] == StreamFragment.step_finish("tool-calls", is_continued=False)
    assert fragments[-1] == StreamFragment.finish("tool-calls")


@pytest.mark.asyncio
async def test_length_finish_reason():
    model = ScriptedModel(rounds=[[text_chunk("truncated"), finish_chunk("length")]])
    fragments = await run_handler(model)
    assert fragments[-1] == StreamFragment.finish("length")


@pytest.mark.asyncio
async def test_model_error_mid_turn_becomes_error_fragment():
    model = ScriptedModel(rounds=[tool_round("c-1", "reportProgress", {"topic": "a"}), RuntimeError("upstream 502")])
    fragments = await run_handler(model, [ProgressTool()])

    assert [f.kind for f in fragments][-2:] == ["error", "finish"]
    assert fragments[-1] == StreamFragment.finish("error")
    # The first round's result was still delivered
    assert results_by_id(fragments)["c-1"]["success"] is True
