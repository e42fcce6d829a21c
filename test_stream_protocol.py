import pytest

from arush.chat.reasoning import ReasoningExtractor
from arush.chat.reducer import ChatStreamReducer
from arush.chat.side_channel import SideChannel
from arush.chat.smoothing import WordSmoother
from arush.chat.stream_protocol import StreamFragment, StreamProtocolError, decode_line, decode_stream


def test_lines_use_code_prefix_and_compact_json():
    assert StreamFragment.text("héllo").encode() == '0:"héllo"\n'
    assert StreamFragment.finish("stop").encode() == 'd:{"finishReason":"stop"}\n'
    assert StreamFragment.step_start("m-1").encode() == 'f:{"messageId":"m-1"}\n'
    assert StreamFragment.data([{"type": "progress", "content": 1}]).encode() == '2:[{"type":"progress","content":1}]\n'


def test_text_with_newlines_stays_on_one_line():
    line = StreamFragment.text("a\nb").encode()
    assert line.count("\n") == 1
    assert decode_line(line).value == "a\nb"


def test_decode_stream_round_trips_a_turn():
    fragments = [
        StreamFragment.step_start("m-1"),
        StreamFragment.reasoning("hmm"),
        StreamFragment.tool_call_start("c-1", "getWeather"),
        StreamFragment.tool_call_delta("c-1", '{"latitude":'),
        StreamFragment.tool_call("c-1", "getWeather", {"latitude": 1}),
        StreamFragment.tool_result("c-1", {"success": True, "message": "ok"}),
        StreamFragment.step_finish("tool-calls", is_continued=True),
        StreamFragment.error("oops"),
        StreamFragment.finish("error"),
    ]
    body = "".join(f.encode() for f in fragments)
    assert decode_stream(body) == fragments


@pytest.mark.parametrize("line", ["z:1", "no separator", '0:{"unterminated'])
def test_decode_rejects_malformed_lines(line):
    with pytest.raises(StreamProtocolError):
        decode_line(line)


def test_reducer_rebuilds_turn():
    reducer = ChatStreamReducer()
    lines = [
        StreamFragment.step_start("m-1"),
        StreamFragment.text("Let me "),
        StreamFragment.text("check."),
        StreamFragment.tool_call_start("c-1", "getWeather"),
        StreamFragment.tool_call_delta("c-1", "{}"),
        StreamFragment.tool_call("c-1", "getWeather", {}),
        StreamFragment.data([{"type": "progress", "content": "", "toolCallId": "c-1"}]),
        StreamFragment.tool_result("c-1", {"success": True, "message": "sunny"}),
        StreamFragment.step_finish("tool-calls", is_continued=True),
        StreamFragment.step_start("m-1"),
        StreamFragment.text("Sunny."),
        StreamFragment.finish("stop"),
    ]
    for fragment in lines:
        reducer.apply_line(fragment.encode())

    assert reducer.message_id == "m-1"
    assert reducer.finished
    assert reducer.text == "Let me check.Sunny."
    assert [p["type"] for p in reducer.to_parts()] == ["step-start", "text", "tool-invocation", "step-start", "text"]
    [invocation] = reducer.tool_invocations()
    assert invocation["state"] == "result"
    assert invocation["result"]["message"] == "sunny"
    assert len(reducer.data_events) == 1


def test_reducer_ignores_fragments_after_finish():
    reducer = ChatStreamReducer()
    reducer.apply(StreamFragment.text("done"))
    reducer.apply(StreamFragment.finish("stop"))
    reducer.apply(StreamFragment.text(" more"))
    assert reducer.text == "done"


def test_reducer_leaves_call_without_result_pending():
    reducer = ChatStreamReducer()
    reducer.apply(StreamFragment.tool_call_start("c-1", "fetchUrl"))
    assert reducer.tool_invocations()[0]["state"] == "partial-call"
    reducer.apply(StreamFragment.tool_call("c-1", "fetchUrl", {"url": "https://example.com"}))
    assert reducer.tool_invocations()[0]["state"] == "call"


def test_extractor_handles_tags_split_at_every_position():
    raw = "a<think>bc</think>d"
    for size in range(1, len(raw) + 1):
        extractor = ReasoningExtractor("think")
        segments = []
        for start in range(0, len(raw), size):
            segments.extend(extractor.feed(raw[start : start + size]))
        segments.extend(extractor.flush())
        text = "".join(s for kind, s in segments if kind == "text")
        reasoning = "".join(s for kind, s in segments if kind == "reasoning")
        assert (text, reasoning) == ("ad", "bc"), size


def test_extractor_releases_lookalike_prefix_on_flush():
    extractor = ReasoningExtractor("think")
    assert extractor.feed("1 <thi") == [("text", "1 ")]
    assert extractor.flush() == [("text", "<thi")]


def test_smoother_releases_whole_words():
    smoother = WordSmoother(delay_ms=0)
    assert smoother.feed("Hel") == []
    assert smoother.feed("lo wor") == ["Hello "]
    assert smoother.feed("ld") == []
    assert smoother.flush() == ["world"]
    assert smoother.flush() == []


@pytest.mark.asyncio
async def test_side_channel_tags_events_and_drops_after_close():
    channel = SideChannel()
    writer = channel.bind("c-1")
    writer.write("progress", {"step": 1})
    writer.finish()

    assert await channel.get() == {"type": "progress", "content": {"step": 1}, "toolCallId": "c-1"}
    assert channel.drain() == [{"type": "finish", "content": "", "toolCallId": "c-1"}]

    channel.close()
    writer.write("progress", "late")
    assert channel.drain() == []
    assert channel.emitted == 2
