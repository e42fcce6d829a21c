import json
import logging

import pytest

from arush.auth import Session
from arush.chat import BadRequest, NotFound, Unauthorized
from arush.chat.chat_orchestrator import assistant_turn_id, fallback_title
from arush.chat.models import ChatRequest, UIMessage, to_model_messages
from arush.history import TurnRole
from fakes import ScriptedModel, chat_body, text_chunk, text_round, tool_round

USER = Session(user_id="user-1")


@pytest.mark.asyncio
async def test_user_turn_is_stored_before_streaming(orchestrator_factory):
    orchestrator, model, repo = orchestrator_factory()

    turn = await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body()))

    assert model.calls == []
    turns = await repo.get_turns("conv-1")
    assert [t.role for t in turns] == [TurnRole.USER]
    assert turn.assistant_id == assistant_turn_id("conv-1", "msg-user-1")
    assert turn.tools == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["agent-model", "chat-model-reasoning"])
async def test_non_chat_modes_activate_all_tools(orchestrator_factory, mode):
    orchestrator, _, _ = orchestrator_factory()
    turn = await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body(mode=mode)))
    assert list(turn.tools) == ["reportProgress"]
    assert turn.spec.reasoning_tag == "think"


@pytest.mark.asyncio
async def test_missing_mode_uses_default(orchestrator_factory):
    orchestrator, _, _ = orchestrator_factory()
    turn = await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body(mode=None)))
    assert turn.spec.mode == "agent-model"


@pytest.mark.asyncio
async def test_prepare_turn_errors(orchestrator_factory):
    orchestrator, _, _ = orchestrator_factory()

    with pytest.raises(Unauthorized):
        await orchestrator.prepare_turn(None, ChatRequest.model_validate(chat_body()))
    with pytest.raises(BadRequest):
        await orchestrator.prepare_turn(USER, ChatRequest(id="conv-1", messages=[]))
    with pytest.raises(BadRequest):
        await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body(mode="turbo")))


@pytest.mark.asyncio
async def test_disconnect_persists_partial_assistant_turn(orchestrator_factory):
    model = ScriptedModel(rounds=[[text_chunk("partial "), text_chunk("answer "), text_chunk("never sent")]])
    orchestrator, _, repo = orchestrator_factory(model=model)
    turn = await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body()))

    stream = orchestrator.stream_turn(turn)
    lines = []
    async for line in stream:
        lines.append(line)
        if line.startswith("0:"):
            break
    await stream.aclose()
    await orchestrator.cleanup()

    turns = await repo.get_turns("conv-1")
    assert [t.role for t in turns] == [TurnRole.USER, TurnRole.ASSISTANT]
    assert turns[1].id == turn.assistant_id
    assert {"type": "text", "text": "partial "} in turns[1].parts


@pytest.mark.asyncio
async def test_history_is_sent_to_model(orchestrator_factory):
    orchestrator, model, _ = orchestrator_factory()
    history = [
        {"id": "u-0", "role": "user", "content": "First question"},
        {"id": "a-0", "role": "assistant", "content": "First answer"},
    ]
    request = ChatRequest.model_validate(chat_body(text="Second question", history=history))
    turn = await orchestrator.prepare_turn(USER, request)
    async for _ in orchestrator.stream_turn(turn):
        pass

    messages = model.calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert [(m["role"], m["content"]) for m in messages[1:]] == [
        ("user", "First question"),
        ("assistant", "First answer"),
        ("user", "Second question"),
    ]


@pytest.mark.asyncio
async def test_tool_round_is_persisted_with_results(orchestrator_factory):
    model = ScriptedModel(rounds=[tool_round("c-1", "reportProgress", {"topic": "t"}), text_round("Done.")])
    orchestrator, _, repo = orchestrator_factory(model=model)
    turn = await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body(mode="agent-model")))
    lines = [line async for line in orchestrator.stream_turn(turn)]

    assert lines[-1] == 'd:{"finishReason":"stop"}\n'
    [assistant] = [t for t in await repo.get_turns("conv-1") if t.role == TurnRole.ASSISTANT]
    [invocation] = [p["toolInvocation"] for p in assistant.parts if p["type"] == "tool-invocation"]
    assert invocation["state"] == "result"
    assert invocation["args"] == {"topic": "t"}
    assert invocation["result"]["success"] is True


@pytest.mark.asyncio
async def test_title_falls_back_to_message_text(orchestrator_factory):
    orchestrator, _, repo = orchestrator_factory(model=ScriptedModel(title=RuntimeError("title model down")))
    long_text = "word " * 40
    await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body(text=long_text)))

    conversation = await repo.get_conversation("conv-1")
    assert conversation.title == fallback_title(long_text)
    assert len(conversation.title) <= 80
    assert conversation.title.endswith("...")


@pytest.mark.asyncio
async def test_conversation_operations_check_owner(orchestrator_factory):
    orchestrator, _, repo = orchestrator_factory()
    await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body()))
    other = Session(user_id="user-2")

    with pytest.raises(Unauthorized):
        await orchestrator.delete_conversation(other, "conv-1")
    with pytest.raises(Unauthorized):
        await orchestrator.get_turns(other, "conv-1")
    with pytest.raises(NotFound):
        await orchestrator.delete_conversation(USER, "missing")

    assert [c.id for c in await orchestrator.list_conversations(USER)] == ["conv-1"]
    assert await orchestrator.list_conversations(other) == []

    await orchestrator.update_visibility(USER, "conv-1", "public")
    assert len(await orchestrator.get_turns(other, "conv-1")) == 1
    assert len(await orchestrator.get_turns(None, "conv-1")) == 1

    await orchestrator.delete_conversation(USER, "conv-1")
    assert await repo.get_conversation("conv-1") is None


def test_assistant_turn_id_is_stable():
    assert assistant_turn_id("c", "m") == assistant_turn_id("c", "m")
    assert assistant_turn_id("c", "m") != assistant_turn_id("c", "m2")


def test_to_model_messages_replays_tool_invocations():
    messages = [
        UIMessage(role="user", content="chart please"),
        UIMessage(
            role="assistant",
            parts=[
                {"type": "step-start"},
                {
                    "type": "tool-invocation",
                    "toolInvocation": {
                        "state": "result",
                        "toolCallId": "c-1",
                        "toolName": "generateChart",
                        "args": {"type": "bar"},
                        "result": {"success": True, "message": "ok"},
                    },
                },
                {"type": "text", "text": "Here it is."},
            ],
        ),
        UIMessage(
            role="user",
            content="and this?",
            experimental_attachments=[{"url": "http://x/cat.png", "contentType": "image/png", "name": "cat.png"}],
        ),
    ]

    converted = to_model_messages(messages)

    assert converted[0] == {"role": "user", "content": "chart please"}
    assert converted[1]["role"] == "assistant"
    assert converted[1]["content"] == "Here it is."
    [call] = converted[1]["tool_calls"]
    assert call["function"] == {"name": "generateChart", "arguments": json.dumps({"type": "bar"})}
    assert converted[2]["tool_call_id"] == "c-1"
    assert json.loads(converted[2]["content"]) == {"success": True, "message": "ok"}
    assert converted[3]["content"][1] == {"type": "image_url", "image_url": {"url": "http://x/cat.png"}}


def test_missing_message_ids_are_derived_from_the_request():
    body = {
        "id": "conv-1",
        "messages": [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "hi"},
            {"role": "user", "content": "hello"},
        ],
    }

    first = ChatRequest.model_validate(body)
    again = ChatRequest.model_validate(body)
    elsewhere = ChatRequest.model_validate({**body, "id": "conv-2"})

    ids = [m.id for m in first.messages]
    assert ids == [m.id for m in again.messages]
    assert len(set(ids)) == 3
    assert ids[0] != elsewhere.messages[0].id

    explicit = ChatRequest.model_validate(chat_body(message_id="given-id"))
    assert explicit.messages[-1].id == "given-id"


@pytest.mark.asyncio
@pytest.mark.parametrize("enabled", [True, False])
async def test_system_prompt_logging_follows_feature_flag(orchestrator_factory, monkeypatch, caplog, enabled):
    monkeypatch.setattr(logging, "_module_features", {"chat": {"system_prompt": enabled}}, raising=False)
    caplog.set_level(logging.INFO, logger="arush.chat")
    orchestrator, _, _ = orchestrator_factory()
    turn = await orchestrator.prepare_turn(USER, ChatRequest.model_validate(chat_body()))

    lines = [line async for line in orchestrator.stream_turn(turn)]

    assert lines
    assert ("System prompt for conversation conv-1" in caplog.text) is enabled
