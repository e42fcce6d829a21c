import asyncio
import json
from typing import Any

from arush.clients import BackendError, GeneratedImage, ImageClient, LLMError
from arush.tools.base import Tool, ToolArgs, ToolContext, ToolErr, ToolOk, ToolResult


def text_chunk(text: str) -> dict[str, Any]:
    return {"choices": [{"delta": {"content": text}, "finish_reason": None}]}


def reasoning_chunk(text: str) -> dict[str, Any]:
    return {"choices": [{"delta": {"reasoning": text}, "finish_reason": None}]}


def finish_chunk(reason: str = "stop") -> dict[str, Any]:
    return {"choices": [{"delta": {}, "finish_reason": reason}]}


def tool_call_chunks(call_id: str, name: str, args: dict[str, Any], index: int = 0) -> list[dict[str, Any]]:
    """A tool call streamed the way providers do: id and name first, arguments in two pieces."""
    raw = json.dumps(args)
    half = len(raw) // 2
    return [
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {"index": index, "id": call_id, "type": "function", "function": {"name": name}}
                        ]
                    },
                    "finish_reason": None,
                }
            ]
        },
        {"choices": [{"delta": {"tool_calls": [{"index": index, "function": {"arguments": raw[:half]}}]}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": index, "function": {"arguments": raw[half:]}}]}}]},
    ]


def text_round(text: str) -> list[dict[str, Any]]:
    return [text_chunk(text), finish_chunk("stop")]


def tool_round(call_id: str, name: str, args: dict[str, Any], text: str = "") -> list[dict[str, Any]]:
    chunks = [text_chunk(text)] if text else []
    return [*chunks, *tool_call_chunks(call_id, name, args), finish_chunk("tool_calls")]


class ScriptedModel:
    """
    Language model replaying scripted rounds.

    Each call to ``stream`` consumes the next round; once the script runs out
    the last round repeats. A round may be an exception instance, raised when
    the round starts.
    """

    def __init__(
        self,
        rounds: list[Any] | None = None,
        model_id: str = "test-model",
        title: str | Exception = "Test title",
        delay_seconds: float = 0.0,
    ) -> None:
        self.model_id = model_id
        self.rounds = rounds or [text_round("Hello there!")]
        self.title = title
        self.delay_seconds = delay_seconds
        self.calls: list[dict[str, Any]] = []
        self.title_calls = 0

    async def stream(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None):
        index = min(len(self.calls), len(self.rounds) - 1)
        self.calls.append({"messages": list(messages), "tools": tools})
        round_ = self.rounds[index]
        if isinstance(round_, Exception):
            raise round_
        for chunk in round_:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            yield chunk

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        self.title_calls += 1
        if isinstance(self.title, Exception):
            raise self.title
        return self.title


class FailingModel(ScriptedModel):
    def __init__(self, message: str = "upstream unavailable") -> None:
        super().__init__(rounds=[LLMError(message)], title=LLMError(message))  # type: ignore[arg-type]


class FakeImageClient(ImageClient):
    def __init__(self, data: bytes = b"\x89PNG fake", error: Exception | None = None) -> None:
        super().__init__(None, {}, "test-key")  # type: ignore[arg-type]
        self.data = data
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> GeneratedImage:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return GeneratedImage(self.data, "image/png", "here is your image")


def failing_image_client() -> FakeImageClient:
    return FakeImageClient(error=BackendError("Image backend returned status 503", status_code=503))


class ProgressTool(Tool):
    """Emits two progress events before answering."""

    name = "reportProgress"
    description = "Report progress twice and echo the topic."

    class Args(ToolArgs):
        topic: str

    async def run(self, args: "ProgressTool.Args", ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("progress", f"starting {args.topic}")
        await asyncio.sleep(0)
        ctx.side_channel.write("progress", f"done {args.topic}")
        return ToolOk(message="Progress reported.", payload={"topic": args.topic})


class ExplodingTool(Tool):
    name = "explode"
    description = "Always raises."

    async def run(self, args: ToolArgs, ctx: ToolContext) -> ToolResult:
        raise RuntimeError("kaboom")


class SlowTool(Tool):
    name = "slowTool"
    description = "Sleeps before answering."

    class Args(ToolArgs):
        seconds: float = 0.05

    def __init__(self) -> None:
        self.completed = 0

    async def run(self, args: "SlowTool.Args", ctx: ToolContext) -> ToolResult:
        await asyncio.sleep(args.seconds)
        self.completed += 1
        if args.seconds < 0:
            return ToolErr(message="negative sleep")
        return ToolOk(message="Slept.")


def chat_body(
    chat_id: str = "conv-1",
    text: str = "Hello!",
    mode: str | None = "chat-model",
    message_id: str = "msg-user-1",
    history: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "id": chat_id,
        "messages": [*(history or []), {"id": message_id, "role": "user", "content": text}],
    }
    if mode is not None:
        body["selectedChatModel"] = mode
    return body
