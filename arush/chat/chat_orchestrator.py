"""
Chat Orchestrator

Main coordination layer for a chat turn:
1. Authorizes the caller and resolves the model mode
2. Creates the conversation on first contact and persists the user turn
3. Delegates streaming to the StreamingHandler under a turn deadline
4. Persists the assistant turn the client reconstructed

Keeps the main class simple, just coordinating between modules.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from arush.auth import Session
from arush.config import Configuration
from arush.history import Conversation, Turn, TurnRole
from arush.history.models import Visibility
from arush.tools.base import Tool
from arush.tools.registry import ToolRegistry

from .errors import BadRequest, NotFound, Unauthorized
from .logging_utils import log_system_prompt
from .models import ChatRequest, UIMessage, to_model_messages
from .prompts import TITLE_PROMPT, system_prompt
from .providers import ModelProvider, ModelSpec
from .reducer import ChatStreamReducer
from .side_channel import SideChannel
from .stream_protocol import StreamFragment
from .streaming_handler import StreamingHandler
from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 80
DEFAULT_TITLE = "New chat"
TIMEOUT_MESSAGE = "The response took too long and was stopped."


def assistant_turn_id(chat_id: str, user_message_id: str) -> str:
    """Stable id for the assistant turn answering a given user message."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"arush:{chat_id}:{user_message_id}:assistant"))


def fallback_title(text: str) -> str:
    title = " ".join(text.split())
    if len(title) > TITLE_MAX_LENGTH:
        title = title[: TITLE_MAX_LENGTH - 3].rstrip() + "..."
    return title or DEFAULT_TITLE


class PreparedTurn(BaseModel):
    """Everything validated and persisted before the first byte is streamed."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session: Session
    conversation: Conversation
    spec: ModelSpec
    user_message: UIMessage
    history: list[UIMessage]
    tools: Mapping[str, Tool]
    assistant_id: str


class ChatOrchestrator:
    """
    Conversation orchestrator - coordinates between specialized handlers.

    ``prepare_turn`` does all validation and the user-turn write, raising
    ``ChatError`` subclasses the HTTP layer maps to status codes. Once
    ``stream_turn`` starts, failures are reported in-band only.
    """

    class ChatOrchestratorConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        repo: Any  # ChatRepository protocol - use Any to avoid pydantic issues
        provider: ModelProvider
        registry: ToolRegistry
        configuration: Configuration

    def __init__(self, service_config: ChatOrchestratorConfig):
        self.repo = service_config.repo
        self.provider = service_config.provider
        self.registry = service_config.registry
        self.configuration = service_config.configuration
        self.chat_conf = self.configuration.get_chat_service_config()

        self.tool_executor = ToolExecutor(self.chat_conf)
        self.streaming_handler = StreamingHandler(self.tool_executor, self.chat_conf)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    # ---------- turns ----------

    async def prepare_turn(self, session: Session | None, request: ChatRequest) -> PreparedTurn:
        if session is None:
            raise Unauthorized()

        user_message = request.most_recent_user_message()
        if user_message is None:
            raise BadRequest("No user message found")

        spec = self.provider.resolve(request.selected_chat_model)
        if spec is None:
            raise BadRequest(f"Unknown chat model: {request.selected_chat_model}")

        conversation = await self.repo.get_conversation(request.id)
        if conversation is None:
            title = await self.generate_title(user_message)
            conversation = await self.repo.save_conversation(
                Conversation(id=request.id, user_id=session.user_id, title=title)
            )
            logger.info("→ Repository: created conversation %s", conversation.id)
        if conversation.user_id != session.user_id:
            logger.warning("User %s attempted to write to conversation %s", session.user_id, conversation.id)
            raise Unauthorized()

        # The user turn is durable before any model output is produced
        added = await self.repo.append_turns(
            [
                Turn(
                    id=user_message.id,
                    chat_id=conversation.id,
                    role=TurnRole.USER,
                    parts=user_message.content_parts(),
                    attachments=user_message.attachments,
                )
            ]
        )
        if not added:
            logger.info("User turn %s already stored; treating request as a retry", user_message.id)

        history_limit = int(self.chat_conf.get("history_limit", 50))
        return PreparedTurn(
            session=session,
            conversation=conversation,
            spec=spec,
            user_message=user_message,
            history=request.messages[-history_limit:],
            tools=self.registry.subset(spec.tools),
            assistant_id=assistant_turn_id(conversation.id, user_message.id),
        )

    async def stream_turn(self, turn: PreparedTurn) -> AsyncGenerator[str, None]:
        """
        Yield encoded protocol lines for a prepared turn.

        The whole turn runs under the configured deadline. When the client goes
        away mid-stream, whatever was produced so far is persisted in the
        background.
        """
        reducer = ChatStreamReducer()
        side_channel = SideChannel()
        prompt = system_prompt(turn.tools.keys())
        log_system_prompt(prompt, turn.conversation.id)
        messages = [
            {"role": "system", "content": prompt},
            *to_model_messages(turn.history),
        ]
        fragments = self.streaming_handler.stream(
            model=self.provider.language_model(turn.spec.model),
            spec=turn.spec,
            messages=messages,
            tools=turn.tools,
            session=turn.session,
            side_channel=side_channel,
            message_id=turn.assistant_id,
            max_rounds=self.configuration.get_max_tool_rounds(),
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.configuration.get_turn_timeout()
        completed = False
        try:
            while True:
                try:
                    async with asyncio.timeout_at(deadline):
                        fragment = await anext(fragments)
                except StopAsyncIteration:
                    break
                except TimeoutError:
                    logger.warning("Turn for conversation %s exceeded its deadline", turn.conversation.id)
                    for fragment in (StreamFragment.error(TIMEOUT_MESSAGE), StreamFragment.finish("error")):
                        reducer.apply(fragment)
                        yield fragment.encode()
                    break
                reducer.apply(fragment)
                yield fragment.encode()
            completed = True
        finally:
            side_channel.close()
            if completed:
                await self._persist_assistant_turn(turn, reducer)
            else:
                logger.info("Client disconnected from conversation %s; saving partial turn", turn.conversation.id)
                self._spawn(fragments.aclose())
                self._spawn(self._persist_assistant_turn(turn, reducer))

    async def _persist_assistant_turn(self, turn: PreparedTurn, reducer: ChatStreamReducer) -> None:
        parts = reducer.to_parts()
        if not any(p["type"] != "step-start" for p in parts):
            logger.debug("Nothing to persist for assistant turn %s", turn.assistant_id)
            return
        try:
            await self.repo.append_turns(
                [
                    Turn(
                        id=turn.assistant_id,
                        chat_id=turn.conversation.id,
                        role=TurnRole.ASSISTANT,
                        parts=parts,
                    )
                ]
            )
            logger.info("← Repository: saved assistant turn %s", turn.assistant_id)
        except Exception as e:
            # The client already has the content; a failed write only loses history
            logger.error("Failed to save assistant turn for conversation %s: %s", turn.conversation.id, e)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def generate_title(self, message: UIMessage) -> str:
        """A short title from the first user message; falls back to the message text."""
        text = message.text()
        try:
            title = await self.provider.title_model().complete(
                [{"role": "system", "content": TITLE_PROMPT}, {"role": "user", "content": text}]
            )
        except Exception as e:
            logger.warning("Title generation failed, using message text: %s", e)
            return fallback_title(text)
        title = title.strip().strip("\"'").strip()
        return title[:TITLE_MAX_LENGTH] if title else fallback_title(text)

    # ---------- conversations ----------

    async def _owned_conversation(self, session: Session | None, chat_id: str) -> Conversation:
        if session is None:
            raise Unauthorized()
        conversation = await self.repo.get_conversation(chat_id)
        if conversation is None:
            raise NotFound("Chat not found")
        if conversation.user_id != session.user_id:
            raise Unauthorized()
        return conversation

    async def delete_conversation(self, session: Session | None, chat_id: str) -> None:
        await self._owned_conversation(session, chat_id)
        await self.repo.delete_conversation(chat_id)
        logger.info("← Repository: deleted conversation %s", chat_id)

    async def list_conversations(self, session: Session | None) -> list[Conversation]:
        if session is None:
            raise Unauthorized()
        return await self.repo.list_conversations(session.user_id)

    async def get_turns(self, session: Session | None, chat_id: str) -> list[Turn]:
        """Turns of a conversation, readable by its owner or by anyone when public."""
        conversation = await self.repo.get_conversation(chat_id)
        if conversation is None:
            raise NotFound("Chat not found")
        if conversation.visibility != "public":
            if session is None or session.user_id != conversation.user_id:
                raise Unauthorized()
        return await self.repo.get_turns(chat_id)

    async def update_visibility(self, session: Session | None, chat_id: str, visibility: Visibility) -> None:
        await self._owned_conversation(session, chat_id)
        await self.repo.update_visibility(chat_id, visibility)

    async def cleanup(self) -> None:
        """Wait for background persistence to settle."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
