"""
Model provider.

Maps model-mode selectors to concrete models. Each mode names an upstream
model, a tool policy and an optional reasoning tag whose contents are split
out of the visible answer.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel

from arush.tools.registry import ToolPolicy

if TYPE_CHECKING:
    from arush.clients import LLMClient
    from arush.config import Configuration

logger = logging.getLogger(__name__)


class LanguageModel(Protocol):
    """Uniform interface over one underlying model."""

    model_id: str

    def stream(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield OpenAI-style chat-completion chunk dicts."""
        ...

    async def complete(self, messages: list[dict[str, Any]]) -> str: ...


class ChatModel:
    """A language model served through the shared ``LLMClient``."""

    def __init__(self, client: LLMClient, model_id: str):
        self.client = client
        self.model_id = model_id

    def stream(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        return self.client.stream_chat(self.model_id, messages, tools)

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        return await self.client.complete(self.model_id, messages)


class ModelSpec(BaseModel):
    mode: str
    model: str
    tools: ToolPolicy = "none"
    reasoning_tag: str | None = "think"


class ModelProvider:
    def __init__(
        self,
        modes: dict[str, ModelSpec],
        default_mode: str,
        title_model: str,
        model_factory: Callable[[str], LanguageModel],
    ):
        if default_mode not in modes:
            raise ValueError(f"Default model mode '{default_mode}' is not configured")
        self.modes = modes
        self.default_mode = default_mode
        self.title_model_id = title_model or modes[default_mode].model
        self._model_factory = model_factory
        self._models: dict[str, LanguageModel] = {}

    @classmethod
    def from_config(cls, configuration: Configuration, model_factory: Callable[[str], LanguageModel]) -> ModelProvider:
        modes = {
            name: ModelSpec(
                mode=name,
                model=conf["model"],
                tools=conf.get("tools", "none"),
                reasoning_tag=conf.get("reasoning_tag"),
            )
            for name, conf in configuration.get_model_modes().items()
        }
        return cls(modes, configuration.get_default_mode(), configuration.get_title_model(), model_factory)

    def resolve(self, selector: str | None) -> ModelSpec | None:
        """The mode named by ``selector``; the default mode when none is given."""
        return self.modes.get(selector or self.default_mode)

    def language_model(self, model_id: str) -> LanguageModel:
        model = self._models.get(model_id)
        if model is None:
            model = self._models[model_id] = self._model_factory(model_id)
        return model

    def title_model(self) -> LanguageModel:
        return self.language_model(self.title_model_id)
