"""
Tool Registry

The closed catalog of tools, built once at startup. The registry is read-only
after construction and shared by every turn; a model mode selects either no
tools or the full catalog.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict

from arush.chat.models import ToolDefinition
from arush.clients import ImageClient, SearchClient, SpeechClient, VideoClient
from arush.content import ContentStore

from .base import Tool
from .charts import GenerateChart, GenerateMarkmap
from .content import (
    CreateNews,
    CreateNewsTranslation,
    CreateProgram,
    CreateProgramTranslation,
    GetDocument,
    GetLatestNews,
    GetNewsBySlug,
    GetProgramBySlug,
    SearchNewsByTitle,
    SearchProgramByTitle,
    UpdateNews,
    UpdateProgram,
)
from .media import GenerateImage, GenerateSpeech, GenerateVideo
from .storage import BlobStore
from .web import FetchUrl, GenerateCryptoPrice, GenerateCurrencyPrice, GetWeather, WebSearch

logger = logging.getLogger(__name__)

ToolPolicy = Literal["none", "all"]


class ToolServices(BaseModel):
    """Process-wide services the tools are constructed with."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    http: httpx.AsyncClient
    tools_config: dict[str, Any]
    blob_store: BlobStore
    content_store: ContentStore
    image_client: ImageClient
    speech_client: SpeechClient
    search_client: SearchClient
    video_client: VideoClient
    crypto_api_key: str | None = None
    currency_api_key: str | None = None


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool]):
        catalog: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in catalog:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            catalog[tool.name] = tool
        self._tools: Mapping[str, Tool] = MappingProxyType(catalog)
        self._empty: Mapping[str, Tool] = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def subset(self, policy: ToolPolicy) -> Mapping[str, Tool]:
        """The tools active for a mode's policy."""
        if policy == "none":
            return self._empty
        if policy == "all":
            return self._tools
        raise ValueError(f"Unknown tool policy: {policy!r}")

    @staticmethod
    def definitions(tools: Mapping[str, Tool]) -> list[ToolDefinition]:
        return [tool.definition() for tool in tools.values()]


def build_registry(services: ToolServices) -> ToolRegistry:
    """Instantiate the full catalog against the shared services."""
    conf = services.tools_config
    store = services.content_store
    registry = ToolRegistry(
        [
            GetWeather(services.http, conf.get("weather", {})),
            WebSearch(services.search_client),
            FetchUrl(services.http, conf.get("fetch_url", {})),
            GenerateCryptoPrice(services.http, conf.get("crypto", {}), services.crypto_api_key),
            GenerateCurrencyPrice(services.http, conf.get("currency", {}), services.currency_api_key),
            GenerateImage(services.image_client, services.blob_store),
            GenerateSpeech(services.speech_client, services.blob_store),
            GenerateVideo(services.video_client, services.blob_store),
            GenerateChart(),
            GenerateMarkmap(),
            GetLatestNews(store),
            GetNewsBySlug(store),
            SearchNewsByTitle(store),
            CreateNews(store, services.image_client, services.blob_store),
            UpdateNews(store),
            CreateNewsTranslation(store),
            GetProgramBySlug(store),
            SearchProgramByTitle(store),
            CreateProgram(store, services.image_client, services.blob_store),
            UpdateProgram(store),
            CreateProgramTranslation(store),
            GetDocument(store),
        ]
    )
    logger.info("Tool registry ready with %d tools", len(registry))
    return registry
