"""
Event-driven LLM HTTP client that automatically updates when configuration changes.

Speaks the OpenAI-compatible chat-completions protocol. The model name is
chosen per call so one client serves every configured model mode.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any, cast

import httpx

from arush.config import Configuration

logger = logging.getLogger(__name__)

HTTP_OK = 200


class LLMError(Exception):
    """The upstream model failed or returned something unusable."""


class LLMClient:
    """
    LLM HTTP client bound to the active provider.

    Subscribes to configuration changes and replaces its HTTP client when the
    provider's base URL or API key changes. A replacement requested while
    streams are active is deferred until the last stream ends.
    """

    def __init__(self, configuration: Configuration) -> None:
        self.configuration: Configuration = configuration
        self._current_config: dict[str, Any] = {}
        self._current_api_key: str = ""
        self.client: httpx.AsyncClient | None = None
        self._active_streams: int = 0
        self._pending_config_change: tuple[dict[str, Any], str] | None = None
        self._config_lock: asyncio.Lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._apply_config(self.configuration.get_llm_config(), self.configuration.llm_api_key)
        self.configuration.subscribe_to_changes(self._on_config_change)

    def _on_config_change(self, new_config: dict[str, Any]) -> None:
        """Event handler for configuration changes."""
        task = asyncio.create_task(self._handle_config_change_async())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _handle_config_change_async(self) -> None:
        async with self._config_lock:
            try:
                provider_config = self.configuration.get_llm_config()
                api_key = self.configuration.llm_api_key
            except ValueError as e:
                logger.error("Ignoring invalid LLM configuration change: %s", e)
                return

            if provider_config == self._current_config and api_key == self._current_api_key:
                return

            if not self._requires_new_client(provider_config, api_key):
                logger.info("Applying LLM parameter changes without client replacement")
                self._current_config = provider_config
                return

            if self._active_streams > 0:
                logger.warning("Deferring LLM client replacement: %d active stream(s)", self._active_streams)
                self._pending_config_change = (provider_config, api_key)
                return

            await self._replace_client(provider_config, api_key)

    def _requires_new_client(self, new_config: dict[str, Any], new_api_key: str) -> bool:
        """Connection-level changes need a new HTTP client; sampling parameters do not."""
        if new_api_key != self._current_api_key:
            return True
        return any(new_config.get(key) != self._current_config.get(key) for key in ("base_url", "timeout"))

    async def _replace_client(self, provider_config: dict[str, Any], api_key: str) -> None:
        if self.client:
            logger.info("Replacing LLM HTTP client with new configuration")
            await self.client.aclose()
        self._apply_config(provider_config, api_key)

    def _apply_config(self, provider_config: dict[str, Any], api_key: str) -> None:
        self._current_config = provider_config
        self._current_api_key = api_key
        self.client = httpx.AsyncClient(
            base_url=provider_config["base_url"],
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=float(provider_config.get("timeout", 60.0)),
            http2=True,
            trust_env=False,
        )
        logger.info("LLM client initialized for %s", provider_config["base_url"])

    async def _check_pending_config_change(self) -> None:
        async with self._config_lock:
            if self._pending_config_change and self._active_streams == 0:
                logger.info("Applying deferred LLM configuration change")
                provider_config, api_key = self._pending_config_change
                self._pending_config_change = None
                await self._replace_client(provider_config, api_key)

    @property
    def config(self) -> dict[str, Any]:
        """Get current provider configuration (cached, no I/O)."""
        return self._current_config

    def _build_payload(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        """
        Build API payload by passing through all provider parameters.
        Connection settings are stripped; everything else is sent as-is.
        """
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if stream:
            payload["stream"] = True

        excluded_keys = {"base_url", "model", "timeout"}
        for key, value in self.config.items():
            if key not in excluded_keys and value is not None:
                payload[key] = value

        if tools:
            payload["tools"] = tools
        return payload

    async def complete(self, model: str, messages: list[dict[str, Any]]) -> str:
        """Single non-streaming completion; returns the assistant text."""
        if not self.client:
            raise LLMError("LLM client not initialized")

        try:
            start_time = time.monotonic()
            response = await self.client.post("/chat/completions", json=self._build_payload(model, messages))
            response.raise_for_status()
            result = response.json()
            logger.debug("← LLM: completion in %.2fms", (time.monotonic() - start_time) * 1000)
        except httpx.HTTPError as e:
            logger.error("HTTP error: %s", e)
            raise LLMError(f"HTTP error: {e!s}") from e
        except json.JSONDecodeError as e:
            raise LLMError(f"Invalid JSON response: {e}") from e

        choices = result.get("choices")
        if not choices:
            raise LLMError("No choices in API response")
        try:
            return cast(str, choices[0]["message"].get("content") or "")
        except (KeyError, AttributeError) as e:
            raise LLMError(f"Unexpected response format: {e!s}") from e

    async def stream_chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Stream raw chat-completion chunk dicts from the server-sent event stream."""
        if not self.client:
            raise LLMError("LLM client not initialized")

        self._active_streams += 1
        try:
            async with self.client.stream(
                "POST",
                "/chat/completions",
                json=self._build_payload(model, messages, tools, stream=True),
                headers={"Accept": "text/event-stream", "Accept-Encoding": "identity"},
            ) as response:
                if response.status_code != HTTP_OK:
                    error_text = await response.aread()
                    raise LLMError(f"Streaming API error {response.status_code}: {error_text[:500]!r}")

                chunk_count = 0
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[6:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk: dict[str, Any] = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise LLMError(f"Invalid JSON in stream chunk: {e}") from e

                    if "error" in chunk:
                        raise LLMError(f"Upstream error: {chunk['error']}")
                    if "choices" in chunk:
                        chunk_count += 1
                        yield chunk

                if chunk_count == 0:
                    raise LLMError("No streaming chunks received from API")

        except httpx.HTTPError as e:
            logger.error("HTTP error during streaming: %s (%s)", e, type(e).__name__)
            raise LLMError(f"HTTP error: {e!s}") from e
        finally:
            self._active_streams -= 1
            if self._active_streams == 0 and self._pending_config_change:
                task = asyncio.create_task(self._check_pending_config_change())
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)

    async def close(self) -> None:
        """Close the HTTP client and unsubscribe from config changes."""
        self.configuration.unsubscribe_from_changes(self._on_config_change)
        if self.client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
