from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import BackendError

logger = logging.getLogger(__name__)


class SearchClient:
    """Tavily web search."""

    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any], api_key: str | None):
        self.http = http
        self.base_url = config.get("base_url", "https://api.tavily.com").rstrip("/")
        self.api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str, max_results: int = 5, search_depth: str = "basic") -> dict[str, Any]:
        if not self.enabled:
            raise BackendError("Web search is not configured (missing API key)")

        payload: dict[str, Any] = {
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
            "include_answer": True,
            # Tavily expects the key in the JSON payload; the header is kept for compatibility.
            "api_key": self.api_key,
        }
        try:
            resp = await self.http.post(
                f"{self.base_url}/search",
                json=payload,
                headers={"Content-Type": "application/json", "X-API-Key": self.api_key or ""},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"Search backend returned status {e.response.status_code}",
                status_code=e.response.status_code,
                detail=e.response.text[:1000],
            ) from e
        except httpx.RequestError as e:
            raise BackendError(f"Search request failed: {e}") from e

        return resp.json()
