"""
Retrieval tools backed by public web APIs.

Non-2xx responses and transport errors are failures; an empty search result
set is a success with zero items.
"""

from __future__ import annotations

import logging
from html.parser import HTMLParser
from typing import Annotated, Any
from urllib.parse import urljoin

import httpx
from pydantic import AnyHttpUrl, Field, field_validator

from arush.clients import BackendError, SearchClient

from .base import EmptyArgs, Tool, ToolArgs, ToolContext, ToolErr, ToolOk, ToolResult

logger = logging.getLogger(__name__)


# ==============================================================================
# WEATHER
# ==============================================================================


class GetWeather(Tool):
    name = "getWeather"
    description = "Get the current weather at a location."
    failure_message = "Failed to fetch the weather"

    class Args(ToolArgs):
        latitude: float = Field(ge=-90, le=90)
        longitude: float = Field(ge=-180, le=180)

    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any]):
        self.http = http
        self.base_url = config.get("base_url", "https://api.open-meteo.com/v1").rstrip("/")

    async def run(self, args: GetWeather.Args, ctx: ToolContext) -> ToolResult:
        response = await self.http.get(
            f"{self.base_url}/forecast",
            params={
                "latitude": args.latitude,
                "longitude": args.longitude,
                "current": "temperature_2m",
                "hourly": "temperature_2m",
                "daily": "sunrise,sunset",
                "timezone": "auto",
            },
        )
        if response.is_error:
            return ToolErr(
                message=f"Weather service returned status {response.status_code}",
                error_details=response.text[:500],
            )
        return ToolOk(message="Weather retrieved.", payload={"weather": response.json()})


# ==============================================================================
# WEB SEARCH
# ==============================================================================


class WebSearch(Tool):
    name = "webSearch"
    description = (
        "Performs a web search for a given query and returns a structured list of results and a summary. "
        "Use this to find current information or general knowledge from the internet."
    )
    failure_message = "Web search failed"

    class Args(ToolArgs):
        query: str = Field(min_length=1, description="The search query or topic to look up on the internet.")
        num_results: int = Field(
            default=5,
            ge=1,
            le=10,
            alias="numResults",
            description="The desired number of search results to return (between 1 and 10, defaults to 5).",
        )

    def __init__(self, search_client: SearchClient):
        self.search_client = search_client

    async def run(self, args: WebSearch.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("web_search_status", f'Searching the web for "{args.query}"...')
        try:
            response = await self.search_client.search(args.query, max_results=args.num_results)
        except BackendError as e:
            ctx.side_channel.write("web_search_status", f"Search failed: {e}")
            return ToolErr(message=f"Web search failed: {e}", error_details=e.detail or str(e))

        results = [
            {"title": item.get("title", ""), "snippet": item.get("content", ""), "url": item.get("url", "")}
            for item in response.get("results", [])[: args.num_results]
        ]
        ctx.side_channel.write("web_search_status", f"Found {len(results)} result(s).")
        return ToolOk(
            message=f"Found {len(results)} result(s) for '{args.query}'.",
            payload={"results": results, "summary": response.get("answer") or ""},
        )


# ==============================================================================
# FETCH URL
# ==============================================================================


class PageExtractor(HTMLParser):
    """Collects title, meta description, links and visible text from an HTML page."""

    SKIP_TAGS = {"script", "style", "noscript", "template", "svg"}

    def __init__(self, base_url: str):
        super().__init__(convert_charrefs=True)
        self.base_url = base_url
        self.title = ""
        self.description = ""
        self.links: list[dict[str, str]] = []
        self._text: list[str] = []
        self._skip_depth = 0
        self._in_title = False
        self._link: dict[str, str] | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attributes = {k: v or "" for k, v in attrs}
        if tag == "title":
            self._in_title = True
        elif tag == "meta" and attributes.get("name", "").lower() == "description":
            self.description = attributes.get("content", "").strip()
        elif tag == "a" and attributes.get("href"):
            self._link = {"href": urljoin(self.base_url, attributes["href"]), "text": ""}
        if tag in self.SKIP_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag == "title":
            self._in_title = False
        elif tag == "a" and self._link is not None:
            self._link["text"] = " ".join(self._link["text"].split())
            self.links.append(self._link)
            self._link = None
        if tag in self.SKIP_TAGS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self.title += data
            return
        if self._skip_depth:
            return
        if self._link is not None:
            self._link["text"] += data
        if data.strip():
            self._text.append(data.strip())

    @property
    def text(self) -> str:
        return " ".join(self._text)


class FetchUrl(Tool):
    name = "fetchUrl"
    description = (
        "Fetches a web page and extracts its content, including title, meta description, all links, raw HTML, "
        "and visible text. Useful for retrieving and analyzing the contents of any public URL."
    )
    failure_message = "Failed to fetch the page"

    class Args(ToolArgs):
        url: AnyHttpUrl = Field(description="The URL to fetch and extract content from.")
        headers: dict[str, str] | None = Field(default=None, description="Optional HTTP headers.")
        user_agent: str | None = Field(default=None, alias="userAgent", description="Optional User-Agent.")
        timeout_ms: int | None = Field(
            default=None,
            ge=1000,
            le=60000,
            alias="timeoutMs",
            description="Optional timeout for the request in milliseconds (default 15000).",
        )

    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any]):
        self.http = http
        self.default_timeout_ms = int(config.get("default_timeout_ms", 15000))
        self.user_agent = config.get("user_agent", "Mozilla/5.0 (compatible; ArushFetcher/1.0)")
        self.max_chars = int(config.get("max_content_chars", 50000))

    async def run(self, args: FetchUrl.Args, ctx: ToolContext) -> ToolResult:
        url = str(args.url)
        headers = {"User-Agent": args.user_agent or self.user_agent, **(args.headers or {})}
        timeout = (args.timeout_ms or self.default_timeout_ms) / 1000

        ctx.side_channel.write("fetch_url_status", f"Fetching {url}...")
        try:
            response = await self.http.get(url, headers=headers, timeout=timeout, follow_redirects=True)
        except httpx.TimeoutException:
            return ToolErr(message=f"Timed out fetching {url}", error_details=f"timeout after {timeout:.1f}s")
        except httpx.RequestError as e:
            return ToolErr(message=f"Failed to fetch {url}", error_details=str(e))

        if response.is_error:
            ctx.side_channel.write("fetch_url_status", f"Request failed with status {response.status_code}")
            return ToolErr(
                message=f"Fetching {url} returned status {response.status_code}",
                error_details={"status": response.status_code},
            )

        html = response.text
        extractor = PageExtractor(str(response.url))
        extractor.feed(html)
        extractor.close()

        ctx.side_channel.write("fetch_url_status", f"Extracted {len(extractor.links)} link(s).")
        return ToolOk(
            message=f"Fetched {url}.",
            payload={
                "url": str(response.url),
                "status": response.status_code,
                "title": " ".join(extractor.title.split()),
                "description": extractor.description,
                "links": extractor.links,
                "rawHtml": html[: self.max_chars],
                "rawText": extractor.text[: self.max_chars],
            },
        )


# ==============================================================================
# CRYPTO PRICES
# ==============================================================================


class GenerateCryptoPrice(Tool):
    name = "generateCryptoPrice"
    description = "Fetches the latest cryptocurrency prices. Returns a map of symbol to current price."
    failure_message = "Failed to fetch cryptocurrency prices"
    Args = EmptyArgs

    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any], api_key: str | None):
        self.http = http
        self.url = config.get("url", "https://one-api.ir/DigitalCurrency/")
        self.api_key = api_key

    async def run(self, args: EmptyArgs, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("crypto_price_status", "Fetching cryptocurrency prices...")
        if not self.api_key:
            error = "Crypto price API key is not set in environment variables."
            ctx.side_channel.write("crypto_price_error", error)
            return ToolErr(message=error, error_details="missing_api_key")

        response = await self.http.get(self.url, params={"token": self.api_key})
        if response.is_error:
            error = f"API request failed with status {response.status_code}"
            ctx.side_channel.write("crypto_price_error", error)
            return ToolErr(message=error, error_details=response.text[:500])

        entries = [
            item
            for item in response.json().get("result") or []
            if isinstance(item, dict)
            and isinstance(item.get("symbol"), str)
            and isinstance(item.get("current_price"), int | float)
            and isinstance(item.get("last_updated"), str)
        ]
        if not entries:
            error = "No cryptocurrency data received"
            ctx.side_channel.write("crypto_price_error", error)
            return ToolErr(message=error, error_details="empty result")

        rates = {item["symbol"].upper(): item["current_price"] for item in entries if item["current_price"]}
        ctx.side_channel.write("crypto_price_result", {"rates": rates})
        return ToolOk(message=f"Fetched {len(rates)} cryptocurrency prices.", payload={"rates": rates, "raw": entries})


# ==============================================================================
# CURRENCY RATES
# ==============================================================================


class GenerateCurrencyPrice(Tool):
    name = "generateCurrencyPrice"
    description = (
        "Fetches the latest currency conversion rates from ExchangeRate-API. "
        "Returns rates from a base currency to all or selected target currencies."
    )
    failure_message = "Failed to fetch currency rates"

    class Args(ToolArgs):
        base: str = Field(
            default="USD",
            pattern=r"^[A-Za-z]{3}$",
            description="The base currency code (ISO 4217, e.g., USD, EUR, GBP).",
        )
        symbols: list[Annotated[str, Field(pattern=r"^[A-Za-z]{3}$")]] | None = Field(
            default=None, description="Optional list of target currency codes to filter the results."
        )

        @field_validator("base")
        @classmethod
        def _upper_base(cls, value: str) -> str:
            return value.upper()

        @field_validator("symbols")
        @classmethod
        def _upper_symbols(cls, value: list[str] | None) -> list[str] | None:
            return [code.upper() for code in value] if value else None

    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any], api_key: str | None):
        self.http = http
        self.base_url = config.get("base_url", "https://v6.exchangerate-api.com/v6").rstrip("/")
        self.api_key = api_key

    def _fail(self, ctx: ToolContext, error: str, details: Any) -> ToolErr:
        ctx.side_channel.write("currency_price_error", error)
        return ToolErr(message=error, error_details=details)

    async def run(self, args: GenerateCurrencyPrice.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("currency_price_status", f"Fetching currency prices for base: {args.base}...")
        if not self.api_key:
            return self._fail(ctx, "ExchangeRate-API key is not set in environment variables.", "missing_api_key")

        response = await self.http.get(f"{self.base_url}/{self.api_key}/latest/{args.base}")
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error or data.get("result") != "success":
            error_type = data.get("error-type") or f"status {response.status_code}"
            return self._fail(ctx, f"ExchangeRate-API request failed: {error_type}", error_type)

        rates = data.get("conversion_rates") or {}
        if args.symbols:
            rates = {code: rate for code, rate in rates.items() if code in args.symbols}
        if not rates:
            return self._fail(ctx, f"No conversion rates returned for {args.base}", "empty result")

        result = {
            "base": data.get("base_code", args.base),
            "rates": rates,
            "time_last_update_utc": data.get("time_last_update_utc", ""),
            "time_next_update_utc": data.get("time_next_update_utc", ""),
        }
        ctx.side_channel.write("currency_price_result", result)
        return ToolOk(message=f"Fetched {len(rates)} conversion rates for {result['base']}.", payload=result)
