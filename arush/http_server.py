"""
HTTP Server

Thin communication layer between the site frontend and the chat orchestrator.
It resolves the caller's session, maps request-level errors to plain-text
responses and streams turn output. All business logic lives in
``ChatOrchestrator``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from functools import partial
from typing import Any

import httpx
import uvicorn
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from arush.auth import Session, SessionVerifier
from arush.chat.chat_orchestrator import ChatOrchestrator
from arush.chat.errors import ChatError
from arush.chat.models import ChatRequest, VisibilityUpdate
from arush.chat.providers import ChatModel, LanguageModel, ModelProvider
from arush.chat.stream_protocol import STREAM_MEDIA_TYPE
from arush.clients import ImageClient, LLMClient, SearchClient, SpeechClient, VideoClient
from arush.config import Configuration
from arush.content import ContentStore
from arush.history import ChatRepository, create_repository
from arush.tools import BlobStore, ToolRegistry, ToolServices, build_registry

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred while processing your request!"

router = APIRouter()


def _session(request: Request) -> Session | None:
    verifier: SessionVerifier = request.app.state.verifier
    return verifier.from_headers(request.headers.get("authorization"), dict(request.cookies))


def _orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def _error_response(e: ChatError) -> PlainTextResponse:
    return PlainTextResponse(e.message, status_code=e.status_code)


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.post("/api/chat")
async def chat(request: Request):
    try:
        body = ChatRequest.model_validate(await request.json())
    except (ValidationError, ValueError) as e:
        logger.info("Rejected malformed chat request: %s", e)
        return PlainTextResponse("Invalid request body", status_code=400)

    orchestrator = _orchestrator(request)
    try:
        turn = await orchestrator.prepare_turn(_session(request), body)
    except ChatError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Chat request for %s failed before streaming: %s", body.id, e)
        return PlainTextResponse(GENERIC_ERROR, status_code=404)

    logger.info("→ Frontend: streaming turn for conversation %s (mode %s)", body.id, turn.spec.mode)
    return StreamingResponse(
        orchestrator.stream_turn(turn),
        media_type=STREAM_MEDIA_TYPE,
        headers={"x-vercel-ai-data-stream": "v1", "Cache-Control": "no-cache"},
    )


@router.delete("/api/chat")
async def delete_chat(request: Request, id: str | None = Query(default=None)):
    if not id:
        return PlainTextResponse("Not Found", status_code=404)
    try:
        await _orchestrator(request).delete_conversation(_session(request), id)
    except ChatError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Failed to delete conversation %s: %s", id, e)
        return PlainTextResponse(GENERIC_ERROR, status_code=500)
    return PlainTextResponse("Chat deleted", status_code=200)


@router.get("/api/history")
async def history(request: Request):
    try:
        conversations = await _orchestrator(request).list_conversations(_session(request))
    except ChatError as e:
        return _error_response(e)
    return [c.model_dump(mode="json") for c in conversations]


@router.get("/api/chat/{chat_id}/messages")
async def messages(request: Request, chat_id: str):
    try:
        turns = await _orchestrator(request).get_turns(_session(request), chat_id)
    except ChatError as e:
        return _error_response(e)
    return [
        {
            "id": t.id,
            "role": t.role.to_ui(),
            "parts": t.parts,
            "experimental_attachments": t.attachments,
            "createdAt": t.created_at.isoformat(),
        }
        for t in turns
    ]


@router.patch("/api/chat/{chat_id}/visibility")
async def visibility(request: Request, chat_id: str):
    try:
        update = VisibilityUpdate.model_validate(await request.json())
    except (ValidationError, ValueError):
        return PlainTextResponse("Invalid visibility", status_code=400)
    try:
        await _orchestrator(request).update_visibility(_session(request), chat_id, update.visibility)
    except ChatError as e:
        return _error_response(e)
    return PlainTextResponse("Visibility updated", status_code=200)


def create_app(
    configuration: Configuration,
    *,
    repository: ChatRepository | None = None,
    model_factory: Callable[[str], LanguageModel] | None = None,
    tool_registry: ToolRegistry | None = None,
    verifier: SessionVerifier | None = None,
    watch_config: bool = False,
) -> FastAPI:
    """
    Create and configure the FastAPI app.

    Services not passed in are built from ``configuration`` when the app
    starts: the chat repository, the LLM-backed model factory, and the tool
    registry with its shared HTTP client and backends.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        tools_conf = configuration.get_tools_config()
        http = httpx.AsyncClient(timeout=float(tools_conf.get("request_timeout_seconds", 30)))
        repo = repository if repository is not None else create_repository(configuration.get_storage_config())

        llm_client: LLMClient | None = None
        factory = model_factory
        if factory is None:
            llm_client = LLMClient(configuration)
            factory = partial(ChatModel, llm_client)

        registry = tool_registry if tool_registry is not None else build_registry(_tool_services(configuration, http))
        provider = ModelProvider.from_config(configuration, factory)
        app.state.orchestrator = ChatOrchestrator(
            ChatOrchestrator.ChatOrchestratorConfig(
                repo=repo,
                provider=provider,
                registry=registry,
                configuration=configuration,
            )
        )
        if watch_config:
            await configuration.start_watching()
        logger.info("HTTP server ready: %d modes, %d tools", len(provider.modes), len(registry))

        try:
            yield
        finally:
            logger.info("Shutting down HTTP server and cleaning up resources...")
            await app.state.orchestrator.cleanup()
            if watch_config:
                await configuration.stop_watching()
            if llm_client is not None:
                await llm_client.close()
            await http.aclose()
            await repo.close()

    app = FastAPI(title="Arush Chat Server", lifespan=lifespan)
    app.state.configuration = configuration
    app.state.verifier = verifier or SessionVerifier(configuration.jwt_secret, configuration.get_auth_config())

    http_conf = configuration.get_http_config()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=http_conf.get("cors_origins", ["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    # Generated media is served from the blob store's public directory
    blob_store = BlobStore.from_config(configuration.get_tools_config())
    os.makedirs(blob_store.public_dir, exist_ok=True)
    app.mount("/", StaticFiles(directory=blob_store.public_dir), name="public")
    return app


def _tool_services(configuration: Configuration, http: httpx.AsyncClient) -> ToolServices:
    conf = configuration.get_tools_config()

    def backend_conf(name: str) -> tuple[dict[str, Any], str | None]:
        section = conf.get(name, {})
        return section, configuration.get_secret(section.get("api_key_env"))

    image_conf, image_key = backend_conf("image")
    speech_conf, speech_key = backend_conf("speech")
    search_conf, search_key = backend_conf("search")
    video_conf, video_key = backend_conf("video")
    _, crypto_key = backend_conf("crypto")
    _, currency_key = backend_conf("currency")

    return ToolServices(
        http=http,
        tools_config=conf,
        blob_store=BlobStore.from_config(conf),
        content_store=ContentStore(conf.get("content", {}).get("db_path", "arush_content.db")),
        image_client=ImageClient(http, image_conf, image_key),
        speech_client=SpeechClient(http, speech_conf, speech_key),
        search_client=SearchClient(http, search_conf, search_key),
        video_client=VideoClient(http, video_conf, video_key),
        crypto_api_key=crypto_key,
        currency_api_key=currency_key,
    )


async def run_http_server(configuration: Configuration) -> None:
    """Serve the app with uvicorn until shutdown."""
    http_conf = configuration.get_http_config()
    host = http_conf.get("host", "0.0.0.0")
    port = int(http_conf.get("port", 8000))

    app = create_app(configuration, watch_config=True)
    logger.info("Starting HTTP server on %s:%d", host, port)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
    try:
        await server.serve()
    except Exception as e:
        logger.error("HTTP server error: %s", e)
        raise
