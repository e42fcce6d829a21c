from pathlib import Path
from typing import Any

import pytest
import yaml
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from arush.auth import SessionVerifier
from arush.chat.chat_orchestrator import ChatOrchestrator
from arush.chat.providers import ModelProvider
from arush.config import Configuration
from arush.history import InMemoryRepo
from arush.http_server import create_app
from arush.tools import ToolRegistry
from fakes import ProgressTool, ScriptedModel

TEST_SECRET = "test-secret-for-session-tokens-0123456789"


def make_configuration(tmp_path: Path, **service_overrides: Any) -> Configuration:
    """Configuration over the packaged defaults with test-friendly overrides."""
    overrides = {
        "chat": {
            "service": {"smoothing": {"enabled": True, "delay_ms": 0}, **service_overrides},
            "storage": {"type": "memory"},
        },
        "tools": {
            "blob_storage": {"public_dir": str(tmp_path / "public"), "public_base_url": "http://media.test"},
            "content": {"db_path": str(tmp_path / "content.db")},
        },
    }
    with open(tmp_path / "runtime_config.yaml", "w") as f:
        yaml.safe_dump(overrides, f)
    return Configuration(config_dir=str(tmp_path))


@pytest.fixture
def configuration(tmp_path: Path) -> Configuration:
    return make_configuration(tmp_path)


@pytest.fixture
def verifier() -> SessionVerifier:
    return SessionVerifier(TEST_SECRET, {"cookie_name": "session-token"})


@pytest.fixture
def auth_headers(verifier: SessionVerifier):
    def _headers(user_id: str = "user-1") -> dict[str, str]:
        return {"Authorization": f"Bearer {verifier.create_session_token(user_id)}"}

    return _headers


@pytest.fixture
def orchestrator_factory(tmp_path: Path):
    def _factory(*, model: ScriptedModel | None = None, tools: list | None = None, **service_overrides: Any):
        configuration = make_configuration(tmp_path, **service_overrides)
        model = model or ScriptedModel()
        repo = InMemoryRepo()
        orchestrator = ChatOrchestrator(
            ChatOrchestrator.ChatOrchestratorConfig(
                repo=repo,
                provider=ModelProvider.from_config(configuration, lambda _model_id: model),
                registry=ToolRegistry(tools if tools is not None else [ProgressTool()]),
                configuration=configuration,
            )
        )
        return orchestrator, model, repo

    return _factory


@pytest.fixture
def app_factory(tmp_path: Path, verifier: SessionVerifier):
    def _factory(
        *,
        model: ScriptedModel | None = None,
        tools: list | None = None,
        repository: InMemoryRepo | None = None,
        **service_overrides: Any,
    ):
        configuration = make_configuration(tmp_path, **service_overrides)
        model = model or ScriptedModel()
        repo = repository if repository is not None else InMemoryRepo()
        app = create_app(
            configuration,
            repository=repo,
            model_factory=lambda _model_id: model,
            tool_registry=ToolRegistry(tools if tools is not None else [ProgressTool()]),
            verifier=verifier,
        )
        return app, model, repo

    return _factory


@pytest.fixture
async def client(app_factory):
    app, model, repo = app_factory()
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.model = model  # type: ignore[attr-defined]
            http_client.repo = repo  # type: ignore[attr-defined]
            yield http_client
