import logging

import pytest
import yaml

from arush.auth import SessionVerifier
from arush.chat.logging_utils import should_log_feature
from arush.config import Configuration
from arush.main import configure_logging

SECRET = "config-test-secret-with-enough-bytes"


def write_runtime(tmp_path, overrides: dict) -> None:
    with open(tmp_path / "runtime_config.yaml", "w") as f:
        yaml.safe_dump(overrides, f)


def test_defaults_are_copied_to_runtime_file(tmp_path):
    config = Configuration(config_dir=str(tmp_path))

    runtime = yaml.safe_load((tmp_path / "runtime_config.yaml").read_text())
    assert runtime["_runtime_config"]["created_from_defaults"] is True
    assert config.get_max_tool_rounds() == 5
    assert config.get_turn_timeout() == 60.0
    assert config.get_default_mode() == "agent-model"
    assert set(config.get_model_modes()) == {"agent-model", "chat-model", "chat-model-reasoning"}


def test_runtime_overrides_are_deep_merged(tmp_path):
    write_runtime(tmp_path, {"chat": {"service": {"max_tool_rounds": 3}}, "models": {"default": "chat-model"}})

    config = Configuration(config_dir=str(tmp_path))

    assert config.get_max_tool_rounds() == 3
    # Siblings of the overridden key keep their defaults
    assert config.get_turn_timeout() == 60.0
    assert config.get_storage_config()["type"] == "sqlite"
    assert config.get_default_mode() == "chat-model"


def test_config_dir_from_environment(tmp_path, monkeypatch):
    write_runtime(tmp_path, {"chat": {"service": {"turn_timeout_seconds": 5}}})
    monkeypatch.setenv("ARUSH_CONFIG_DIR", str(tmp_path))
    assert Configuration().get_turn_timeout() == 5.0


@pytest.mark.parametrize("value", [0, -1, "five", True])
def test_invalid_round_cap_is_rejected(tmp_path, value):
    write_runtime(tmp_path, {"chat": {"service": {"max_tool_rounds": value}}})
    with pytest.raises(ValueError, match="max_tool_rounds"):
        Configuration(config_dir=str(tmp_path)).get_max_tool_rounds()


@pytest.mark.parametrize("value", [0, -2.5, "slow"])
def test_invalid_turn_timeout_is_rejected(tmp_path, value):
    write_runtime(tmp_path, {"chat": {"service": {"turn_timeout_seconds": value}}})
    with pytest.raises(ValueError, match="turn_timeout_seconds"):
        Configuration(config_dir=str(tmp_path)).get_turn_timeout()


def test_model_mode_validation(tmp_path):
    write_runtime(tmp_path, {"models": {"modes": {"broken": {"tools": "some"}}}})
    with pytest.raises(ValueError, match="must declare a 'model'"):
        Configuration(config_dir=str(tmp_path)).get_model_modes()

    write_runtime(tmp_path, {"models": {"modes": {"odd": {"model": "m", "tools": "some"}}}})
    with pytest.raises(ValueError, match="invalid tools policy"):
        Configuration(config_dir=str(tmp_path)).get_model_modes()


def test_corrupted_runtime_file_falls_back_to_defaults(tmp_path):
    (tmp_path / "runtime_config.yaml").write_text("- just\n- a list\n")
    config = Configuration(config_dir=str(tmp_path))
    assert config.get_max_tool_rounds() == 5
    assert isinstance(yaml.safe_load((tmp_path / "runtime_config.yaml").read_text()), dict)


def test_save_notifies_subscribers_and_reset_restores(tmp_path):
    config = Configuration(config_dir=str(tmp_path))
    seen: list[dict] = []
    config.subscribe_to_changes(seen.append)

    config.save_runtime_config({"chat": {"service": {"max_tool_rounds": 2}}})
    assert config.get_max_tool_rounds() == 2
    assert seen and seen[-1]["chat"]["service"]["max_tool_rounds"] == 2

    config.reset_to_defaults()
    assert config.get_max_tool_rounds() == 5

    config.unsubscribe_from_changes(seen.append)
    count = len(seen)
    config.save_runtime_config({"chat": {"service": {"max_tool_rounds": 4}}})
    assert len(seen) == count


@pytest.mark.asyncio
async def test_watcher_starts_once_and_stops(tmp_path):
    config = Configuration(config_dir=str(tmp_path))
    await config.start_watching()
    task = config._watch_task
    await config.start_watching()
    assert config._watch_task is task

    await config.stop_watching()
    assert config._watch_task is None
    assert task.done()


def test_reload_picks_up_file_edits(tmp_path):
    config = Configuration(config_dir=str(tmp_path))
    write_runtime(tmp_path, {"chat": {"service": {"max_tool_rounds": 7}}})
    # Coarse mtime resolution can hide the edit
    config._runtime_config_mtime = -1.0

    assert config._reload_config() is True
    assert config.get_max_tool_rounds() == 7
    assert config._reload_config() is False


def test_secrets_come_from_environment(tmp_path, monkeypatch):
    config = Configuration(config_dir=str(tmp_path))

    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    with pytest.raises(ValueError, match="OPENROUTER_API_KEY"):
        _ = config.llm_api_key
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test")
    assert config.llm_api_key == "sk-or-test"

    monkeypatch.delenv("ARUSH_JWT_SECRET", raising=False)
    with pytest.raises(ValueError):
        _ = config.jwt_secret

    monkeypatch.setenv("TAVILY_API_KEY", "tvly")
    assert config.get_secret("TAVILY_API_KEY") == "tvly"
    assert config.get_secret(None) is None


def test_logging_features_follow_configuration(monkeypatch):
    monkeypatch.setattr(logging, "_module_features", {}, raising=False)
    chat_logger = logging.getLogger("arush.chat")
    for logger in (logging.getLogger(), chat_logger):
        monkeypatch.setattr(logger, "level", logger.level)

    configure_logging(
        {
            "level": "INFO",
            "modules": {
                "chat": {"level": "DEBUG", "enable_features": {"llm_replies": True}},
                "tools": {"enable_features": {"tool_arguments": False}},
            },
        }
    )

    assert chat_logger.level == logging.DEBUG
    assert should_log_feature("chat", "llm_replies") is True
    assert should_log_feature("tools", "tool_arguments") is False
    assert should_log_feature("history", "anything") is False


def test_session_verification():
    verifier = SessionVerifier(SECRET, {"token_ttl_minutes": 5})
    token = verifier.create_session_token("user-9", email="u9@example.org")

    session = verifier.from_headers(f"Bearer {token}", {})
    assert session is not None
    assert session.user_id == "user-9"
    assert session.email == "u9@example.org"

    assert verifier.from_headers(None, {"session-token": token}).user_id == "user-9"
    assert verifier.from_headers("Basic abc", {}) is None
    assert verifier.verify(None) is None
    assert SessionVerifier("another-secret-of-sufficient-length!", {}).verify(token) is None

    expired = SessionVerifier(SECRET, {"token_ttl_minutes": -1}).create_session_token("user-9")
    assert verifier.verify(expired) is None
