"""Configuration management for the assistant backend."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
import time
from collections.abc import Callable
from typing import Any, cast

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class Configuration:
    """Event-driven configuration manager with observer pattern.

    Defaults live in ``config.yaml``; operator overrides live in
    ``runtime_config.yaml`` next to it. Values missing from the runtime file
    fall back to the defaults.
    """

    def __init__(self, config_dir: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self._config_dir = config_dir or os.getenv("ARUSH_CONFIG_DIR") or os.path.dirname(__file__)
        self._default_config = self._load_yaml_config()
        self._runtime_config_path = os.path.join(self._config_dir, "runtime_config.yaml")
        self._runtime_config_mtime: float | None = None
        self._current_config: dict[str, Any] = {}

        self._config_change_callbacks: list[Callable[[dict[str, Any]], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

        self._initialize_runtime_config()
        self._reload_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load default configuration from YAML file."""
        config_path = os.path.join(self._config_dir, "config.yaml")
        if not os.path.exists(config_path):
            # Fall back to the packaged defaults when a custom dir has no base file
            config_path = os.path.join(os.path.dirname(__file__), "config.yaml")
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError("Configuration file must contain a dictionary")
            return cast(dict[str, Any], config)

    def _initialize_runtime_config(self) -> None:
        """Create runtime_config.yaml from defaults if it doesn't exist."""
        if os.path.exists(self._runtime_config_path):
            return

        initial_config = self._default_config.copy()
        initial_config["_runtime_config"] = {
            "last_modified": time.time(),
            "version": 1,
            "is_runtime_config": True,
            "default_config_path": "config.yaml",
            "created_from_defaults": True,
        }
        with open(self._runtime_config_path, "w") as file:
            yaml.safe_dump(initial_config, file, default_flow_style=False, indent=2)

    def _load_runtime_config(self) -> dict[str, Any]:
        """Load runtime configuration from YAML file."""
        try:
            with open(self._runtime_config_path) as file:
                config = yaml.safe_load(file)
        except (yaml.YAMLError, OSError):
            config = None

        if not isinstance(config, dict):
            # Corrupted or unreadable: recreate from defaults
            with contextlib.suppress(OSError):
                os.remove(self._runtime_config_path)
            self._initialize_runtime_config()
            return self._default_config.copy()
        return cast(dict[str, Any], config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def _reload_config(self) -> bool:
        """Reload configuration from runtime config if it has been modified.

        Returns:
            True if config was actually reloaded, False if no changes.
        """
        current_mtime = None
        if os.path.exists(self._runtime_config_path):
            current_mtime = os.path.getmtime(self._runtime_config_path)

        if current_mtime == self._runtime_config_mtime:
            return False

        old_config = self._current_config.copy()
        self._runtime_config_mtime = current_mtime
        runtime_config = self._load_runtime_config()

        overrides = {k: v for k, v in runtime_config.items() if not k.startswith("_runtime_config")}
        self._current_config = self._deep_merge(self._default_config, overrides)

        if old_config and self._current_config != old_config:
            self._notify_config_change()

        return True

    def _notify_config_change(self) -> None:
        """Notify all registered observers of configuration changes."""
        for callback in self._config_change_callbacks:
            try:
                callback(self._current_config.copy())
            except Exception as e:
                logger.error("Error in config change callback: %s", e)

    def subscribe_to_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to configuration change events."""
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Unsubscribe from configuration change events."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    async def start_watching(self) -> None:
        """Start the async file watching task for automatic config updates."""
        if self._watch_task is not None:
            return

        self._watch_task = asyncio.create_task(self._watch_config_file())
        logger.info("Started watching runtime configuration file for changes")

    async def stop_watching(self) -> None:
        """Stop the async file watching task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
            logger.info("Stopped watching runtime configuration file")

    async def _watch_config_file(self) -> None:
        """Async task that watches for config file changes."""
        while True:
            try:
                await asyncio.sleep(1)
                if self._reload_config():
                    logger.info("Runtime configuration file changed - config reloaded")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error watching config file: %s", e)
                await asyncio.sleep(5)

    def save_runtime_config(self, config: dict[str, Any]) -> None:
        """Save configuration to the runtime config file and reload it."""
        runtime_config = config.copy()
        runtime_config["_runtime_config"] = {
            "last_modified": time.time(),
            "is_runtime_config": True,
            "default_config_path": "config.yaml",
        }

        with open(self._runtime_config_path, "w") as file:
            yaml.safe_dump(runtime_config, file, default_flow_style=False, indent=2)

        # Force a reload even when the mtime resolution hides the change
        self._runtime_config_mtime = None
        self._reload_config()

    def reset_to_defaults(self) -> None:
        """Reset runtime_config.yaml to the defaults from config.yaml."""
        self.save_runtime_config(self._default_config.copy())

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    @property
    def llm_api_key(self) -> str:
        """Get the API key for the active LLM provider.

        Raises:
            ValueError: If the API key is not found in environment variables.
        """
        active_provider = self._current_config.get("llm", {}).get("active", "openai")

        provider_key_map = {
            "openai": "OPENAI_API_KEY",
            "groq": "GROQ_API_KEY",
            "openrouter": "OPENROUTER_API_KEY",
        }

        env_key = provider_key_map.get(active_provider)
        if not env_key:
            raise ValueError(f"Unknown provider '{active_provider}' - no API key mapping found")

        api_key = os.getenv(env_key)
        if not api_key:
            raise ValueError(f"API key '{env_key}' not found in environment variables for provider '{active_provider}'")

        return api_key

    @property
    def jwt_secret(self) -> str:
        """Secret used to verify session tokens."""
        secret = os.getenv("ARUSH_JWT_SECRET")
        if not secret:
            raise ValueError("Session secret 'ARUSH_JWT_SECRET' not found in environment variables")
        return secret

    def get_secret(self, env_key: str | None) -> str | None:
        """Optional secret for a tool backend; ``None`` disables the backend."""
        return os.getenv(env_key) if env_key else None

    # ------------------------------------------------------------------
    # Section getters
    # ------------------------------------------------------------------

    def get_llm_config(self) -> dict[str, Any]:
        """Get active LLM provider configuration."""
        llm_config = self._current_config.get("llm", {})
        active_provider = llm_config.get("active", "openai")
        providers = llm_config.get("providers", {})

        if active_provider not in providers:
            raise ValueError(f"Active provider '{active_provider}' not found in providers config")

        return providers[active_provider]

    def get_model_modes(self) -> dict[str, Any]:
        """Get model mode declarations (selector -> model, tools policy, reasoning tag)."""
        models = self._current_config.get("models", {})
        modes = models.get("modes", {})
        if not modes:
            raise ValueError("At least one model mode must be configured under 'models.modes'")

        for name, mode in modes.items():
            if not isinstance(mode, dict) or not mode.get("model"):
                raise ValueError(f"Model mode '{name}' must declare a 'model'")
            if mode.get("tools", "none") not in ("none", "all"):
                raise ValueError(f"Model mode '{name}' has invalid tools policy: {mode.get('tools')!r}")
        return modes

    def get_default_mode(self) -> str:
        """Get the mode used when a request does not name one."""
        return self._current_config.get("models", {}).get("default", "agent-model")

    def get_title_model(self) -> str:
        """Get the upstream model used for conversation titles."""
        return self._current_config.get("models", {}).get("title_model", "")

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration."""
        return self._current_config.get("chat", {}).get("service", {})

    def get_storage_config(self) -> dict[str, Any]:
        """Get chat storage configuration."""
        return self._current_config.get("chat", {}).get("storage", {})

    def get_http_config(self) -> dict[str, Any]:
        """Get HTTP server configuration."""
        return self._current_config.get("chat", {}).get("http", {})

    def get_auth_config(self) -> dict[str, Any]:
        """Get session verification configuration."""
        return self._current_config.get("auth", {})

    def get_tools_config(self) -> dict[str, Any]:
        """Get tool backend configuration."""
        return self._current_config.get("tools", {})

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration."""
        return self._current_config.get("logging", {})

    def get_max_tool_rounds(self) -> int:
        """Get the maximum number of model/tool round-trips within one turn.

        Returns:
            Maximum number of rounds (default: 5).
        """
        max_rounds = self.get_chat_service_config().get("max_tool_rounds", 5)

        if not isinstance(max_rounds, int) or isinstance(max_rounds, bool) or max_rounds < 1:
            raise ValueError("max_tool_rounds must be a positive integer")

        return max_rounds

    def get_turn_timeout(self) -> float:
        """Get the wall-clock cap for one turn in seconds (default: 60)."""
        timeout = self.get_chat_service_config().get("turn_timeout_seconds", 60)

        if not isinstance(timeout, int | float) or isinstance(timeout, bool) or timeout <= 0:
            raise ValueError("turn_timeout_seconds must be a positive number")

        return float(timeout)


def reset_runtime_config_cli() -> None:
    """Console script that resets runtime_config.yaml to defaults."""
    try:
        cfg = Configuration()
        cfg.reset_to_defaults()
        logger.info("runtime_config.yaml reset to defaults from config.yaml")
    except Exception as e:
        logger.error("Error resetting runtime configuration: %s", e)
        sys.exit(1)
