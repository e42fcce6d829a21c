"""
Main application entry point - HTTP interface with graceful shutdown handling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any

from arush.config import Configuration
from arush.http_server import run_http_server

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Module groups configurable under ``logging.modules``
MODULE_LOGGER_MAP: dict[str, dict[str, Any]] = {
    "chat": {
        "loggers": ["arush.chat", "arush.http_server"],
        "default_level": "INFO",
        "features": ["llm_replies", "system_prompt"],
    },
    "tools": {
        "loggers": ["arush.tools", "arush.chat.tool_executor", "arush.chat.logging_utils", "arush.content"],
        "default_level": "INFO",
        "features": ["tool_arguments", "tool_results"],
    },
    "history": {
        "loggers": ["arush.history"],
        "default_level": "INFO",
        "features": [],
    },
    "clients": {
        "loggers": ["arush.clients", "httpx"],
        "default_level": "WARNING",
        "features": [],
    },
}


def configure_logging(logging_config: dict[str, Any]) -> None:
    """
    Hierarchical logger configuration with feature control.

    Levels are set on parent loggers so child modules inherit them. Feature
    flags are stored on the logging module for ``should_log_feature``.
    """
    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(LEVEL_MAP.get(global_level, logging.WARNING))

    module_features: dict[str, dict[str, bool]] = {}
    for module_name, module_config in logging_config.get("modules", {}).items():
        if not isinstance(module_config, dict):
            continue

        known = MODULE_LOGGER_MAP.get(module_name, {})
        module_level = module_config.get("level", known.get("default_level", global_level))
        for logger_name in known.get("loggers", []):
            logging.getLogger(logger_name).setLevel(LEVEL_MAP.get(module_level, logging.WARNING))

        module_features[module_name] = dict(module_config.get("enable_features", {}))

    logging._module_features = module_features  # type: ignore[attr-defined]


def _on_logging_config_change(new_config: dict[str, Any]) -> None:
    """Reconfigure logging when the runtime configuration file changes."""
    try:
        logging_config = new_config.get("logging", {})
        if logging_config:
            configure_logging(logging_config)
            logging.info("Logging configuration updated")
    except Exception as e:
        logging.error("Failed to update logging configuration: %s", e)


async def main() -> None:
    """Main entry point - HTTP interface with graceful shutdown handling."""
    config = Configuration()

    logging_config = config.get_logging_config()
    logging.basicConfig(
        level=logging.INFO,
        format=logging_config.get("format", "%(asctime)s - %(levelname)s - %(message)s"),
    )
    configure_logging(logging_config)
    config.subscribe_to_changes(_on_logging_config_change)

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    server_task = asyncio.create_task(run_http_server(config))
    shutdown_task = asyncio.create_task(shutdown_event.wait())
    try:
        done, pending = await asyncio.wait([server_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if server_task in done and server_task.exception() is not None:
            raise server_task.exception()  # type: ignore[misc]
    except Exception as e:
        logging.error("Application error: %s", e)
        raise
    finally:
        logging.info("Application shutdown complete")


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    cli_main()
