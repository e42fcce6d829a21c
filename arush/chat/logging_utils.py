"""
Chat Logging Utilities

Shared logging functionality with per-module feature control.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


def should_log_feature(module: str, feature: str) -> bool:
    """
    Check if a specific logging feature should be enabled.

    Feature flags are stored on the logging module by ``main`` when logging is
    configured, and refreshed when the runtime configuration changes.
    """
    module_features = getattr(logging, "_module_features", {}).get(module, {})
    return bool(module_features.get(feature, False))


def _truncate(text: str, length: int) -> str:
    return text[:length] + "..." if len(text) > length else text


def log_llm_reply(reply: dict[str, Any], context: str, chat_conf: dict[str, Any]) -> None:
    """
    LLM reply logging with feature control and configuration-based truncation.

    Args:
        reply: Accumulated assistant output: content, reasoning, tool_calls, model
        context: Descriptive context for the log entry
        chat_conf: Chat service configuration containing logging settings
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    truncate_length = chat_conf.get("logging", {}).get("llm_reply", 500)
    content = reply.get("content") or ""
    reasoning = reply.get("reasoning") or ""
    tool_calls = reply.get("tool_calls") or []

    log_parts = [f"LLM Reply ({context}):"]
    if reasoning:
        log_parts.append(f"Reasoning: {_truncate(reasoning, truncate_length)}")
    if content:
        log_parts.append(f"Content: {_truncate(content, truncate_length)}")
    if tool_calls:
        log_parts.append(f"Tool calls: {len(tool_calls)}")
        for i, call in enumerate(tool_calls):
            log_parts.append(f"  [{i}] {call.get('function', {}).get('name', 'unknown')}")
    log_parts.append(f"Model: {reply.get('model', 'unknown')}")

    logger.info(" | ".join(log_parts))


def log_tool_execution_start(tool_name: str, call_index: int = 0, total_calls: int = 1) -> None:
    if total_calls > 1:
        logger.info("→ Tool[%s]: executing tool call %d/%d", tool_name, call_index + 1, total_calls)
    else:
        logger.info("→ Tool[%s]: executing tool", tool_name)


def log_tool_execution_success(tool_name: str, message: str) -> None:
    logger.info("← Tool[%s]: success: %s", tool_name, message)


def log_tool_execution_error(tool_name: str, error_msg: str) -> None:
    logger.error("← Tool[%s]: failed with error: %s", tool_name, error_msg)


def log_tool_rejected(tool_name: str, reason: str) -> None:
    logger.warning("← Tool[%s]: rejected: %s", tool_name, reason)


def log_tool_args_error(tool_name: str, error: Exception) -> None:
    logger.error("Malformed JSON arguments for %s: %s", tool_name, error)


def log_tool_arguments(tool_name: str, arguments: dict[str, Any], context: str, truncate_length: int = 500) -> None:
    """Log the arguments a tool is called with, when the ``tool_arguments`` feature is on."""
    if not should_log_feature("tools", "tool_arguments"):
        return
    logger.info("→ Tool[%s]: arguments (%s): %s", tool_name, context, _truncate(str(arguments), truncate_length))


def log_tool_results(tool_name: str, results: Any, truncate_length: int = 200) -> None:
    if not should_log_feature("tools", "tool_results"):
        return
    logger.info("← Tool[%s]: results: %s", tool_name, _truncate(str(results), truncate_length))


def log_system_prompt(prompt: str, conversation_id: str) -> None:
    if not should_log_feature("chat", "system_prompt"):
        return
    logger.info("System prompt for conversation %s:\n%s", conversation_id, prompt)
