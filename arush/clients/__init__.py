"""Clients package containing the LLM client and the tool backend clients."""

from __future__ import annotations

from .errors import BackendError
from .llm_client import LLMClient, LLMError
from .media_client import GeneratedImage, GeneratedVideo, ImageClient, SpeechClient, VideoClient
from .search_client import SearchClient

__all__ = [
    "BackendError",
    "GeneratedImage",
    "GeneratedVideo",
    "ImageClient",
    "LLMClient",
    "LLMError",
    "SearchClient",
    "SpeechClient",
    "VideoClient",
]
