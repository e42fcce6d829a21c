"""
Generative media backends.

``ImageClient`` calls the Gemini ``generateContent`` REST endpoint and returns
the first inline image. ``SpeechClient`` calls an OpenAI-compatible
``/audio/speech`` endpoint and returns the encoded audio. ``VideoClient``
starts a Veo long-running operation, polls it until done and downloads the
generated files.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any

import httpx

from .errors import BackendError

logger = logging.getLogger(__name__)


class GeneratedImage:
    def __init__(self, data: bytes, mime_type: str, model_response: str = ""):
        self.data = data
        self.mime_type = mime_type
        self.model_response = model_response

    @property
    def extension(self) -> str:
        return {"image/jpeg": "jpg", "image/webp": "webp"}.get(self.mime_type, "png")


class ImageClient:
    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any], api_key: str | None):
        self.http = http
        self.base_url = config.get("base_url", "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
        self.model = config.get("model", "gemini-2.0-flash-preview-image-generation")
        self.api_key = api_key

    async def generate(self, prompt: str) -> GeneratedImage:
        if not self.api_key:
            raise BackendError("Image generation is not configured (missing API key)")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }
        logger.info("→ ImageBackend: generating with %s", self.model)
        try:
            response = await self.http.post(
                f"{self.base_url}/models/{self.model}:generateContent",
                params={"key": self.api_key},
                json=payload,
            )
        except httpx.RequestError as e:
            raise BackendError(f"Image backend request failed: {e}") from e

        if response.is_error:
            raise BackendError(
                f"Image backend returned status {response.status_code}",
                status_code=response.status_code,
                detail=response.text[:1000],
            )

        text_parts: list[str] = []
        for candidate in response.json().get("candidates", []):
            for part in candidate.get("content", {}).get("parts", []):
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    try:
                        data = base64.b64decode(inline["data"])
                    except (binascii.Error, ValueError) as e:
                        raise BackendError(f"Image backend returned undecodable data: {e}") from e
                    mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                    logger.info("← ImageBackend: received %d bytes (%s)", len(data), mime_type)
                    return GeneratedImage(data, mime_type, " ".join(text_parts))
                if part.get("text"):
                    text_parts.append(part["text"])

        raise BackendError("No image was generated", detail=" ".join(text_parts) or None)


class SpeechClient:
    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any], api_key: str | None):
        self.http = http
        self.base_url = config.get("base_url", "https://api.openai.com/v1").rstrip("/")
        self.model = config.get("model", "tts-1")
        self.voices: dict[str, str] = config.get("voices", {})
        self.api_key = api_key

    async def synthesize(self, text: str, voice: str) -> bytes:
        if not self.api_key:
            raise BackendError("Speech generation is not configured (missing API key)")

        logger.info("→ SpeechBackend: synthesizing %d chars with voice %s", len(text), voice)
        try:
            response = await self.http.post(
                f"{self.base_url}/audio/speech",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "input": text,
                    "voice": self.voices.get(voice, voice),
                    "response_format": "mp3",
                },
            )
        except httpx.RequestError as e:
            raise BackendError(f"Speech backend request failed: {e}") from e

        if response.is_error:
            raise BackendError(
                f"TTS API returned status {response.status_code}",
                status_code=response.status_code,
                detail=response.text[:1000],
            )
        if not response.content:
            raise BackendError("TTS API returned no audio")
        return response.content


class GeneratedVideo:
    def __init__(self, data: bytes, uri: str):
        self.data = data
        self.uri = uri


class VideoClient:
    def __init__(self, http: httpx.AsyncClient, config: dict[str, Any], api_key: str | None):
        self.http = http
        self.base_url = config.get("base_url", "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
        self.model = config.get("model", "veo-2.0-generate-001")
        self.poll_interval = float(config.get("poll_interval_seconds", 10))
        self.max_polls = int(config.get("max_polls", 36))
        self.api_key = api_key

    async def _get(self, url: str, what: str) -> httpx.Response:
        try:
            response = await self.http.get(url, params={"key": self.api_key}, follow_redirects=True)
        except httpx.RequestError as e:
            raise BackendError(f"Video backend request failed while {what}: {e}") from e
        if response.is_error:
            raise BackendError(
                f"Video backend returned status {response.status_code} while {what}",
                status_code=response.status_code,
                detail=response.text[:1000],
            )
        return response

    async def generate(self, prompt: str, parameters: dict[str, Any]) -> list[GeneratedVideo]:
        """Generate videos for ``prompt``; ``parameters`` are passed through to the model."""
        if not self.api_key:
            raise BackendError("Video generation is not configured (missing API key)")

        logger.info("→ VideoBackend: starting generation with %s", self.model)
        try:
            response = await self.http.post(
                f"{self.base_url}/models/{self.model}:predictLongRunning",
                params={"key": self.api_key},
                json={"instances": [{"prompt": prompt}], "parameters": parameters},
            )
        except httpx.RequestError as e:
            raise BackendError(f"Video backend request failed: {e}") from e
        if response.is_error:
            raise BackendError(
                f"Video backend returned status {response.status_code}",
                status_code=response.status_code,
                detail=response.text[:1000],
            )

        operation_name = response.json().get("name")
        if not operation_name:
            raise BackendError("No operation name received from the video backend")

        operation: dict[str, Any] = {}
        for _ in range(self.max_polls):
            operation = (await self._get(f"{self.base_url}/{operation_name}", "checking the operation")).json()
            if operation.get("done"):
                break
            await asyncio.sleep(self.poll_interval)
        else:
            raise BackendError(f"Video generation did not finish after {self.max_polls} checks")

        if operation.get("error"):
            raise BackendError("Video generation failed", detail=str(operation["error"].get("message", "")))

        result = operation.get("response") or {}
        samples = result.get("generatedVideos") or result.get("generateVideoResponse", {}).get("generatedSamples") or []
        uris = [sample.get("video", {}).get("uri") for sample in samples]
        if not uris or not all(uris):
            raise BackendError("No videos were generated")

        videos = []
        for uri in uris:
            download = await self._get(uri, "downloading the video")
            if not download.content:
                raise BackendError("Video backend returned an empty file")
            videos.append(GeneratedVideo(download.content, uri))
        logger.info("← VideoBackend: received %d video(s)", len(videos))
        return videos
