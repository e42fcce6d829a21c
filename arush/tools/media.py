"""
Generative media tools.

Each generates a binary through its backend, stores it in the public blob
store and returns the public URL. Backend errors, empty output and storage
errors are failures.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import Field

from arush.clients import BackendError, ImageClient, SpeechClient, VideoClient

from .base import Tool, ToolArgs, ToolContext, ToolErr, ToolOk, ToolResult
from .storage import BlobStorageError, BlobStore

logger = logging.getLogger(__name__)

Voice = Literal["en-US-JennyNeural", "en-US-JasonNeural", "en-US-AriaNeural"]


class GenerateImage(Tool):
    name = "generateImage"
    description = (
        "Generate an image based on a text prompt using an AI model. "
        "The image is saved to public storage and its URL is returned."
    )
    failure_message = "An unexpected error occurred during image generation"

    class Args(ToolArgs):
        prompt: str = Field(min_length=1, description="The text prompt describing the image to generate.")
        filename_prefix: str = Field(
            default="ai-generated",
            alias="filenamePrefix",
            pattern=r"^[A-Za-z0-9_-]{1,40}$",
            description="Optional: prefix for the generated image filename. Defaults to 'ai-generated'.",
        )

    def __init__(self, image_client: ImageClient, blob_store: BlobStore):
        self.image_client = image_client
        self.blob_store = blob_store

    async def run(self, args: GenerateImage.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("image_generation_status", "Starting image generation...")
        try:
            image = await self.image_client.generate(args.prompt)
            filename = BlobStore.unique_name(args.filename_prefix, image.extension)
            url = await self.blob_store.put("images", filename, image.data)
        except (BackendError, BlobStorageError) as e:
            ctx.side_channel.write("image_generation_error", str(e))
            details = e.detail if isinstance(e, BackendError) and e.detail else str(e)
            return ToolErr(message=str(e), error_details=details)

        ctx.side_channel.write("image_generation_status", "Image generated successfully!")
        ctx.side_channel.write("image_generated", {"imageUrl": url})
        return ToolOk(
            message="Image generated successfully.",
            payload={"image": {"url": url, "modelResponse": image.model_response}},
        )


class GenerateSpeech(Tool):
    name = "generateSpeech"
    description = (
        "Convert text into speech audio using a Text-to-Speech model. "
        "Generates an MP3 audio file and returns its public URL."
    )
    failure_message = "Failed to generate speech"

    class Args(ToolArgs):
        text: str = Field(min_length=1, description="The text to convert to speech.")
        voice: Voice = Field(
            default="en-US-AriaNeural",
            description="Optional: The name of the voice to use. Must be one of the supported voices.",
        )

    def __init__(self, speech_client: SpeechClient, blob_store: BlobStore):
        self.speech_client = speech_client
        self.blob_store = blob_store

    async def run(self, args: GenerateSpeech.Args, ctx: ToolContext) -> ToolResult:
        if not args.text.strip():
            ctx.side_channel.write("speech_status", "Error: No text provided for speech generation.")
            return ToolErr(message="No text provided for speech generation.", error_details="Input text is empty.")

        preview = args.text[:50] + ("..." if len(args.text) > 50 else "")
        ctx.side_channel.write("speech_status", f'Starting speech generation for text: "{preview}"')
        try:
            audio = await self.speech_client.synthesize(args.text, args.voice)
            ctx.side_channel.write("speech_status", "Audio data received. Saving file...")
            url = await self.blob_store.put("speech", BlobStore.unique_name("speech", "mp3"), audio)
        except BackendError as e:
            ctx.side_channel.write("speech_status", f"TTS API Error: {e}")
            return ToolErr(message=f"Failed to generate speech: {e}", error_details=e.detail or str(e))
        except BlobStorageError as e:
            ctx.side_channel.write("speech_status", f"Failed to save audio: {e}")
            return ToolErr(message="Failed to save the generated audio.", error_details=str(e))

        ctx.side_channel.write("speech_status", "File saved successfully.")
        ctx.side_channel.write("speech_generated", {"audioUrl": url})
        return ToolOk(message="Speech audio generated and saved.", payload={"audioUrl": url})


class GenerateVideo(Tool):
    name = "generateVideo"
    description = "Generate a video using Google's Veo model. Provide a descriptive prompt and configuration."
    failure_message = "Failed to generate video"

    class Args(ToolArgs):
        prompt: str = Field(min_length=1, max_length=1000, description="The text prompt describing the video.")
        aspect_ratio: Literal["16:9", "9:16"] = Field(
            default="16:9", alias="aspectRatio", description="Aspect ratio of the video."
        )
        person_generation: Literal["dont_allow", "allow_adult"] = Field(
            default="dont_allow", alias="personGeneration", description="Whether to allow people in the video."
        )
        number_of_videos: int = Field(
            default=1, ge=1, le=2, alias="numberOfVideos", description="Number of videos to generate (1 or 2)."
        )
        duration_seconds: int | None = Field(
            default=None, ge=5, le=8, alias="durationSeconds", description="Length of each video in seconds (5-8)."
        )
        negative_prompt: str | None = Field(
            default=None,
            max_length=1000,
            alias="negativePrompt",
            description="Describe what you want to discourage in the video.",
        )

        def parameters(self) -> dict[str, Any]:
            return self.model_dump(by_alias=True, exclude={"prompt"}, exclude_none=True)

    def __init__(self, video_client: VideoClient, blob_store: BlobStore):
        self.video_client = video_client
        self.blob_store = blob_store

    async def run(self, args: GenerateVideo.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("video_generation_status", "Starting video generation with Veo...")
        ctx.side_channel.write("video_generation_status", "This may take 2-3 minutes to complete...")
        try:
            generated = await self.video_client.generate(args.prompt, args.parameters())
            videos = []
            for index, video in enumerate(generated):
                url = await self.blob_store.put("videos", BlobStore.unique_name("video", "mp4"), video.data)
                videos.append({"url": url, "uri": video.uri})
                ctx.side_channel.write("video_generated", {"index": index, "url": url})
        except (BackendError, BlobStorageError) as e:
            ctx.side_channel.write("video_generation_error", str(e))
            details = e.detail if isinstance(e, BackendError) and e.detail else str(e)
            return ToolErr(message=f"Failed to generate video: {e}", error_details=details)

        ctx.side_channel.write("video_generation_complete", f"Successfully generated {len(videos)} video(s)")
        return ToolOk(message=f"Generated {len(videos)} video(s) successfully.", payload={"videos": videos})
