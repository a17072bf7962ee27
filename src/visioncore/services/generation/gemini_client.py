"""Gemini / Veo API client for image, text and video generation.

Thin async wrapper over the google-genai SDK. Errors from the SDK are left
untouched here; callers classify them through the retry wrapper.
"""

import base64
from typing import Any, Optional, Sequence

from google import genai
from google.genai import types

from visioncore.models.generation import SourceAsset
from visioncore.services.exceptions import GenerationError


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    """Encode image bytes as an inline data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def extract_image(response: Any) -> Optional[bytes]:
    """Return the first inline image payload of a generate_content response, if any."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        inline_data = getattr(part, "inline_data", None)
        if inline_data is not None and inline_data.data:
            return inline_data.data
    return None


def _image_parts(sources: Sequence[SourceAsset]) -> list[Any]:
    return [types.Part.from_bytes(data=s.data, mime_type=s.mime_type) for s in sources]


class GeminiClient:
    """Generation client bound to a single API key."""

    def __init__(self, api_key: str, client: Optional[genai.Client] = None):
        """Initialize client.

        Args:
            api_key: Resolved API key for this call
            client: Pre-built SDK client (tests); created from api_key when omitted
        """
        self.api_key = api_key
        self.client = client or genai.Client(api_key=api_key)

    async def generate_content(
        self,
        model: str,
        prompt: str,
        sources: Sequence[SourceAsset] = (),
        aspect_ratio: Optional[str] = None,
        system_instruction: Optional[str] = None,
        response_schema: Any = None,
    ) -> Any:
        """Send images + prompt to a generate_content model.

        Source images precede the prompt text, in the given order. With a
        ``response_schema`` the model is asked for JSON matching it.
        """
        config_kwargs: dict[str, Any] = {}
        if aspect_ratio:
            config_kwargs["image_config"] = types.ImageConfig(aspect_ratio=aspect_ratio)
        if system_instruction:
            config_kwargs["system_instruction"] = system_instruction
        if response_schema is not None:
            config_kwargs["response_mime_type"] = "application/json"
            config_kwargs["response_schema"] = response_schema

        contents: list[Any] = _image_parts(sources)
        contents.append(prompt)

        return await self.client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs) if config_kwargs else None,
        )

    async def generate_image(
        self,
        model: str,
        prompt: str,
        sources: Sequence[SourceAsset],
        aspect_ratio: str,
    ) -> bytes:
        """Generate one image.

        Raises:
            GenerationError: If the response carries no image
        """
        response = await self.generate_content(model, prompt, sources, aspect_ratio=aspect_ratio)
        image = extract_image(response)
        if image is None:
            raise GenerationError("Image generation failed: response contained no image")
        return image

    async def generate_text(
        self,
        model: str,
        prompt: str,
        sources: Sequence[SourceAsset] = (),
        system_instruction: Optional[str] = None,
        response_schema: Any = None,
    ) -> str:
        """Run a text (analysis) request and return the response text."""
        response = await self.generate_content(
            model,
            prompt,
            sources,
            system_instruction=system_instruction,
            response_schema=response_schema,
        )
        return response.text or ""

    async def submit_video(
        self,
        model: str,
        prompt: str,
        source: Optional[SourceAsset],
        aspect_ratio: str,
        resolution: str = "720p",
    ) -> Any:
        """Start a long-running video generation and return its operation handle."""
        image = None
        if source is not None:
            image = types.Image(image_bytes=source.data, mime_type=source.mime_type)

        return await self.client.aio.models.generate_videos(
            model=model,
            prompt=prompt,
            image=image,
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                resolution=resolution,
                aspect_ratio=aspect_ratio,
            ),
        )

    async def get_operation(self, operation: Any) -> Any:
        """Refresh a long-running operation's status."""
        return await self.client.aio.operations.get(operation)
