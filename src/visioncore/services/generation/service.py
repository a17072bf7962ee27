"""Generation service - executes one job against the remote API.

Renders the prompt, picks the model for the job kind, and runs the remote call
through the retry wrapper. Video jobs are submitted (with retry) and then
polled to completion (without retry). Also hosts the light text helpers that
feed batches: product descriptions, listing themes and influencer scenes.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from visioncore.core.config import Settings
from visioncore.models.generation import (
    GenerationJob,
    InfluencerScene,
    JobKind,
    SourceAsset,
    ThemeSuggestion,
    VideoParams,
)
from visioncore.services.exceptions import ValidationError
from visioncore.services.generation.cancellation import CancellationToken
from visioncore.services.generation.gemini_client import (
    GeminiClient,
    extract_image,
    to_data_url,
)
from visioncore.services.generation.prompts import parse_params, render_prompt
from visioncore.services.generation.retry import with_retry
from visioncore.services.generation.video_poller import VideoPoller, signed_url
from visioncore.services.key_resolver import is_heavy_model

logger = structlog.get_logger(__name__)

DEFAULT_DESCRIPTION = "Professional product shoot."

_themes_adapter = TypeAdapter(list[ThemeSuggestion])
_scenes_adapter = TypeAdapter(list[InfluencerScene])


@dataclass(frozen=True)
class Artifact:
    """Output of one generation call.

    Video URLs are the bare file URI; the credential is only appended when a
    URL is handed straight back to an HTTP caller.
    """

    url: str  # data URL for images, file URI for videos
    media_type: str  # "image" or "video"
    data: Optional[bytes] = None


class GenerationService:
    """Runs single generation jobs with retry, polling and model selection."""

    def __init__(
        self,
        settings: Settings,
        client_factory: Callable[[str], GeminiClient] = GeminiClient,
        poller: Optional[VideoPoller] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        download_videos: bool = False,
    ):
        """Initialize service.

        Args:
            settings: Application settings (models, retry bound, poll limits)
            client_factory: Builds a client for a resolved API key
            poller: Video poller (built from settings when omitted)
            sleep: Sleep coroutine for retry backoff
            rng: Jitter source for retry backoff
            download_videos: Fetch finished video bytes into the artifact
        """
        self.settings = settings
        self.client_factory = client_factory
        self.poller = poller or VideoPoller(
            poll_interval=settings.video_poll_interval_seconds,
            max_wait=settings.video_max_wait_seconds,
        )
        self.sleep = sleep
        self.rng = rng
        self.download_videos = download_videos

    def model_for(self, job: GenerationJob) -> str:
        """Model id for a job: explicit override, else the kind's default."""
        if job.model:
            return job.model
        if job.kind == JobKind.VIDEO:
            return self.settings.video_model
        if job.kind == JobKind.FASHION:
            return self.settings.pro_image_model
        return self.settings.image_model

    async def _retry(self, operation, operation_name: str):
        return await with_retry(
            operation,
            max_attempts=self.settings.retry_max_attempts,
            sleep=self.sleep,
            rng=self.rng,
            operation_name=operation_name,
        )

    async def generate(
        self,
        job: GenerationJob,
        api_key: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Artifact:
        """Generate the artifact for one job.

        Raises:
            ValidationError: Job has no source image
            AuthError, QuotaError, GenerationError: Remote failures (classified)
            PollTimeoutError, JobCancelledError: Video polling stopped early
        """
        if not job.sources:
            raise ValidationError("At least one source image is required")

        prompt = render_prompt(job.params, job.refinement)
        model = self.model_for(job)
        client = self.client_factory(api_key)

        params = job.params
        if isinstance(params, VideoParams):
            operation = await self.submit_video_job(client, params, job.sources[0], prompt, model)
            uri = await self.poller.poll_until_done(client, operation, cancel_token)
            data = await self.poller.download(uri, api_key) if self.download_videos else None
            return Artifact(url=uri, media_type="video", data=data)

        image = await self._retry(
            lambda: client.generate_image(model, prompt, job.inputs, params.aspect_ratio),
            operation_name=f"{job.kind.value}.image",
        )
        return Artifact(url=to_data_url(image), media_type="image", data=image)

    async def submit_video_job(
        self,
        client: GeminiClient,
        params: VideoParams,
        source: Optional[SourceAsset],
        prompt: str,
        model: str,
    ):
        """Submit a video job (with retry) and return the operation handle."""
        return await self._retry(
            lambda: self.poller.submit(
                client,
                model=model,
                prompt=prompt,
                source=source,
                aspect_ratio=params.aspect_ratio,
                resolution=params.resolution,
            ),
            operation_name="video.submit",
        )

    async def run_request(
        self,
        kind: str,
        payload: dict | None,
        sources: Sequence[SourceAsset],
        model: str,
        api_key: str,
        reference: Optional[SourceAsset] = None,
    ) -> dict[str, str]:
        """Execute one proxy request and shape the response body.

        Returns:
            {"imageUrl": ...}, {"videoUrl": ...} or {"text": ...}; a video URL
            carries the caller's key so the browser can play it directly
        """
        params = parse_params(kind, payload)
        heavy = is_heavy_model(model)
        if heavy and not sources:
            raise ValidationError("A source image is required for image or video generation")

        job = GenerationJob(
            params=params,
            sources=tuple(sources),
            reference=reference,
            refinement=(payload or {}).get("refinement"),
            model=model,
        )

        if "veo" in model.lower():
            if not isinstance(params, VideoParams):
                raise ValidationError(f"Model {model} only supports the video kind")
            artifact = await self.generate(job, api_key)
            return {"videoUrl": signed_url(artifact.url, api_key)}

        prompt = render_prompt(job.params, job.refinement)
        client = self.client_factory(api_key)
        aspect_ratio = params.aspect_ratio if heavy else None
        response = await self._retry(
            lambda: client.generate_content(model, prompt, job.inputs, aspect_ratio=aspect_ratio),
            operation_name=f"{params.kind.value}.content",
        )

        image = extract_image(response)
        logger.info(
            "generation.request.completed",
            kind=params.kind.value,
            model=model,
            output="image" if image is not None else "text",
        )
        if image is not None:
            return {"imageUrl": to_data_url(image)}
        return {"text": response.text or ""}

    async def analyze(
        self,
        prompt: str,
        api_key: str,
        system_instruction: Optional[str] = None,
        sources: Sequence[SourceAsset] = (),
    ) -> str:
        """Run a text analysis request on the text model (light operation)."""
        client = self.client_factory(api_key)
        text = await self._retry(
            lambda: client.generate_text(
                self.settings.text_model, prompt, sources, system_instruction=system_instruction
            ),
            operation_name="analysis.text",
        )
        return text or "No analysis generated."

    async def describe_product(self, source: SourceAsset, api_key: str) -> str:
        """Short e-commerce description of the product in ``source``."""
        client = self.client_factory(api_key)
        text = await self._retry(
            lambda: client.generate_text(
                self.settings.text_model,
                "Analyze this product in detail. Provide a professional e-commerce "
                "description emphasizing materials, shape, and premium qualities. "
                "Max 50 words.",
                (source,),
            ),
            operation_name="analysis.describe",
        )
        return (text or "").strip() or DEFAULT_DESCRIPTION

    async def suggest_themes(
        self,
        source: SourceAsset,
        api_key: str,
        description: Optional[str] = None,
        category: str = "Auto",
        count: int = 4,
    ) -> list[ThemeSuggestion]:
        """Ask the text model for listing photography themes for one product.

        Returns an empty list when the model's answer cannot be parsed.
        """
        prompt = (
            f"Based on this product ({description or DEFAULT_DESCRIPTION}) in category "
            f"{category}, suggest {count} diverse professional photography themes "
            "(e.g., 'Minimalist Studio', 'Industrial Loft', 'Nature Sunlight'). "
            "Return as a JSON array of {title, prompt}. Output ONLY JSON."
        )
        text = await self._json_request(prompt, (source,), api_key, list[ThemeSuggestion])
        return self._parse_suggestions(_themes_adapter, text, "themes")

    async def suggest_scenes(
        self,
        sources: Sequence[SourceAsset],
        api_key: str,
        description: str,
        gender: str = "Female",
        count: int = 4,
    ) -> list[InfluencerScene]:
        """Ask the text model for influencer UGC scenes for a product.

        Only the first image is sent. Returns an empty list when the model's
        answer cannot be parsed.
        """
        if not sources:
            raise ValidationError("At least one source image is required")
        prompt = (
            f"Suggest {count} diverse Indian influencer video scenes for this product: "
            f"{description}. Targeting {gender} influencer. Return as JSON array of "
            "{title, description, persona, setting}. Output ONLY JSON."
        )
        text = await self._json_request(prompt, tuple(sources[:1]), api_key, list[InfluencerScene])
        return self._parse_suggestions(_scenes_adapter, text, "scenes")

    async def _json_request(self, prompt, sources, api_key: str, schema) -> str:
        client = self.client_factory(api_key)
        return await self._retry(
            lambda: client.generate_text(
                self.settings.text_model, prompt, sources, response_schema=schema
            ),
            operation_name="analysis.suggest",
        )

    @staticmethod
    def _parse_suggestions(adapter: TypeAdapter, text: str, what: str) -> list:
        try:
            suggestions = adapter.validate_json(text or "[]")
        except PydanticValidationError as e:
            logger.warning(
                "generation.suggestions.unparseable",
                what=what,
                error_count=e.error_count(),
            )
            return []
        logger.info("generation.suggestions.received", what=what, count=len(suggestions))
        return suggestions
