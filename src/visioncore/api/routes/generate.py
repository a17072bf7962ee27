"""Generation proxy API endpoints.

This module implements the endpoints the web client calls for remote work:
- POST /api/generate/{job_type} - Render the kind's prompt and run it on the
  requested model (image, video or text output)
- POST /api/analyze - Free-form text analysis on the text model
- POST /api/describe - Product description from an image
- POST /api/suggest/themes, /api/suggest/scenes - Structured suggestions that
  seed listing theme and influencer scene axes

Every request is authenticated with a bearer identity token. The API key used
for the remote call is resolved server-side and never returned, except as the
query parameter of a video URL.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from visioncore.api.dependencies import (
    get_current_user,
    get_generation_service,
    get_key_resolver,
    get_settings,
)
from visioncore.api.errors import ApiError
from visioncore.core.config import Settings
from visioncore.models.generation import InfluencerScene, SourceAsset, ThemeSuggestion
from visioncore.services.exceptions import KeyMissingError, ServiceError, ValidationError
from visioncore.services.generation.service import GenerationService
from visioncore.services.key_resolver import KeyResolver, is_heavy_model

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["generation"])

DEFAULT_REQUEST_MODEL = "gemini-3-flash-preview"


# Request/Response Models


class GenerateRequest(BaseModel):
    """Request body for the generation proxy."""

    model_config = ConfigDict(populate_by_name=True)

    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Kind-specific parameters (camelCase), optional referenceImage",
    )
    image_base64: str | None = Field(
        default=None,
        alias="imageBase64",
        description="Primary source image as a data URL",
    )
    model: str = Field(
        default=DEFAULT_REQUEST_MODEL,
        min_length=1,
        description="Remote model id; image/veo models are heavy operations",
    )


class GenerateResponse(BaseModel):
    """Exactly one of the fields is set, depending on the model output."""

    model_config = ConfigDict(populate_by_name=True)

    image_url: str | None = Field(default=None, alias="imageUrl")
    video_url: str | None = Field(default=None, alias="videoUrl")
    text: str | None = None


class AnalyzeRequest(BaseModel):
    """Request body for text analysis."""

    model_config = ConfigDict(populate_by_name=True)

    system_instruction: str | None = Field(default=None, alias="systemInstruction")
    prompt: str = Field(..., min_length=1)
    image_base64: str | None = Field(default=None, alias="imageBase64")


class AnalyzeResponse(BaseModel):
    text: str


class DescribeRequest(BaseModel):
    """Request body for an automatic product description."""

    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(..., min_length=1, alias="imageBase64")


class ThemeSuggestionRequest(BaseModel):
    """Request body for listing theme suggestions."""

    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(..., min_length=1, alias="imageBase64")
    description: str | None = None
    category: str = "Auto"


class ThemeSuggestionResponse(BaseModel):
    themes: list[ThemeSuggestion]


class SceneSuggestionRequest(BaseModel):
    """Request body for influencer scene suggestions."""

    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(..., min_length=1, alias="imageBase64")
    description: str = Field(..., min_length=1)
    gender: str = "Female"


class SceneSuggestionResponse(BaseModel):
    scenes: list[InfluencerScene]


def _decode_sources(
    image_base64: str | None, reference_image: Any, max_bytes: int
) -> tuple[list[SourceAsset], SourceAsset | None]:
    """Decode the primary image and the optional payload reference image."""
    sources = []
    if image_base64:
        sources.append(SourceAsset.from_data_url(image_base64, max_bytes))
    reference = None
    if isinstance(reference_image, str) and reference_image:
        reference = SourceAsset.from_data_url(reference_image, max_bytes)
    return sources, reference


def _to_api_error(e: ServiceError, event: str, **context: Any) -> ApiError:
    """Map a service error to the proxy's error response."""
    if isinstance(e, KeyMissingError):
        logger.info(f"{event}.key_missing", **context)
        return ApiError(status.HTTP_404_NOT_FOUND, "KEY_MISSING", str(e))
    if isinstance(e, ValidationError):
        logger.info(f"{event}.rejected", error=str(e), **context)
        return ApiError(status.HTTP_400_BAD_REQUEST, "GENERATION_FAILED", str(e))

    logger.error(
        f"{event}.failed",
        error=str(e),
        error_type=type(e).__name__,
        **context,
    )
    return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, "GENERATION_FAILED", str(e))


# Endpoints


@router.post(
    "/generate/{job_type}",
    response_model=GenerateResponse,
    response_model_exclude_none=True,
    response_model_by_alias=True,
)
async def generate(
    job_type: str,
    request: GenerateRequest,
    user_id: str = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    resolver: KeyResolver = Depends(get_key_resolver),
    service: GenerationService = Depends(get_generation_service),
) -> GenerateResponse:
    """Run one generation request through the prompt engine and the remote API.

    Args:
        job_type: Job kind (listing, studio, influencer, fashion, ad, video)
        request: Payload, optional source image, model id
        user_id: Authenticated user (injected)

    Returns:
        GenerateResponse with imageUrl, videoUrl or text

    Raises:
        ApiError: 404 KEY_MISSING when no key is available for a heavy model,
            400 GENERATION_FAILED for invalid input, 500 GENERATION_FAILED otherwise
    """
    context = {"user_id": user_id, "job_type": job_type, "model": request.model}
    logger.info("generate.requested", **context)

    try:
        sources, reference = _decode_sources(
            request.image_base64,
            request.payload.get("referenceImage"),
            settings.max_asset_bytes,
        )
        api_key = await resolver.resolve(user_id, is_heavy_model(request.model))
        body = await service.run_request(
            job_type, request.payload, sources, request.model, api_key, reference=reference
        )
    except ServiceError as e:
        raise _to_api_error(e, "generate", **context) from e

    return GenerateResponse.model_validate(body)


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(
    request: AnalyzeRequest,
    user_id: str = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    resolver: KeyResolver = Depends(get_key_resolver),
    service: GenerationService = Depends(get_generation_service),
) -> AnalyzeResponse:
    """Run a text analysis request (light operation, platform key)."""
    context = {"user_id": user_id}

    try:
        sources, _ = _decode_sources(request.image_base64, None, settings.max_asset_bytes)
        api_key = await resolver.resolve(user_id, is_heavy=False)
        text = await service.analyze(
            request.prompt,
            api_key,
            system_instruction=request.system_instruction,
            sources=sources,
        )
    except ServiceError as e:
        raise _to_api_error(e, "analyze", **context) from e

    return AnalyzeResponse(text=text)


@router.post("/describe", response_model=AnalyzeResponse)
async def describe(
    request: DescribeRequest,
    user_id: str = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    resolver: KeyResolver = Depends(get_key_resolver),
    service: GenerationService = Depends(get_generation_service),
) -> AnalyzeResponse:
    """Describe the product in the image (light operation, platform key)."""
    try:
        source = SourceAsset.from_data_url(request.image_base64, settings.max_asset_bytes)
        api_key = await resolver.resolve(user_id, is_heavy=False)
        text = await service.describe_product(source, api_key)
    except ServiceError as e:
        raise _to_api_error(e, "describe", user_id=user_id) from e

    return AnalyzeResponse(text=text)


@router.post("/suggest/themes", response_model=ThemeSuggestionResponse)
async def suggest_themes(
    request: ThemeSuggestionRequest,
    user_id: str = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    resolver: KeyResolver = Depends(get_key_resolver),
    service: GenerationService = Depends(get_generation_service),
) -> ThemeSuggestionResponse:
    """Suggest listing photography themes for the product (light operation)."""
    try:
        source = SourceAsset.from_data_url(request.image_base64, settings.max_asset_bytes)
        api_key = await resolver.resolve(user_id, is_heavy=False)
        themes = await service.suggest_themes(
            source, api_key, description=request.description, category=request.category
        )
    except ServiceError as e:
        raise _to_api_error(e, "suggest.themes", user_id=user_id) from e

    return ThemeSuggestionResponse(themes=themes)


@router.post("/suggest/scenes", response_model=SceneSuggestionResponse)
async def suggest_scenes(
    request: SceneSuggestionRequest,
    user_id: str = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    resolver: KeyResolver = Depends(get_key_resolver),
    service: GenerationService = Depends(get_generation_service),
) -> SceneSuggestionResponse:
    """Suggest influencer UGC scenes for the product (light operation)."""
    try:
        source = SourceAsset.from_data_url(request.image_base64, settings.max_asset_bytes)
        api_key = await resolver.resolve(user_id, is_heavy=False)
        scenes = await service.suggest_scenes(
            [source], api_key, description=request.description, gender=request.gender
        )
    except ServiceError as e:
        raise _to_api_error(e, "suggest.scenes", user_id=user_id) from e

    return SceneSuggestionResponse(scenes=scenes)
