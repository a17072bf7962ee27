"""Prompt templates for generation jobs.

Each job kind renders its parameter record into a natural-language instruction:
a genre preamble, the interpolated parameters (absent values fall back to a
neutral phrase) and a fixed block of hard constraints. Rendering is pure.
"""

from typing import Any, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from visioncore.models.generation import (
    AdParams,
    FashionParams,
    InfluencerParams,
    JobKind,
    JobParams,
    ListingParams,
    RelocateParams,
    StudioParams,
    VideoParams,
)
from visioncore.services.exceptions import UnknownTemplateKind, ValidationError

# Values the client sends to mean "let the model decide"
_ABSENT_VALUES = {"", "auto"}

NO_TEXT = "NO TEXT."

_params_adapter: TypeAdapter[Any] = TypeAdapter(JobParams)


def _or(value: Optional[str], fallback: str) -> str:
    """Return value unless it is absent (None, blank or "Auto")."""
    if value is None or value.strip().lower() in _ABSENT_VALUES:
        return fallback
    return value.strip()


def _render_listing(p: ListingParams) -> list[str]:
    lines = [
        "Professional Marketplace Listing.",
        f"Theme: {_or(p.theme_prompt, 'Clean Studio')}.",
        f"Background Color: {_or(p.bg_color, 'Solid White (#ffffff)')}.",
        f"Product Finish: {_or(p.product_color, 'original')}.",
    ]
    if p.description:
        lines.append(f"Product Context: {p.description.strip()}.")
    if p.usage:
        lines.append(f"Usage Scene: {p.usage.strip()}.")
    lines += [
        "Lighting: High-key commercial lighting, soft shadows.",
        "Realism: Maintain exact product geometry and texture. No color drift.",
        f"Output: 8k resolution, crisp details. {NO_TEXT}",
    ]
    return lines


def _render_studio(p: StudioParams) -> list[str]:
    return [
        "Enterprise-grade Studio Product Shot.",
        f"Angle: {_or(p.angle, 'Eye-Level')}.",
        f"Product Finish: {_or(p.product_color, 'original')}.",
        f"Background: Solid {_or(p.bg_color, 'matte studio gray')} cyclorama wall.",
        "Lighting Discipline: Three-point studio lighting (Key, Fill, Rim) with "
        "professional soft-box diffusion.",
        "Shadow Realism: Physically accurate contact shadows and soft grounding.",
        "Constraints: Zero distortion, maintain photorealistic micro-textures, "
        f"no 'plastic' over-smoothing. {NO_TEXT}",
    ]


def _render_influencer(p: InfluencerParams) -> list[str]:
    influencer = ", ".join(
        [
            _or(p.gender, "Female"),
            _or(p.age, "Gen Z"),
            _or(p.regional_look, "Urban Indian"),
        ]
    )
    lines = [
        "Authentic Indian UGC Lifestyle Photo.",
        f"Influencer: {influencer}.",
        f"Persona: {_or(p.persona, 'Everyday User')}.",
        f"Setting: {_or(p.setting, 'Casual Home')}.",
        f"Shot Type: {_or(p.shot_type, 'Standard UGC')}.",
    ]
    if _or(p.skin_tone, "") or _or(p.body_type, ""):
        lines.append(
            f"Appearance: {_or(p.skin_tone, 'natural')} skin tone, "
            f"{_or(p.body_type, 'average')} build."
        )
    lines += [
        "Lighting: Natural daylight with realistic environmental bounce.",
        "Aesthetic: High-quality smartphone camera look, non-staged, authentic interaction.",
        "Realism: Maintain product integrity, no over-beautification of the subject. "
        f"{NO_TEXT}",
    ]
    return lines


def _render_fashion(p: FashionParams) -> list[str]:
    model = ", ".join(
        [
            _or(p.gender, "Female"),
            _or(p.body_type, "Athletic"),
            _or(p.skin_tone, "Medium"),
        ]
    )
    return [
        "High-End Fashion Editorial.",
        f"Model: {model}.",
        f"Angle: {_or(p.angle, 'Eye-Level')}.",
        "Lighting: Dramatic fashion studio lighting, high contrast.",
        f"Environment: {_or(p.color, 'neutral gray')} studio backdrop.",
        "Constraints: Maintain apparel fabric texture and fit accuracy. "
        f"Photorealistic rendering. {NO_TEXT}",
    ]


def _render_ad(p: AdParams) -> list[str]:
    return [
        "Professional ad creative background.",
        "Integrate the product from the first image; when a second reference image is "
        "provided, follow its layout.",
        f"Ad Type: {p.ad_type}.",
        f"Brand Color: {_or(p.primary_color, 'neutral')}.",
        f"Product Color: {_or(p.product_color, 'original')}.",
        "Realism: Maintain exact product geometry. Commercial quality, photorealistic. "
        f"{NO_TEXT}",
    ]


def _render_video(p: VideoParams) -> list[str]:
    style = _or(p.style, "Auto")
    if "studio" in style.lower() or "clean" in style.lower():
        lighting = (
            "Studio Lighting: Professional three-point setup, high-end commercial "
            "soft-box diffusion, controlled highlights."
        )
    else:
        lighting = (
            "Lifestyle Lighting: Natural ambient illumination, realistic environmental "
            "light bounce, atmospheric depth."
        )
    perspectives = ", ".join(a for a in p.angles if a) or "Auto"
    return [
        "Enterprise Cinematic Product Video.",
        f"Style: {style}.",
        f"Product Finish: {_or(p.product_color, 'original')}.",
        f"Movement: {_or(p.motion, 'Auto')} camera motion.",
        f"Lens: {_or(p.lens, 'Standard')}.",
        f"Perspectives: {perspectives}.",
        f"Lighting Discipline: {lighting}",
        "Shadow Integrity: Physically accurate contact shadows and soft grounding shadows. "
        "Sharp grounding, no floating.",
        "Product Realism: Maintain exact geometric proportions. Preserve original "
        "textures, materials, and fine details.",
        "Anti-Beautification: Avoid over-smoothing, artificial 'plastic' looks, or "
        "unnatural glowing edges.",
        f"Final Output: 8k commercial quality, realistic motion blur, zero color drift. {NO_TEXT}",
    ]


def _render_relocate(p: RelocateParams) -> list[str]:
    lines = [
        "Precise product replication.",
        "Environment from the first image. When a second image is provided, replace the "
        "product with the product from the second image.",
    ]
    if _or(p.product_color, ""):
        lines.append(f"Product Color: {_or(p.product_color, '')}.")
    if _or(p.bg_color, ""):
        lines.append(f"Background/Scene Color: {_or(p.bg_color, '')}.")
    if p.custom_command and p.custom_command.strip():
        lines.append(f"Custom: {p.custom_command.strip()}.")
    lines.append(f"High fidelity, photorealistic. {NO_TEXT}")
    return lines


def render_prompt(
params: JobParams, refinement: Optional[str] = None) -> str:
    """Render a job's parameters into the instruction sent to the model.

    Args:
        params: Kind-specific parameter record
        refinement: Optional free text appended to the base prompt

    Returns:
        Rendered prompt

    Raises:
        UnknownTemplateKind: If params is not one of the known parameter records
    """
    if isinstance(params, ListingParams):
        lines = _render_listing(params)
    elif isinstance(params, StudioParams):
        lines = _render_studio(params)
    elif isinstance(params, InfluencerParams):
        lines = _render_influencer(params)
    elif isinstance(params, FashionParams):
        lines = _render_fashion(params)
    elif isinstance(params, AdParams):
        lines = _render_ad(params)
    elif isinstance(params, VideoParams):
        lines = _render_video(params)
    elif isinstance(params, RelocateParams):
        lines = _render_relocate(params)
    else:
        raise UnknownTemplateKind(f"No prompt template for {type(params).__name__}")

    if refinement and refinement.strip():
        lines.append(f"Refinement: {refinement.strip()}.")

    return "\n".join(lines)


def parse_params(kind: str, payload: dict[str, Any] | None) -> JobParams:
    """Validate a raw client payload into the parameter record for ``kind``.

    Raises:
        UnknownTemplateKind: If kind is not a known job kind
        ValidationError: If the payload does not fit the kind's record
    """
    try:
        job_kind = JobKind(kind)
    except ValueError:
        raise UnknownTemplateKind(f"Unknown template kind: {kind!r}")

    data = dict(payload or {})
    data["kind"] = job_kind
    try:
        return _params_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {job_kind.value} parameters: {e}") from e
