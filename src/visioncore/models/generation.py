"""Generation domain types - job kinds, per-kind parameters, jobs and results.

Parameter records form a closed tagged union discriminated by ``kind``; each
kind carries only the fields its prompt template interpolates. Payloads coming
from the web client use camelCase keys, so every record accepts both the
camelCase alias and the field name.
"""

import base64
import binascii
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from visioncore.services.exceptions import ValidationError


class JobKind(str, Enum):
    """Generation job kind (one prompt template per kind)."""

    LISTING = "listing"
    STUDIO = "studio"
    INFLUENCER = "influencer"
    FASHION = "fashion"
    AD = "ad"
    VIDEO = "video"
    RELOCATE = "relocate"


class BatchState(str, Enum):
    """Batch run lifecycle status."""

    IDLE = "idle"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class _Params(BaseModel):
    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    aspect_ratio: str = "1:1"


class ListingParams(_Params):
    kind: Literal[JobKind.LISTING] = JobKind.LISTING
    theme_prompt: Optional[str] = None
    bg_color: Optional[str] = None
    description: Optional[str] = None
    usage: Optional[str] = None
    product_color: Optional[str] = None


class StudioParams(_Params):
    kind: Literal[JobKind.STUDIO] = JobKind.STUDIO
    angle: Optional[str] = None
    bg_color: Optional[str] = None
    product_color: Optional[str] = None


class InfluencerParams(_Params):
    kind: Literal[JobKind.INFLUENCER] = JobKind.INFLUENCER
    gender: Optional[str] = None
    age: Optional[str] = None
    regional_look: Optional[str] = None
    persona: Optional[str] = None
    setting: Optional[str] = None
    shot_type: Optional[str] = None
    skin_tone: Optional[str] = None
    body_type: Optional[str] = None


class FashionParams(_Params):
    kind: Literal[JobKind.FASHION] = JobKind.FASHION
    gender: Optional[str] = None
    body_type: Optional[str] = None
    skin_tone: Optional[str] = None
    angle: Optional[str] = None
    color: Optional[str] = None


class AdParams(_Params):
    kind: Literal[JobKind.AD] = JobKind.AD
    ad_type: Literal["PROMO", "REVIEW"] = "PROMO"
    primary_color: Optional[str] = None
    product_color: Optional[str] = None


class VideoParams(_Params):
    kind: Literal[JobKind.VIDEO] = JobKind.VIDEO
    aspect_ratio: str = "16:9"
    style: Optional[str] = None
    product_color: Optional[str] = None
    motion: Optional[str] = None
    lens: Optional[str] = None
    angles: list[str] = Field(default_factory=list)
    resolution: str = "720p"


class RelocateParams(_Params):
    kind: Literal[JobKind.RELOCATE] = JobKind.RELOCATE
    product_color: Optional[str] = None
    bg_color: Optional[str] = None
    custom_command: Optional[str] = None


JobParams = Annotated[
    Union[
        ListingParams,
        StudioParams,
        InfluencerParams,
        FashionParams,
        AdParams,
        VideoParams,
        RelocateParams,
    ],
    Field(discriminator="kind"),
]


class SourceAsset(BaseModel):
    """Binary image payload supplied by the caller."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "image/jpeg"

    @classmethod
    def from_data_url(cls, value: str, max_bytes: int) -> "SourceAsset":
        """Decode a ``data:<mime>;base64,<payload>`` URL (or bare base64) into an asset.

        Raises:
            ValidationError: If the payload is empty, not base64, or larger than max_bytes
        """
        mime_type = "image/jpeg"
        encoded = value.strip()
        if encoded.startswith("data:"):
            header, _, encoded = encoded.partition(",")
            declared = header[len("data:") :].split(";")[0]
            if declared:
                mime_type = declared

        if not encoded:
            raise ValidationError("Source image is empty")

        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Source image is not valid base64: {e}") from e

        return cls.from_bytes(data, max_bytes, mime_type=mime_type)

    @classmethod
    def from_bytes(
        cls, data: bytes, max_bytes: int, mime_type: str = "image/jpeg"
    ) -> "SourceAsset":
        """Wrap raw bytes, enforcing the size limit."""
        if not data:
            raise ValidationError("Source image is empty")
        if len(data) > max_bytes:
            raise ValidationError(
                f"Source image exceeds maximum size of {max_bytes} bytes (got {len(data)})"
            )
        return cls(data=data, mime_type=mime_type)


class GenerationJob(BaseModel):
    """A single unit of remote work. Immutable once dispatched.

    ``sources`` are the product images (one per unit inside a batch);
    ``reference`` is an optional secondary image shared by every unit, such as
    an ad layout or the replacement product of a relocate job. It is sent
    after the sources.
    """

    model_config = ConfigDict(frozen=True)

    params: JobParams
    sources: tuple[SourceAsset, ...]
    reference: Optional[SourceAsset] = None
    refinement: Optional[str] = None
    model: Optional[str] = None

    @property
    def kind(self) -> JobKind:
        return self.params.kind

    @property
    def inputs(self) -> tuple[SourceAsset, ...]:
        """Images sent to the model, in order: sources, then the reference."""
        if self.reference is None:
            return self.sources
        return (*self.sources, self.reference)


class GenerationResult(BaseModel):
    """A produced artifact, appended to the run results and the history."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: JobKind
    artifact_url: str
    label: str
    description: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source_index: int = 0
    variant: dict[str, str] = Field(default_factory=dict)


class ThemeSuggestion(BaseModel):
    """Photography theme proposed by the text model for a listing shoot."""

    title: str
    prompt: str


class InfluencerScene(BaseModel):
    """UGC scene proposed by the text model for an influencer shoot."""

    title: str
    description: str
    persona: str
    setting: str
