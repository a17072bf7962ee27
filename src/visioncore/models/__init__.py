"""Domain models.

SQLModel entities are imported here to ensure they're registered with SQLModel
metadata before tables are created.
"""

from visioncore.models.credential import UserCredential
from visioncore.models.generation import (
    AdParams,
    BatchState,
    FashionParams,
    GenerationJob,
    GenerationResult,
    InfluencerParams,
    JobKind,
    JobParams,
    ListingParams,
    SourceAsset,
    StudioParams,
    VideoParams,
)

__all__ = [
    "UserCredential",
    "JobKind",
    "JobParams",
    "ListingParams",
    "StudioParams",
    "InfluencerParams",
    "FashionParams",
    "AdParams",
    "VideoParams",
    "SourceAsset",
    "GenerationJob",
    "GenerationResult",
    "BatchState",
]
