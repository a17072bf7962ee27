"""Repository layer for VisionCore.

Provides data access abstractions for all persisted entities.
No base classes - each repository is self-contained.
"""

from visioncore.repositories.credential import UserCredentialRepository

__all__ = [
    "UserCredentialRepository",
]
