"""UserCredential repository.

Provides data access methods for per-user encrypted API keys.
"""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from visioncore.models.credential import UserCredential


class UserCredentialRepository:
    """Repository for UserCredential entities.

    Methods:
    - get_by_user_id: Direct lookup by user id
    - upsert_encrypted_key: Create or overwrite the user's encrypted key
    - delete: Remove the user's stored key
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_user_id(self, user_id: str) -> UserCredential | None:
        """Retrieve the credential record for a user.

        Args:
            user_id: Identity provider user id (bearer token subject)

        Returns:
            UserCredential if found, None otherwise
        """
        result = await self.session.execute(
            select(UserCredential).where(
                UserCredential.user_id == user_id  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def upsert_encrypted_key(self, user_id: str, encrypted_key: str) -> UserCredential:
        """Create or update the user's encrypted key (merge-upsert).

        The previous value is overwritten; keys are never versioned.

        Args:
            user_id: Identity provider user id
            encrypted_key: Vault output (ivHex:authTagHex:ciphertextHex)

        Returns:
            UserCredential entity (newly created or updated)
        """
        existing = await self.get_by_user_id(user_id)
        now = datetime.now(UTC)

        if existing:
            existing.encrypted_key = encrypted_key
            existing.updated_at = now
            await self.session.flush()
            return existing

        credential = UserCredential(user_id=user_id, encrypted_key=encrypted_key, updated_at=now)
        self.session.add(credential)
        await self.session.flush()
        return credential

    async def delete(self, user_id: str) -> bool:
        """Delete the user's stored key.

        Returns:
            True if a record was removed, False if none existed
        """
        existing = await self.get_by_user_id(user_id)
        if not existing:
            return False
        await self.session.delete(existing)
        await self.session.flush()
        return True
