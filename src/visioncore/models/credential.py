"""UserCredential entity - per-user API key, encrypted at rest."""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class UserCredential(SQLModel, table=True):
    """UserCredential stores one encrypted generation API key per user.

    Only the latest value is kept; saving again overwrites it.
    """

    __tablename__ = "user_credentials"  # type: ignore[assignment]

    user_id: str = Field(primary_key=True, max_length=128)
    encrypted_key: str  # ivHex:authTagHex:ciphertextHex
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
