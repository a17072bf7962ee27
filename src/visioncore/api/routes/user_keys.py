"""User API key endpoint.

POST /api/user/api-key stores the caller's own generation API key, encrypted
with the server secret. Only the latest key is kept.
"""

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from visioncore.api.dependencies import get_current_user, get_uow_factory, get_vault
from visioncore.api.errors import ApiError
from visioncore.services.crypto.vault import KeyVault

logger = structlog.get_logger()
router = APIRouter(prefix="/api/user", tags=["user"])


class SaveApiKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str | None = Field(default=None, alias="apiKey")


class SaveApiKeyResponse(BaseModel):
    success: bool


@router.post("/api-key", response_model=SaveApiKeyResponse)
async def save_api_key(
    request: SaveApiKeyRequest,
    user_id: str = Depends(get_current_user),
    uow_factory=Depends(get_uow_factory),
    vault: KeyVault | None = Depends(get_vault),
) -> SaveApiKeyResponse:
    """Encrypt and store the caller's API key (overwrites any previous key).

    Raises:
        ApiError: 400 if the key is empty, 500 VAULT_WRITE_ERROR if it cannot be stored
    """
    api_key = (request.api_key or "").strip()
    if not api_key:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "API_KEY_REQUIRED", "API Key Required")

    if vault is None:
        logger.error("user_key.save_failed", user_id=user_id, reason="vault_not_configured")
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, "VAULT_WRITE_ERROR")

    try:
        encrypted = vault.encrypt(api_key)
        async with await uow_factory() as uow:
            await uow.credentials.upsert_encrypted_key(user_id, encrypted)
    except SQLAlchemyError as e:
        logger.error(
            "user_key.save_failed",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, "VAULT_WRITE_ERROR") from e

    logger.info("user_key.saved", user_id=user_id)
    return SaveApiKeyResponse(success=True)
