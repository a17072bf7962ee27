"""Credential resolution for remote generation calls.

Resolution policy, in priority order:
1. Operator key (API_KEY) when OPERATOR_KEY_OVERRIDE is enabled - shadows
   every other key, including per-user keys.
2. Light operations (text analysis) use the shared platform key.
3. Heavy operations (image / video generation) use the requesting user's own
   key, decrypted from the credential store. No platform key is ever used for
   heavy operations.
"""

from typing import Callable, Protocol

import structlog

from visioncore.core.config import Settings
from visioncore.services.crypto.vault import KeyVault
from visioncore.services.exceptions import KeyMissingError
from visioncore.uow import UnitOfWork

logger = structlog.get_logger(__name__)

HEAVY_MODEL_MARKERS = ("image", "veo")

# Local key/value store entry holding a manually entered key (CLI)
MANUAL_KEY_STORE_KEY = "VISION_API_KEY"


class _KeyStore(Protocol):
    def get(self, key: str) -> str | None: ...


def is_heavy_model(model: str) -> bool:
    """Return True for image- or video-generation models."""
    model_lower = model.lower()
    return any(marker in model_lower for marker in HEAVY_MODEL_MARKERS)


class KeyResolver:
    """Determines which credential authorizes a call. Read-only."""

    def __init__(self, settings: Settings, uow_factory: Callable, vault: KeyVault | None):
        """Initialize resolver.

        Args:
            settings: Application settings (operator and platform keys)
            uow_factory: UnitOfWork factory for the per-user key lookup
            vault: Vault used to decrypt stored keys (None disables per-user keys)
        """
        self.settings = settings
        self.uow_factory = uow_factory
        self.vault = vault

    async def resolve(self, user_id: str, is_heavy: bool) -> str:
        """Resolve the API key for a call.

        Args:
            user_id: Requesting user id
            is_heavy: True for image / video generation

        Returns:
            API key to use for the remote call

        Raises:
            KeyMissingError: No key is available for this call
            AuthError: The stored user key could not be decrypted
        """
        operator_key = self.settings.operator_key
        if operator_key:
            logger.debug("credential.resolved", source="operator", user_id=user_id)
            return operator_key

        if not is_heavy:
            if not self.settings.platform_gemini_key:
                raise KeyMissingError("Platform key is not configured")
            logger.debug("credential.resolved", source="platform", user_id=user_id)
            return self.settings.platform_gemini_key

        async with await self.uow_factory() as uow:
            credential = await uow.credentials.get_by_user_id(user_id)

        if not credential or not credential.encrypted_key:
            raise KeyMissingError("User API Key Required for Heavy Production")
        if self.vault is None:
            raise KeyMissingError("Key vault is not configured")

        api_key = self.vault.decrypt(credential.encrypted_key)
        logger.debug("credential.resolved", source="user", user_id=user_id)
        return api_key


def resolve_local_key(settings: Settings, store: _KeyStore) -> str:
    """Resolve the key for local (CLI) runs.

    Operator key first (same override flag), then the manually entered key
    cached in the local key/value store.

    Raises:
        KeyMissingError: Neither key is available
    """
    operator_key = settings.operator_key
    if operator_key:
        return operator_key

    manual_key = store.get(MANUAL_KEY_STORE_KEY)
    if manual_key:
        return manual_key

    raise KeyMissingError("No API key configured. Run `visioncore set-key` or set API_KEY.")
