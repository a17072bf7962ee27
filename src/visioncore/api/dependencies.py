"""FastAPI dependencies for request authentication and shared services.

This module provides reusable FastAPI dependencies for:
- Settings and services stored on app.state by the lifespan
- Bearer token authentication (user id extraction)
"""

from typing import Annotated, Callable

from fastapi import Depends, Header, Request, status

from visioncore.api.errors import ApiError
from visioncore.core.config import Settings
from visioncore.services.crypto.vault import KeyVault
from visioncore.services.exceptions import AuthError
from visioncore.services.generation.service import GenerationService
from visioncore.services.identity import verify_token
from visioncore.services.key_resolver import KeyResolver
from visioncore.uow import UnitOfWork


def get_settings(request: Request) -> Settings:
    """Get application settings loaded at startup."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.credentials.get_by_user_id(user_id)
    """
    return request.app.state.uow_factory


def get_vault(request: Request) -> KeyVault | None:
    """Get the key vault, or None when no encryption secret is configured."""
    return request.app.state.vault


def get_key_resolver(request: Request) -> KeyResolver:
    return request.app.state.key_resolver


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> str:
    """Authenticate the request from its ``Authorization: Bearer <token>`` header.

    Returns:
        User id of the verified token

    Raises:
        ApiError: 401 UNAUTHORIZED if no bearer token is present,
            403 INVALID_TOKEN if verification fails
    """
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED")

    try:
        return verify_token(
            token.strip(), settings.identity_token_secret, settings.identity_token_algorithm
        )
    except AuthError as e:
        raise ApiError(status.HTTP_403_FORBIDDEN, "INVALID_TOKEN") from e
