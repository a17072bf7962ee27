"""Error classification and retry with exponential backoff for remote calls.

Only quota errors are retried. Authentication errors and every other failure
are raised on the first occurrence: retrying cannot fix a bad credential or a
rejected request.
"""

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

import structlog
from google.genai import errors as genai_errors

from visioncore.services.exceptions import (
    AuthError,
    GenerationError,
    QuotaError,
    ServiceError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3

_QUOTA_MARKERS = ("quota", "limit exceeded", "429", "exhausted", "rate limit")
_AUTH_MARKERS = ("api key", "api_key", "unauthorized", "not found", "permission")


def classify_error(exception: BaseException) -> ServiceError:
    """Classify exception into the service error taxonomy.

    Args:
        exception: Original exception from the SDK, network layer or our own code

    Returns:
        Classified ServiceError subclass instance (the exception itself if it
        is already a ServiceError)

    Classification rules:
        - Already a ServiceError → unchanged
        - HTTP 401/403 → AuthError
        - HTTP 429 → QuotaError
        - Quota wording (quota, limit exceeded, exhausted) → QuotaError
        - Auth wording (api key, unauthorized, permission, not found) → AuthError
        - Anything else → GenerationError
    """
    if isinstance(exception, ServiceError):
        return exception

    error_message = str(exception)
    error_message_lower = error_message.lower()

    if isinstance(exception, genai_errors.APIError):
        if exception.code in (401, 403):
            return AuthError(f"Authentication failed: {error_message}")
        if exception.code == 429:
            return QuotaError(f"Quota exceeded: {error_message}")

    if any(marker in error_message_lower for marker in _QUOTA_MARKERS):
        return QuotaError(f"Quota exceeded: {error_message}")

    if any(marker in error_message_lower for marker in _AUTH_MARKERS):
        return AuthError(f"Authentication failed: {error_message}")

    return GenerationError(error_message or type(exception).__name__)


def backoff_delay(attempt: int, rng: Callable[[], float] = random.random) -> float:
    """Delay in seconds before retry number ``attempt + 1`` (attempt is 0-based).

    ``2**attempt`` seconds plus up to one second of jitter.
    """
    return (2**attempt) + rng()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    operation_name: str = "remote_call",
) -> T:
    """Run ``operation``, retrying quota errors with exponential backoff and jitter.

    Args:
        operation: Zero-argument coroutine function performing one remote call
        max_attempts: Total attempts including the first one
        sleep: Coroutine used to wait between attempts
        rng: Jitter source returning a float in [0, 1)
        operation_name: Label for log events

    Returns:
        The operation's result

    Raises:
        AuthError: Immediately, never retried
        QuotaError: When attempts are exhausted
        ServiceError: Any other classified failure, immediately
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as exc:
            error = classify_error(exc)

            if isinstance(error, QuotaError) and attempt < max_attempts - 1:
                delay = backoff_delay(attempt, rng)
                logger.warning(
                    "generation.retry",
                    operation=operation_name,
                    attempt_number=attempt + 1,
                    max_attempts=max_attempts,
                    delay_seconds=round(delay, 3),
                    error_message=str(error),
                )
                await sleep(delay)
                continue

            if error is exc:
                raise
            raise error from exc

    # Unreachable: the final attempt either returns or raises
    raise AssertionError("with_retry exhausted without result")
