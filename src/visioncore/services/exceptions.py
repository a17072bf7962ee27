"""Service error hierarchy for generation, credentials and batch orchestration.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (rate limits, exhausted quota)
- PermanentError: Non-retryable errors (authentication, validation, empty output)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry."""

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry."""

    pass


# Remote generation errors
class QuotaError(TransientError):
    """Rate or usage limit reached (429, RESOURCE_EXHAUSTED).

    Retried with exponential backoff, then fatal for the batch.
    """

    pass


class AuthError(PermanentError):
    """Bad or missing credential (401, 403, invalid API key).

    Never retried. Aborts the active batch and must prompt re-authentication.
    """

    pass


class KeyMissingError(AuthError):
    """Heavy operation requested but no usable key is available.

    Callers surface this as a "connect your own key" prompt.
    """

    pass


class ValidationError(PermanentError):
    """Missing or invalid input, rejected before any remote call."""

    pass


class UnknownTemplateKind(ValidationError):
    """Job kind has no prompt template."""

    pass


class GenerationError(PermanentError):
    """Upstream returned no usable artifact, or failed for a non-transient reason."""

    pass


class PollTimeoutError(GenerationError):
    """Long-running operation did not finish within the maximum poll duration."""

    pass


class JobCancelledError(ServiceError):
    """Run or poll was cancelled by the caller."""

    pass
