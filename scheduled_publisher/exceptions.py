"""
Custom exception classes for the scheduled publish pipeline.

This module defines all exception classes used throughout the codebase.
Exceptions follow the fail-fast philosophy: non-retryable errors surface on
first occurrence with clear context; only transient provider failures are
retried, and only a bounded number of times.

Hierarchy:
    Exception
    +-- PipelineError (base for all publish-pipeline errors)
    |   +-- PostMissing
    |   +-- NoChannel
    |   +-- AuthFailure
    |   +-- MediaRejected
    |   +-- InvalidMediaCount
    |   +-- ContainerProcessingFailed
    |   +-- ContainerNotReadyInTime      (retryable)
    |   +-- ContainerNotPublishable
    |   +-- ProviderUnavailable          (retryable)
    |   +-- CasFailed
    |   +-- SchedulingError
    |   +-- PostNotPublishable
    +-- ValidationError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
"""

from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class PipelineError(Exception):
    """Base exception for all publish-pipeline errors.

    Attributes:
        code: Stable machine-readable error code (e.g. ``"NO_CHANNEL"``).
        retryable: Whether a step-level retry may succeed.
    """

    code: str = "PIPELINE_ERROR"
    retryable: bool = False


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# RECORD / CHANNEL EXCEPTIONS
# =============================================================================


class PostMissing(PipelineError):
    """Raised when the post referenced by a job does not exist."""

    code = "POST_MISSING"


class NoChannel(PipelineError):
    """Raised when the organization has no active channel for the provider."""

    code = "NO_CHANNEL"


class AuthFailure(PipelineError):
    """Raised when a credential cannot be decrypted or is rejected."""

    code = "AUTH_FAILURE"


class CasFailed(PipelineError):
    """Raised when a conditional update finds the record in another state.

    Never user-visible: the orchestrator treats it as a benign skip.

    Attributes:
        post_id: Post that was being updated.
        expected_status: Status the update required.
    """

    code = "CAS_FAILED"

    def __init__(self, post_id: str, expected_status: Optional[str]):
        self.post_id = post_id
        self.expected_status = expected_status
        super().__init__(
            f"Post {post_id} is no longer in status '{expected_status}'"
        )


class SchedulingError(PipelineError):
    """Raised when a schedule request is rejected by the dispatcher."""

    code = "SCHEDULING_ERROR"


class PostNotPublishable(PipelineError):
    """Raised when an immediate publish targets a posted or empty post."""

    code = "POST_NOT_PUBLISHABLE"


# =============================================================================
# PROVIDER EXCEPTIONS
# =============================================================================


class ProviderUnavailable(PipelineError):
    """Raised for transient provider failures (network, 5xx, throttling)."""

    code = "PROVIDER_UNAVAILABLE"
    retryable = True


class MediaRejected(PipelineError):
    """Raised when the provider refuses a media URL or format."""

    code = "MEDIA_REJECTED"


class InvalidMediaCount(PipelineError):
    """Raised when a carousel is requested with fewer than two children."""

    code = "INVALID_MEDIA_COUNT"


class ContainerProcessingFailed(PipelineError):
    """Raised when the provider reports a container as ``ERROR``/``EXPIRED``.

    Attributes:
        container_id: The failed container.
        status: Provider status code that ended the wait.
    """

    code = "CONTAINER_PROCESSING_FAILED"

    def __init__(self, container_id: str, status: str, detail: str = ""):
        self.container_id = container_id
        self.status = status
        message = f"Container {container_id} ended in status {status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ContainerNotReadyInTime(PipelineError):
    """Raised when a container is still processing after the poll timeout.

    Attributes:
        container_id: The container being polled.
        timeout: Timeout duration in seconds.
    """

    code = "CONTAINER_NOT_READY_IN_TIME"
    retryable = True

    def __init__(self, container_id: str, timeout: float):
        self.container_id = container_id
        self.timeout = timeout
        super().__init__(
            f"Container {container_id} not ready after {timeout:.0f} seconds"
        )


class ContainerNotPublishable(PipelineError):
    """Raised when the publish endpoint refuses a container.

    Attributes:
        already_published: The container is (or may already be) live, so
            the post must not be rebuilt and published again.
    """

    code = "CONTAINER_NOT_PUBLISHABLE"

    def __init__(self, message: str, already_published: bool = False):
        self.already_published = already_published
        super().__init__(message)


# Errors that a step-level retry may recover from.
RETRYABLE_ERRORS = (ProviderUnavailable, ContainerNotReadyInTime)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "PipelineError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    # Records / channels
    "PostMissing",
    "NoChannel",
    "AuthFailure",
    "CasFailed",
    "SchedulingError",
    "PostNotPublishable",
    # Provider
    "ProviderUnavailable",
    "MediaRejected",
    "InvalidMediaCount",
    "ContainerProcessingFailed",
    "ContainerNotReadyInTime",
    "ContainerNotPublishable",
    "RETRYABLE_ERRORS",
]
