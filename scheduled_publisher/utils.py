"""
Shared utility functions used throughout the scheduled publisher.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for Supabase TIMESTAMPTZ columns)
    - stable_id(*parts): UUID5 derived from its parts (deterministic job keys)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_datetime(value): Parse ISO strings / datetimes into aware UTC
    - @with_retry: Decorator with exponential backoff for transient failures
"""

from datetime import datetime, timezone
import uuid
import asyncio
import logging
from functools import wraps
from typing import Callable, TypeVar, Any, Tuple, Type, Optional, Union

from scheduled_publisher.exceptions import RetryExhaustedError

# ---------------------------------------------------------------------------
# Type variable for generic return types in the retry decorator
# ---------------------------------------------------------------------------
T = TypeVar("T")

# Namespace for deterministic identifiers (job ids, step keys)
_ID_NAMESPACE = uuid.UUID("6f1c1e3a-6b0e-4c57-9a59-3c2d5f8a9b10")


# ===========================================================================
# TIMEZONE UTILITIES
# All timestamps stored in Supabase must be timezone-aware (TIMESTAMPTZ)
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``
    for Supabase compatibility (TIMESTAMPTZ columns).

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def stable_id(*parts: Any) -> str:
    """
    Derive a deterministic UUID string from *parts*.

    The same parts always produce the same id, which lets repeated
    deliveries of one logical job share a primary key.
    """
    name = "|".join("" if p is None else str(p) for p in parts)
    return str(uuid.uuid5(_ID_NAMESPACE, name))


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts ``datetime`` instances, ISO-8601 strings (including a trailing
    ``Z``) and ``None``.

    Raises:
        ValueError: If *value* is a string that is not valid ISO-8601.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


# ===========================================================================
# RETRY DECORATOR WITH EXPONENTIAL BACKOFF
# Retries are for transient failures (5xx, throttling, processing timeouts).
# Eventually raises if all attempts fail.
# ===========================================================================


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable:
    """
    Decorator for retry logic with exponential backoff.

    - Retries only exceptions listed in ``retryable_exceptions``.
    - Eventually raises ``RetryExhaustedError`` if all attempts fail.
    - Logs each retry attempt for debugging.

    Only coroutine functions can be wrapped.

    Args:
        max_attempts: Maximum number of attempts (default ``3``).
        base_delay: Initial delay in seconds before the first retry
            (default ``2.0``). Subsequent delays grow exponentially:
            ``base_delay * (2 ** attempt)``.
        retryable_exceptions: Tuple of exception types that should trigger
            a retry. Any exception **not** in this tuple will propagate
            immediately without retrying.
        operation_name: Human-readable name used in log messages. If
            ``None``, the wrapped function's ``__name__`` is used.

    Raises:
        RetryExhaustedError: When all retry attempts have been exhausted.
            The original exception is kept as the ``last_error``
            attribute and as the ``__cause__``.

    Usage::

        @with_retry(
            max_attempts=3,
            base_delay=2.0,
            retryable_exceptions=RETRYABLE_ERRORS,
        )
        async def create_container(...) -> str:
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    if attempt < max_attempts:
                        delay = base_delay * (2 ** (attempt - 1))
                        logging.warning(
                            "[RETRY] %s attempt %d/%d failed: %s. "
                            "Retrying in %.1fs...",
                            op_name,
                            attempt,
                            max_attempts,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logging.error(
                            "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                            op_name,
                            max_attempts,
                            e,
                        )
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            ) from last_error

        return async_wrapper  # type: ignore[return-value]

    return decorator
