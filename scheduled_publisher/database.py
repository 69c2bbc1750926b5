"""
Unified async database client for the scheduled publisher.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Tables:
    - ``posts``: content records (read + conditional status updates).
    - ``channels``: connected destination accounts (read-only here).
    - ``publish_job_steps``: step checkpoint cache keyed by
      ``(job_key, step_name)``.
    - ``publish_jobs``: durable delayed queue of scheduled deliveries.

Usage::

    from scheduled_publisher.database import SupabaseDB

    db = await SupabaseDB.create()
    row = await db.get_post(post_id)
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from supabase import AsyncClient, create_async_client

from scheduled_publisher.exceptions import CasFailed, DatabaseError, ValidationError
from scheduled_publisher.utils import utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Args:
        value: The value to check.
        name: Human-readable field name used in error messages.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key for full server-side access

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client for all pipeline operations.

    Implements the post store, channel store, step-checkpoint store and
    delayed-queue store used by the orchestrator and dispatcher.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # POSTS
    # -----------------------------------------------------------------

    async def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Get a post by ID.

        Returns:
            Post row dict or ``None`` if not found.
        """
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("posts")
            .select("*")
            .eq("id", post_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def update_post(
        self,
        post_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update a post, optionally only if it is still in *expected_status*.

        The status filter is applied in the same ``UPDATE`` statement, so
        the check and the write are atomic.

        Args:
            post_id: UUID of the post.
            fields: Columns to set.
            expected_status: When given, the update only applies if the
                row's current ``status`` equals this value.

        Returns:
            The updated row.

        Raises:
            ValidationError: On an empty id or field set.
            CasFailed: If no row matched (missing post or status moved on).
        """
        validate_not_empty(post_id, "post_id")
        if not fields:
            raise ValidationError("fields cannot be empty")

        query = self.client.table("posts").update(fields).eq("id", post_id)
        if expected_status is not None:
            query = query.eq("status", expected_status)

        result = await query.execute()
        if not result.data:
            raise CasFailed(post_id, expected_status)
        return result.data[0]

    # -----------------------------------------------------------------
    # CHANNELS
    # -----------------------------------------------------------------

    async def get_active_channel(
        self, organization_id: str, provider: str
    ) -> Optional[Dict[str, Any]]:
        """Get the organization's active channel for *provider*.

        Returns:
            Channel row dict or ``None`` when no active channel exists.
        """
        validate_not_empty(organization_id, "organization_id")
        validate_not_empty(provider, "provider")

        result = await (
            self.client.table("channels")
            .select("*")
            .eq("organization_id", organization_id)
            .eq("provider", provider)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    # -----------------------------------------------------------------
    # STEP CHECKPOINTS
    # -----------------------------------------------------------------

    async def get_step_result(
        self, job_key: str, step_name: str
    ) -> Optional[Dict[str, Any]]:
        """Get a completed step checkpoint.

        Returns:
            Row dict with ``result`` and ``completed_at``, or ``None``.
        """
        validate_not_empty(job_key, "job_key")
        validate_not_empty(step_name, "step_name")

        result = await (
            self.client.table("publish_job_steps")
            .select("*")
            .eq("job_key", job_key)
            .eq("step_name", step_name)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def save_step_result(
        self, job_key: str, step_name: str, value: Any
    ) -> None:
        """Persist a completed step's result (upsert on the step key)."""
        validate_not_empty(job_key, "job_key")
        validate_not_empty(step_name, "step_name")

        await (
            self.client.table("publish_job_steps")
            .upsert(
                {
                    "job_key": job_key,
                    "step_name": step_name,
                    "result": value,
                    "completed_at": utc_now().isoformat(),
                },
                on_conflict="job_key,step_name",
            )
            .execute()
        )

    async def claim_step(
        self, job_key: str, step_name: str, value: Any
    ) -> bool:
        """Atomically create a step row unless one already exists.

        Returns:
            ``True`` if this call created the row.
        """
        validate_not_empty(job_key, "job_key")
        validate_not_empty(step_name, "step_name")

        result = await (
            self.client.table("publish_job_steps")
            .upsert(
                {
                    "job_key": job_key,
                    "step_name": step_name,
                    "result": value,
                    "completed_at": utc_now().isoformat(),
                },
                on_conflict="job_key,step_name",
                ignore_duplicates=True,
            )
            .execute()
        )
        return bool(result.data)

    async def delete_step_results(
        self, job_key: str, step_names: List[str]
    ) -> None:
        """Discard the checkpoints of *step_names* under *job_key*."""
        validate_not_empty(job_key, "job_key")
        if not step_names:
            return

        await (
            self.client.table("publish_job_steps")
            .delete()
            .eq("job_key", job_key)
            .in_("step_name", step_names)
            .execute()
        )

    # -----------------------------------------------------------------
    # PUBLISH JOB QUEUE
    # -----------------------------------------------------------------

    async def insert_publish_job(self, job: Dict[str, Any]) -> bool:
        """Insert a queued delivery, ignoring duplicates of the same id.

        Returns:
            ``True`` if a new row was inserted.
        """
        if not job or "id" not in job:
            raise ValidationError("job must have an id")

        result = await (
            self.client.table("publish_jobs")
            .upsert(job, on_conflict="id", ignore_duplicates=True)
            .execute()
        )
        return bool(result.data)

    async def get_due_publish_jobs(
        self, now: datetime, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Get pending deliveries whose fire time has passed."""
        validate_positive(limit, "limit")

        result = await (
            self.client.table("publish_jobs")
            .select("*")
            .eq("status", "pending")
            .lte("fire_at", now.isoformat())
            .order("fire_at", desc=False)
            .limit(limit)
            .execute()
        )
        return result.data

    async def claim_publish_job(self, job_id: str) -> bool:
        """Atomically claim a pending delivery (``pending -> claimed``).

        Returns:
            ``True`` if the claim succeeded, ``False`` if another worker
            already claimed it.
        """
        validate_not_empty(job_id, "job_id")

        result = await (
            self.client.table("publish_jobs")
            .update({
                "status": "claimed",
                "claimed_at": utc_now().isoformat(),
            })
            .eq("id", job_id)
            .eq("status", "pending")
            .execute()
        )
        return bool(result.data)

    async def update_publish_job(
        self, job_id: str, fields: Dict[str, Any]
    ) -> None:
        """Update a queued delivery.

        Raises:
            ValidationError: If *job_id* or *fields* is empty.
            DatabaseError: If no row matched.
        """
        validate_not_empty(job_id, "job_id")
        if not fields:
            raise ValidationError("fields cannot be empty")

        result = await (
            self.client.table("publish_jobs")
            .update(fields)
            .eq("id", job_id)
            .execute()
        )
        if not result.data:
            raise DatabaseError(f"Publish job {job_id} not found")

    async def get_stuck_publish_jobs(
        self, cutoff: datetime
    ) -> List[Dict[str, Any]]:
        """Get deliveries claimed before *cutoff* that never finished."""
        result = await (
            self.client.table("publish_jobs")
            .select("*")
            .eq("status", "claimed")
            .lte("claimed_at", cutoff.isoformat())
            .execute()
        )
        return result.data


__all__ = [
    "SupabaseConfig",
    "SupabaseDB",
    "validate_not_empty",
    "validate_positive",
]
