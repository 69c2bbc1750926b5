"""
Durable delayed queue for scheduled deliveries.

Each row of ``publish_jobs`` is one delivery of a :class:`ScheduledJob` to
the orchestrator at ``fire_at``.  Row ids are the job's deterministic
``job_id``, so enqueueing the same (post, stamp) twice is a no-op, while a
reschedule creates a new row and leaves the old one to fire and skip.

Row lifecycle::

    pending -> claimed -> done
                       -> failed   (dead letter, kept for operators)
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from scheduled_publisher.models import JobResult, ScheduledJob
from scheduled_publisher.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_CLAIMED = "claimed"
STATUS_DONE = "done"
STATUS_FAILED = "failed"


class DelayedQueue:
    """Queue facade over the ``publish_jobs`` table.

    Args:
        db: Database client (:class:`~scheduled_publisher.database.SupabaseDB`).
    """

    def __init__(self, db: "SupabaseDB") -> None:  # noqa: F821
        self.db = db

    async def enqueue(
        self, job: ScheduledJob, fire_at: Optional[datetime] = None
    ) -> bool:
        """Queue *job* for delivery at *fire_at* (defaults to its stamp).

        Returns:
            ``True`` if a new delivery was created, ``False`` if the same
            (post, stamp) was already queued.
        """
        fire_at = ensure_utc(fire_at or job.stamp or utc_now())
        row = {
            "id": job.job_id,
            "post_id": job.post_id,
            "organization_id": job.organization_id,
            "stamp": job.stamp.isoformat() if job.stamp else None,
            "fire_at": fire_at.isoformat(),
            "status": STATUS_PENDING,
            "attempts": 0,
            "created_at": utc_now().isoformat(),
        }
        inserted = await self.db.insert_publish_job(row)
        if inserted:
            logger.info(
                "[DISPATCHER] Queued delivery %s for post %s at %s",
                job.job_id,
                job.post_id,
                fire_at.isoformat(),
            )
        else:
            logger.info(
                "[DISPATCHER] Delivery %s for post %s already queued",
                job.job_id,
                job.post_id,
            )
        return inserted

    async def due(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Return pending deliveries whose fire time has passed."""
        return await self.db.get_due_publish_jobs(utc_now(), limit)

    async def claim(self, job_id: str) -> bool:
        """Claim a pending delivery; ``False`` if another worker got it."""
        return await self.db.claim_publish_job(job_id)

    async def complete(self, row: Dict[str, Any], result: JobResult) -> None:
        """Mark a claimed delivery as handled (published or skipped)."""
        await self.db.update_publish_job(
            row["id"],
            {
                "status": STATUS_DONE,
                "attempts": int(row.get("attempts") or 0) + 1,
                "outcome": result.outcome.value,
                "last_error": None,
                "completed_at": utc_now().isoformat(),
            },
        )

    async def fail(self, row: Dict[str, Any], error: str) -> None:
        """Dead-letter a claimed delivery with the error that ended it."""
        await self.db.update_publish_job(
            row["id"],
            {
                "status": STATUS_FAILED,
                "attempts": int(row.get("attempts") or 0) + 1,
                "last_error": error,
                "completed_at": utc_now().isoformat(),
            },
        )
        logger.warning(
            "[DISPATCHER] Delivery %s for post %s dead-lettered: %s",
            row["id"],
            row.get("post_id"),
            error,
        )

    async def recover_stuck(self, timeout_minutes: int) -> int:
        """Dead-letter deliveries claimed more than *timeout_minutes* ago.

        A worker that crashed mid-job may have already published, so stuck
        deliveries are not re-queued automatically.

        Returns:
            Number of deliveries recovered.
        """
        cutoff = utc_now() - timedelta(minutes=timeout_minutes)
        stuck = await self.db.get_stuck_publish_jobs(cutoff)

        for row in stuck:
            await self.fail(
                row,
                f"Delivery stuck in claimed for >{timeout_minutes} minutes. "
                "Check the post before re-scheduling.",
            )

        if stuck:
            logger.info(
                "[DISPATCHER] Recovery complete: %d stuck deliveries marked as failed",
                len(stuck),
            )
        return len(stuck)


__all__ = [
    "DelayedQueue",
    "STATUS_PENDING",
    "STATUS_CLAIMED",
    "STATUS_DONE",
    "STATUS_FAILED",
]
