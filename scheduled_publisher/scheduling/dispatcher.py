"""
Schedule dispatcher: turns a (post, fire time) pair into a queued delivery.

Rescheduling never cancels the earlier delivery.  Every delivery carries the
``scheduled_date`` it was created for (its stamp) and the orchestrator
ignores deliveries whose stamp no longer matches the post, so only the
latest schedule can publish.  ``cancel`` works the same way: it only moves
the post back to ``draft``.
"""

import logging
from datetime import datetime
from typing import Optional, Union

from scheduled_publisher.exceptions import CasFailed, PostMissing, SchedulingError
from scheduled_publisher.models import Post, PostStatus, ScheduledJob
from scheduled_publisher.scheduling.delayed_queue import DelayedQueue
from scheduled_publisher.utils import parse_datetime, utc_now

logger = logging.getLogger(__name__)


class ScheduleDispatcher:
    """Schedules and cancels post publication.

    Args:
        db: Database client (:class:`~scheduled_publisher.database.SupabaseDB`).
        queue: Delayed queue for deliveries.  Defaults to one over *db*.
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        queue: Optional[DelayedQueue] = None,
    ) -> None:
        self.db = db
        self.queue = queue or DelayedQueue(db)

    async def schedule(
        self,
        post_id: str,
        organization_id: str,
        fire_time: Union[datetime, str],
    ) -> ScheduledJob:
        """Schedule *post_id* to be published at *fire_time*.

        The delivery is queued before the post is updated, so a failure in
        between leaves at most a delivery that will find a stale stamp.

        Args:
            post_id: Post to publish.
            organization_id: Organization that owns the post.
            fire_time: When to publish (aware datetime or ISO-8601 string;
                naive values are taken as UTC).

        Returns:
            The queued ``ScheduledJob``.

        Raises:
            SchedulingError: Missing or past fire time, post without media,
                or post already published.
            PostMissing: If the post does not exist in the organization.
        """
        if not post_id or not organization_id or not fire_time:
            raise SchedulingError(
                "post_id, organization_id, and fire_time are required"
            )
        try:
            stamp = parse_datetime(fire_time)
        except ValueError as exc:
            raise SchedulingError(f"Invalid fire time '{fire_time}'") from exc

        if stamp <= utc_now():
            raise SchedulingError("Scheduled time must be in the future")

        post = await self._get_post(post_id)
        if post.organization_id and post.organization_id != organization_id:
            raise PostMissing(
                f"Post {post_id} not found in organization {organization_id}"
            )
        if not post.has_media:
            raise SchedulingError(
                "Post must have at least one media item to schedule"
            )
        if post.status is PostStatus.POSTED:
            raise SchedulingError("Post has already been published")

        job = ScheduledJob(
            post_id=post_id, organization_id=organization_id, stamp=stamp
        )
        await self.queue.enqueue(job, fire_at=stamp)

        await self.db.update_post(
            post_id,
            {
                "status": PostStatus.READY.value,
                "scheduled_date": stamp.isoformat(),
                "updated_at": utc_now().isoformat(),
            },
        )

        if post.scheduled_date and post.status is PostStatus.READY:
            logger.info(
                "[DISPATCHER] Post %s rescheduled from %s to %s",
                post_id,
                post.scheduled_date.isoformat(),
                stamp.isoformat(),
            )
        else:
            logger.info(
                "[DISPATCHER] Post %s scheduled for %s",
                post_id,
                stamp.isoformat(),
            )
        return job

    async def cancel(self, post_id: str) -> None:
        """Cancel the outstanding schedule of *post_id*.

        Queued deliveries stay in place and skip when they fire.

        Raises:
            PostMissing: If the post does not exist.
            SchedulingError: If the post has already been published.
        """
        if not post_id:
            raise SchedulingError("post_id is required")

        post = await self._get_post(post_id)
        if post.status is PostStatus.POSTED:
            raise SchedulingError("Post has already been published")

        try:
            await self.db.update_post(
                post_id,
                {
                    "status": PostStatus.DRAFT.value,
                    "scheduled_date": None,
                    "updated_at": utc_now().isoformat(),
                },
            )
        except CasFailed as exc:
            raise PostMissing(f"Post {post_id} not found") from exc

        logger.info("[DISPATCHER] Scheduled post %s cancelled", post_id)

    async def _get_post(self, post_id: str) -> Post:
        row = await self.db.get_post(post_id)
        if row is None:
            raise PostMissing(f"Post {post_id} not found")
        return Post.from_row(row)


__all__ = [
    "ScheduleDispatcher",
]
