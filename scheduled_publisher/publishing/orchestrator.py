"""
Scheduled publish orchestrator: the publish state machine.

Drives one post through::

    FETCHING -> VALIDATING -> BUILDING_CONTAINERS -> AWAITING_READINESS
             -> ASSEMBLING_CAROUSEL (2+ items) -> PUBLISHING -> RECORDING -> DONE

with ``SKIPPED`` (a successful no-op) reachable from ``VALIDATING`` and
the pre-publish re-check, and ``FAILED`` reachable from any step.

Safety properties:

- A scheduled job only runs if the post is still ``ready`` and its
  ``scheduled_date`` matches the job stamp within the tolerance window.
  Rescheduling or cancelling therefore turns older deliveries into no-ops.
- Container steps are checkpointed per post revision and expire with the
  provider containers. The publish step is checkpointed per post with no
  expiry, so no re-delivery can publish one post twice.
- A container the provider reports as ``ERROR``/``EXPIRED`` or refuses to
  publish has its checkpoints discarded, so the next attempt rebuilds it.
- Only one invocation at a time may call ``media_publish`` for a post: it
  must first take the per-post publish claim. A claim abandoned for longer
  than ``stuck_claim_timeout_minutes`` is taken over unless its container
  already went live.
- The ``ready -> posted`` write is conditional on the status observed at
  validation time; a lost race is a skip, not a failure.
- Non-retryable errors leave the post untouched so an operator can act.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, List, Optional

from scheduled_publisher.config import Settings, get_settings
from scheduled_publisher.exceptions import (
    AuthFailure,
    CasFailed,
    ContainerNotPublishable,
    ContainerProcessingFailed,
    NoChannel,
    PipelineError,
    PostMissing,
    PostNotPublishable,
    RetryExhaustedError,
    ValidationError,
)
from scheduled_publisher.models import (
    Channel,
    ChannelProvider,
    ContainerStatus,
    JobOutcome,
    JobResult,
    JobState,
    MediaItem,
    MediaType,
    Post,
    PostStatus,
    ScheduledJob,
    VideoSubtype,
)
from scheduled_publisher.publishing.carousel import CarouselAssembler
from scheduled_publisher.publishing.containers import MediaContainerBuilder
from scheduled_publisher.publishing.executor import PublishExecutor
from scheduled_publisher.publishing.readiness import ContainerReadinessPoller
from scheduled_publisher.publishing.steps import StepRunner
from scheduled_publisher.security.credentials import CredentialService
from scheduled_publisher.tools.graph_client import GraphAPIClient
from scheduled_publisher.utils import parse_datetime, stable_id, utc_now

logger = logging.getLogger(__name__)

# Per-post marker taken right before media_publish; holds the container id.
PUBLISH_CLAIM_STEP = "publish-claim"


@dataclass
class _JobContext:
    """Mutable state of one job invocation."""

    job: ScheduledJob
    check_stamp: bool
    state: JobState = JobState.FETCHING
    expected_status: Optional[PostStatus] = None
    access_token: str = ""
    account_id: str = ""
    history: List[JobState] = field(default_factory=list)


class PublishOrchestrator:
    """Runs scheduled and immediate publishes for posts.

    Args:
        db: Post / channel / checkpoint store
            (:class:`~scheduled_publisher.database.SupabaseDB`).
        credentials: Decrypts stored channel tokens.
        graph: Graph API client shared by the provider components.
        settings: Application settings.
        provider: Destination provider whose active channel is used.

    Usage::

        orchestrator = PublishOrchestrator(db, CredentialService())
        result = await orchestrator.scheduled_publish(
            post_id, organization_id, "2025-07-01T09:00:00+00:00"
        )
    """

    def __init__(
        self,
        db: Any,
        credentials: CredentialService,
        graph: Optional[GraphAPIClient] = None,
        settings: Optional[Settings] = None,
        provider: ChannelProvider = ChannelProvider.INSTAGRAM,
    ) -> None:
        self.db = db
        self.credentials = credentials
        self.settings = settings or get_settings()
        self.graph = graph or GraphAPIClient(self.settings)
        self.provider = provider

        self.builder = MediaContainerBuilder(self.graph)
        self.poller = ContainerReadinessPoller(self.graph, self.settings)
        self.assembler = CarouselAssembler(self.graph)
        self.executor = PublishExecutor(self.graph)

    # ================================================================
    # ENTRY POINTS
    # ================================================================

    async def scheduled_publish(
        self,
        post_id: str,
        organization_id: str,
        stamped_fire_time_iso: str,
    ) -> JobResult:
        """Publish a post for a scheduled delivery stamped with its fire time.

        Args:
            post_id: Post to publish.
            organization_id: Organization owning the channel.
            stamped_fire_time_iso: ``scheduled_date`` the delivery was
                created with (ISO-8601).

        Raises:
            ValidationError: If the stamp is not a valid ISO timestamp.
        """
        try:
            stamp = parse_datetime(stamped_fire_time_iso)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid fire-time stamp '{stamped_fire_time_iso}'"
            ) from exc
        if stamp is None:
            raise ValidationError("stamped_fire_time_iso is required")

        job = ScheduledJob(post_id=post_id, organization_id=organization_id, stamp=stamp)
        return await self._run(_JobContext(job=job, check_stamp=True))

    async def publish_now(self, post_id: str, organization_id: str) -> JobResult:
        """Publish a post immediately, without a schedule stamp.

        Any non-``posted`` post with media is publishable; failures are
        returned as descriptive ``JobResult`` messages for the caller.
        """
        job = ScheduledJob(post_id=post_id, organization_id=organization_id, stamp=None)
        return await self._run(_JobContext(job=job, check_stamp=False))

    # ================================================================
    # STATE MACHINE
    # ================================================================

    def _transition(self, ctx: _JobContext, state: JobState) -> None:
        ctx.history.append(ctx.state)
        ctx.state = state
        logger.debug("[ORCHESTRATOR] post=%s -> %s", ctx.job.post_id, state.value)

    async def _run(self, ctx: _JobContext) -> JobResult:
        post_id = ctx.job.post_id
        try:
            # -- FETCHING -------------------------------------------------
            post = await self._fetch(post_id)

            # -- VALIDATING -----------------------------------------------
            self._transition(ctx, JobState.VALIDATING)
            if ctx.check_stamp:
                skip_reason = self._skip_reason(ctx, post)
                if skip_reason:
                    return self._skipped(ctx, skip_reason)
            else:
                self._validate_immediate(post)
            ctx.expected_status = post.status

            # Containers expire provider-side; the publish record never does.
            steps = StepRunner(
                self.db,
                job_key=post.version_key,
                settings=self.settings,
                max_age=timedelta(hours=self.settings.container_ttl_hours),
            )
            publish_steps = StepRunner(
                self.db,
                job_key=stable_id("post-publish", post.id),
                settings=self.settings,
            )

            content_id = await publish_steps.cached("publish")
            if content_id is None:
                await self._load_credentials(ctx)

                # -- BUILDING / AWAITING / ASSEMBLING -----------------------
                try:
                    container_id = await self._build_final_container(ctx, steps, post)
                except ContainerProcessingFailed:
                    await steps.forget(steps.completed)
                    raise

                # -- PUBLISHING ---------------------------------------------
                skip_reason = await self._recheck_before_publish(ctx)
                if not skip_reason:
                    skip_reason = await self._claim_publish(ctx, publish_steps, container_id)
                if skip_reason:
                    return self._skipped(ctx, skip_reason)
                self._transition(ctx, JobState.PUBLISHING)
                try:
                    content_id = await publish_steps.run(
                        "publish", self._publish_step(ctx, container_id)
                    )
                except ContainerNotPublishable as exc:
                    if not exc.already_published:
                        await steps.forget(steps.completed)
                        await publish_steps.forget([PUBLISH_CLAIM_STEP])
                    raise
            else:
                logger.warning(
                    "[ORCHESTRATOR] Post %s was already published as %s; "
                    "recording only",
                    post_id,
                    content_id,
                )

            # -- RECORDING ------------------------------------------------
            self._transition(ctx, JobState.RECORDING)
            await self._record(ctx, content_id)

            self._transition(ctx, JobState.DONE)
            logger.info(
                "[ORCHESTRATOR] Post %s published (content_id=%s)",
                post_id,
                content_id,
            )
            return JobResult(
                success=True,
                outcome=JobOutcome.SUCCESS,
                post_id=post_id,
                message="Successfully published post",
                state=JobState.DONE,
                published_content_id=content_id,
            )

        except CasFailed as exc:
            return self._skipped(ctx, f"Post changed while publishing: {exc}")
        except RetryExhaustedError as exc:
            return self._failed(ctx, exc.last_error, retries_exhausted=True)
        except PipelineError as exc:
            return self._failed(ctx, exc)

    # ================================================================
    # FETCHING / VALIDATING
    # ================================================================

    async def _fetch(self, post_id: str) -> Post:
        row = await self.db.get_post(post_id)
        if row is None:
            raise PostMissing(f"Post {post_id} not found")
        return Post.from_row(row)

    def _skip_reason(self, ctx: _JobContext, post: Post) -> Optional[str]:
        """Return why a scheduled delivery must not publish, or ``None``."""
        if post.status is PostStatus.POSTED:
            return "Post was already published"
        if post.status is not PostStatus.READY:
            return f"Post is no longer scheduled (status={post.status.value})"

        stamp = ctx.job.stamp
        if post.scheduled_date is None or stamp is None:
            return "Post has no scheduled date"
        drift = abs((post.scheduled_date - stamp).total_seconds())
        if drift > self.settings.stamp_tolerance_seconds:
            return (
                f"Post was rescheduled to {post.scheduled_date.isoformat()} "
                f"(job stamp {stamp.isoformat()})"
            )

        if not post.has_media:
            return "Post has no media items"
        return None

    def _validate_immediate(self, post: Post) -> None:
        if post.status is PostStatus.POSTED:
            raise PostNotPublishable("Post has already been published")
        if not post.has_media:
            raise PostNotPublishable("Post must have at least one media item to publish")

    async def _load_credentials(self, ctx: _JobContext) -> None:
        row = await self.db.get_active_channel(
            ctx.job.organization_id, self.provider.value
        )
        if row is None:
            raise NoChannel(
                f"No active {self.provider.value} channel for organization "
                f"{ctx.job.organization_id}"
            )
        channel = Channel.from_row(row)
        if not channel.is_active:
            raise NoChannel(f"Channel {channel.id} is inactive")

        if channel.is_token_expired:
            raise AuthFailure(
                f"Access token for channel {channel.id} expired at "
                f"{channel.token_expires_at.isoformat()}"
            )
        if channel.is_token_expiring(self.settings.token_expiry_warning_days):
            logger.warning(
                "[ORCHESTRATOR] Access token for channel %s expires soon (%s)",
                channel.id,
                channel.token_expires_at.isoformat() if channel.token_expires_at else "unknown",
            )

        ctx.access_token = self.credentials.decrypt(channel.access_token)
        ctx.account_id = channel.provider_account_id

    # ================================================================
    # CONTAINERS
    # ================================================================

    async def _build_final_container(
        self, ctx: _JobContext, steps: StepRunner, post: Post
    ) -> str:
        self._transition(ctx, JobState.BUILDING_CONTAINERS)

        if not post.is_carousel:
            return await self._build_single(ctx, steps, post.media[0], post.caption)

        if self.settings.build_children_concurrently:
            child_ids = await self._build_children_concurrently(ctx, steps, post.media)
        else:
            child_ids = [
                await self._build_child(ctx, steps, index, item)
                for index, item in enumerate(post.media)
            ]

        self._transition(ctx, JobState.ASSEMBLING_CAROUSEL)
        return await steps.run(
            "carousel",
            lambda: self.assembler.create_carousel_container(
                ctx.access_token, ctx.account_id, child_ids, post.caption
            ),
        )

    async def _build_single(
        self, ctx: _JobContext, steps: StepRunner, item: MediaItem, caption: str
    ) -> str:
        if item.type is MediaType.IMAGE:
            return await steps.run(
                "container",
                lambda: self.builder.create_image_container(
                    ctx.access_token, ctx.account_id, item.url, caption
                ),
            )

        container_id = await steps.run(
            "container",
            lambda: self.builder.create_video_container(
                ctx.access_token, ctx.account_id, item.url, caption, VideoSubtype.REELS
            ),
        )
        self._transition(ctx, JobState.AWAITING_READINESS)
        await steps.run("container-ready", self._ready_step(ctx, container_id))
        return container_id

    async def _build_child(
        self, ctx: _JobContext, steps: StepRunner, index: int, item: MediaItem
    ) -> str:
        container_id = await steps.run(
            f"child-{index}",
            lambda: self.builder.create_carousel_item_container(
                ctx.access_token, ctx.account_id, item.url, item.type
            ),
        )
        if item.type is MediaType.VIDEO:
            await steps.run(f"child-{index}-ready", self._ready_step(ctx, container_id))
        return container_id

    async def _build_children_concurrently(
        self, ctx: _JobContext, steps: StepRunner, media: List[MediaItem]
    ) -> List[str]:
        """Build all carousel children at once; any failure aborts the rest."""
        tasks = [
            asyncio.ensure_future(self._build_child(ctx, steps, index, item))
            for index, item in enumerate(media)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _ready_step(self, ctx: _JobContext, container_id: str):
        async def _wait() -> bool:
            await self.poller.wait_for_container_ready(ctx.access_token, container_id)
            return True

        return _wait

    # ================================================================
    # PUBLISHING / RECORDING
    # ================================================================

    async def _recheck_before_publish(self, ctx: _JobContext) -> Optional[str]:
        """Re-read the post right before the irreversible step."""
        current = await self._fetch(ctx.job.post_id)
        if current.status is not ctx.expected_status:
            return (
                f"Post status changed to {current.status.value} "
                "before publishing"
            )
        return None

    async def _claim_publish(
        self, ctx: _JobContext, publish_steps: StepRunner, container_id: str
    ) -> Optional[str]:
        """Take the per-post publish claim, or return why this job must not publish.

        Raises:
            ContainerNotPublishable: An abandoned claim's container is
                already live.
        """
        key = publish_steps.job_key
        if await self.db.claim_step(key, PUBLISH_CLAIM_STEP, container_id):
            return None

        row = await self.db.get_step_result(key, PUBLISH_CLAIM_STEP) or {}
        claimed_at = parse_datetime(row.get("completed_at"))
        timeout = timedelta(minutes=self.settings.stuck_claim_timeout_minutes)
        if claimed_at is not None and utc_now() - claimed_at < timeout:
            return "Another publish of this post is in progress"

        abandoned = row.get("result")
        if abandoned:
            status = await self.poller.get_container_status(ctx.access_token, abandoned)
            if status is ContainerStatus.PUBLISHED:
                raise ContainerNotPublishable(
                    f"Container {abandoned} of an interrupted publish is already "
                    "live; the published content id must be recorded manually",
                    already_published=True,
                )

        logger.warning(
            "[ORCHESTRATOR] Taking over abandoned publish claim of post %s "
            "(container %s)",
            ctx.job.post_id,
            abandoned,
        )
        await self.db.save_step_result(key, PUBLISH_CLAIM_STEP, container_id)
        return None

    def _publish_step(self, ctx: _JobContext, container_id: str):
        attempts = {"count": 0}

        async def _publish() -> str:
            attempts["count"] += 1
            if attempts["count"] > 1:
                # A previous attempt may have gone live before its response was lost
                status = await self.poller.get_container_status(
                    ctx.access_token, container_id
                )
                if status is ContainerStatus.PUBLISHED:
                    raise ContainerNotPublishable(
                        f"Container {container_id} is already live; the "
                        "published content id must be recorded manually",
                        already_published=True,
                    )
            return await self.executor.publish_media_container(
                ctx.access_token, ctx.account_id, container_id
            )

        return _publish

    async def _record(self, ctx: _JobContext, content_id: str) -> None:
        now = utc_now().isoformat()
        expected = ctx.expected_status or PostStatus.READY
        await self.db.update_post(
            ctx.job.post_id,
            {
                "status": PostStatus.POSTED.value,
                "published_content_id": content_id,
                "published_at": now,
                "updated_at": now,
            },
            expected_status=expected.value,
        )

    # ================================================================
    # RESULTS
    # ================================================================

    def _skipped(self, ctx: _JobContext, reason: str) -> JobResult:
        self._transition(ctx, JobState.SKIPPED)
        logger.info("[ORCHESTRATOR] Skipping post %s: %s", ctx.job.post_id, reason)
        return JobResult(
            success=True,
            outcome=JobOutcome.SKIPPED,
            post_id=ctx.job.post_id,
            message=reason,
            state=JobState.SKIPPED,
        )

    def _failed(
        self,
        ctx: _JobContext,
        error: Exception,
        retries_exhausted: bool = False,
    ) -> JobResult:
        failed_in = ctx.state
        path = " -> ".join(s.value for s in ctx.history + [failed_in])
        self._transition(ctx, JobState.FAILED)
        code = getattr(error, "code", type(error).__name__)
        message = str(error)
        if retries_exhausted:
            message = f"{message} (retries exhausted)"

        logger.error(
            "[ORCHESTRATOR] Publishing post %s failed in %s [%s]: %s (path: %s)",
            ctx.job.post_id,
            failed_in.value,
            code,
            message,
            path,
        )
        return JobResult(
            success=False,
            outcome=JobOutcome.FAILED,
            post_id=ctx.job.post_id,
            message=message,
            state=JobState.FAILED,
            error_code=code,
        )


__all__ = [
    "PublishOrchestrator",
]
