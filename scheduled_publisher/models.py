"""
Publish pipeline data models: posts, channels, containers and jobs.

Defines the core data structures shared by the publishing and scheduling
subsystems:
- ``PostStatus`` / ``MediaType`` / ``MediaItem`` / ``Post``: the content record.
- ``ChannelProvider`` / ``Channel``: a connected destination account.
- ``ContainerStatus`` / ``VideoSubtype``: provider-side upload containers.
- ``JobState`` / ``JobOutcome`` / ``ScheduledJob`` / ``JobResult``: the
  orchestrator's unit of work and its result.

Rows coming from Supabase use snake_case column names; ``from_row``
converts a row into its dataclass.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from scheduled_publisher.utils import parse_datetime, stable_id, utc_now


# =============================================================================
# POSTS
# =============================================================================


class PostStatus(Enum):
    """Lifecycle status of a post.

    Transitions:
        IDEA -> DRAFT -> READY -> POSTED
                         READY -> DRAFT   (user cancellation)
    """

    IDEA = "idea"
    DRAFT = "draft"
    READY = "ready"
    POSTED = "posted"


class MediaType(Enum):
    """Kind of a single media item attached to a post."""

    IMAGE = "image"
    VIDEO = "video"


@dataclass
class MediaItem:
    """One media item of a post: a type tag and a publicly fetchable URL."""

    type: MediaType
    url: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaItem":
        return cls(type=MediaType(data.get("type", "image")), url=data["url"])


@dataclass
class Post:
    """A unit of content to be published.

    Attributes:
        id: Unique identifier.
        organization_id: Owning organization.
        caption: Free-text caption (may be empty).
        media: Ordered media items.
        status: Current lifecycle status.
        scheduled_date: Authoritative fire time of the outstanding schedule.
        published_content_id: Provider id of the live content once posted.
        created_at: Record creation time.
        updated_at: Last modification time (also versions step checkpoints).
        published_at: When the post went live.
    """

    id: str
    organization_id: str
    caption: str = ""
    media: List[MediaItem] = field(default_factory=list)
    status: PostStatus = PostStatus.DRAFT
    scheduled_date: Optional[datetime] = None
    published_content_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @property
    def has_media(self) -> bool:
        return len(self.media) > 0

    @property
    def is_carousel(self) -> bool:
        return len(self.media) > 1

    @property
    def version_key(self) -> str:
        """Identifier of this exact revision of the post.

        Changes whenever ``updated_at`` changes, so cached container ids
        never outlive an edit to the media or caption.
        """
        stamp = self.updated_at.isoformat() if self.updated_at else ""
        return stable_id("post-version", self.id, stamp)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Post":
        """Convert a ``posts`` row dict to a ``Post``."""
        return cls(
            id=row["id"],
            organization_id=row.get("organization_id", ""),
            caption=row.get("content") or "",
            media=[MediaItem.from_dict(m) for m in (row.get("media") or [])],
            status=PostStatus(row.get("status", "draft")),
            scheduled_date=parse_datetime(row.get("scheduled_date")),
            published_content_id=row.get("published_content_id"),
            created_at=parse_datetime(row.get("created_at")) or utc_now(),
            updated_at=parse_datetime(row.get("updated_at")),
            published_at=parse_datetime(row.get("published_at")),
        )


# =============================================================================
# CHANNELS
# =============================================================================


class ChannelProvider(Enum):
    """Supported destination providers."""

    INSTAGRAM = "instagram"


@dataclass
class Channel:
    """A connected destination account.

    Attributes:
        id: Channel identifier.
        provider: Provider tag.
        provider_account_id: Account id on the provider side.
        access_token: Encrypted long-lived access credential.
        token_expires_at: Credential expiry instant, if known.
        is_active: Whether the channel may be used for publishing.
        account_name: Display name of the account.
    """

    id: str
    provider: ChannelProvider
    provider_account_id: str
    access_token: str
    token_expires_at: Optional[datetime] = None
    is_active: bool = True
    account_name: str = ""

    @property
    def is_token_expired(self) -> bool:
        return (
            self.token_expires_at is not None
            and self.token_expires_at <= utc_now()
        )

    def is_token_expiring(self, days_threshold: int = 7) -> bool:
        """Check if the token is expired or expires within *days_threshold*.

        A channel without a known expiry is never reported as expiring.
        """
        if self.token_expires_at is None:
            return False
        return self.token_expires_at - utc_now() < timedelta(days=days_threshold)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Channel":
        """Convert a ``channels`` row dict to a ``Channel``."""
        return cls(
            id=row["id"],
            provider=ChannelProvider(row.get("provider", "instagram")),
            provider_account_id=row["provider_account_id"],
            access_token=row.get("access_token") or "",
            token_expires_at=parse_datetime(row.get("token_expires_at")),
            is_active=bool(row.get("is_active", False)),
            account_name=row.get("account_name") or "",
        )


# =============================================================================
# CONTAINERS
# =============================================================================


class ContainerStatus(Enum):
    """Provider processing status (``status_code`` field)."""

    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"
    PUBLISHED = "PUBLISHED"


class VideoSubtype(Enum):
    """``media_type`` values accepted for single-video containers."""

    REELS = "REELS"
    VIDEO = "VIDEO"
    STORIES = "STORIES"


# =============================================================================
# JOBS
# =============================================================================


class JobState(Enum):
    """States of the publish state machine."""

    FETCHING = "fetching"
    VALIDATING = "validating"
    BUILDING_CONTAINERS = "building_containers"
    AWAITING_READINESS = "awaiting_readiness"
    ASSEMBLING_CAROUSEL = "assembling_carousel"
    PUBLISHING = "publishing"
    RECORDING = "recording"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class JobOutcome(Enum):
    """How a job invocation ended."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ScheduledJob:
    """The orchestrator's unit of work for a scheduled delivery.

    Attributes:
        post_id: Post to publish.
        organization_id: Organization that owns the channel.
        stamp: ``scheduled_date`` that was authoritative at enqueue time.
    """

    post_id: str
    organization_id: str
    stamp: Optional[datetime]

    @property
    def job_id(self) -> str:
        """Deterministic id: one per (post, schedule version)."""
        stamp = self.stamp.isoformat() if self.stamp else "now"
        return stable_id("publish-job", self.post_id, stamp)


@dataclass
class JobResult:
    """Result returned by ``scheduled_publish`` / ``publish_now``.

    Attributes:
        success: ``True`` for a publish or a benign skip.
        outcome: Finer-grained result.
        post_id: Post the job was about.
        message: Human/operator-readable summary.
        state: Terminal state reached.
        published_content_id: Provider id of the live content.
        error_code: ``PipelineError.code`` of the failure, if any.
    """

    success: bool
    outcome: JobOutcome
    post_id: str
    message: str
    state: JobState
    published_content_id: Optional[str] = None
    error_code: Optional[str] = None


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "PostStatus",
    "MediaType",
    "MediaItem",
    "Post",
    "ChannelProvider",
    "Channel",
    "ContainerStatus",
    "VideoSubtype",
    "JobState",
    "JobOutcome",
    "ScheduledJob",
    "JobResult",
]
