"""
Media container builder.

Turns one media item into a provider-side container resource.  Each call
is a single outbound request to the ``/{account_id}/media`` endpoint and
returns the opaque container id.  Containers are not cleaned up locally:
unpublished containers expire on the provider side.
"""

import logging
from typing import Any, Dict

from scheduled_publisher.exceptions import MediaRejected, ProviderUnavailable
from scheduled_publisher.models import MediaType, VideoSubtype
from scheduled_publisher.tools.graph_client import GraphAPIClient

logger = logging.getLogger(__name__)


class MediaContainerBuilder:
    """Creates single-item, video and carousel-child containers.

    Args:
        graph: Graph API client used for the outbound requests.
    """

    def __init__(self, graph: GraphAPIClient) -> None:
        self.graph = graph

    async def _create(
        self,
        access_token: str,
        account_id: str,
        payload: Dict[str, Any],
    ) -> str:
        data = await self.graph.post(
            f"{account_id}/media",
            access_token,
            payload,
            operation="create container",
            rejection_error=MediaRejected,
        )
        container_id = data.get("id")
        if not container_id:
            raise ProviderUnavailable(
                "Container creation returned no container id"
            )
        return str(container_id)

    async def create_image_container(
        self,
        access_token: str,
        account_id: str,
        media_url: str,
        caption: str = "",
    ) -> str:
        """Create a single-image container.

        Raises:
            MediaRejected: If the provider refuses the URL or format.
            AuthFailure: If the token is invalid or expired.
            ProviderUnavailable: On transient failures.
        """
        container_id = await self._create(
            access_token,
            account_id,
            {"image_url": media_url, "caption": caption or ""},
        )
        logger.info(
            "[CONTAINERS] Image container %s created (caption_len=%d)",
            container_id,
            len(caption or ""),
        )
        return container_id

    async def create_video_container(
        self,
        access_token: str,
        account_id: str,
        media_url: str,
        caption: str = "",
        video_subtype: VideoSubtype = VideoSubtype.REELS,
    ) -> str:
        """Create a single-video container.

        The container must reach ``FINISHED`` before it can be published;
        see :class:`~scheduled_publisher.publishing.readiness.ContainerReadinessPoller`.
        """
        container_id = await self._create(
            access_token,
            account_id,
            {
                "video_url": media_url,
                "caption": caption or "",
                "media_type": video_subtype.value,
            },
        )
        logger.info(
            "[CONTAINERS] Video container %s created (subtype=%s)",
            container_id,
            video_subtype.value,
        )
        return container_id

    async def create_carousel_item_container(
        self,
        access_token: str,
        account_id: str,
        media_url: str,
        media_type: MediaType,
    ) -> str:
        """Create a carousel child container (no caption on children)."""
        payload: Dict[str, Any] = {"is_carousel_item": "true"}
        if media_type is MediaType.VIDEO:
            payload["media_type"] = "VIDEO"
            payload["video_url"] = media_url
        else:
            payload["image_url"] = media_url

        container_id = await self._create(access_token, account_id, payload)
        logger.info(
            "[CONTAINERS] Carousel item container %s created (type=%s)",
            container_id,
            media_type.value,
        )
        return container_id


__all__ = [
    "MediaContainerBuilder",
]
