"""Carousel assembler: wraps ready child containers in one parent container."""

import logging
from typing import List

from scheduled_publisher.exceptions import (
    InvalidMediaCount,
    MediaRejected,
    ProviderUnavailable,
)
from scheduled_publisher.tools.graph_client import GraphAPIClient

logger = logging.getLogger(__name__)

MIN_CAROUSEL_CHILDREN = 2
MAX_CAROUSEL_CHILDREN = 10


class CarouselAssembler:
    """Creates the parent container for a multi-media post."""

    def __init__(self, graph: GraphAPIClient) -> None:
        self.graph = graph

    async def create_carousel_container(
        self,
        access_token: str,
        account_id: str,
        child_container_ids: List[str],
        caption: str = "",
    ) -> str:
        """Create a carousel parent referencing *child_container_ids* in order.

        Video children must already be ``FINISHED``.

        Raises:
            InvalidMediaCount: Fewer than 2 or more than 10 children.
            MediaRejected: Provider refused the carousel.
            AuthFailure: Token rejected.
            ProviderUnavailable: Transient failure.
        """
        count = len(child_container_ids)
        if count < MIN_CAROUSEL_CHILDREN:
            raise InvalidMediaCount(
                f"A carousel needs at least {MIN_CAROUSEL_CHILDREN} items, "
                f"got {count}; use a single-item container instead"
            )
        if count > MAX_CAROUSEL_CHILDREN:
            raise InvalidMediaCount(
                f"A carousel accepts at most {MAX_CAROUSEL_CHILDREN} items, got {count}"
            )

        data = await self.graph.post(
            f"{account_id}/media",
            access_token,
            {
                "media_type": "CAROUSEL",
                "children": ",".join(child_container_ids),
                "caption": caption or "",
            },
            operation="create carousel container",
            rejection_error=MediaRejected,
        )
        container_id = data.get("id")
        if not container_id:
            raise ProviderUnavailable(
                "Carousel creation returned no container id"
            )

        logger.info(
            "[CAROUSEL] Carousel container %s created with %d children",
            container_id,
            count,
        )
        return str(container_id)


__all__ = [
    "CarouselAssembler",
    "MIN_CAROUSEL_CHILDREN",
    "MAX_CAROUSEL_CHILDREN",
]
