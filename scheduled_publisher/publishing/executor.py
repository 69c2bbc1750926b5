"""
Publish executor.

The single irreversible step of the pipeline: asks the provider to make a
finished container live.  Callers must guarantee at most one successful
call per post; this module only performs the request.
"""

import logging

from scheduled_publisher.exceptions import ContainerNotPublishable
from scheduled_publisher.tools.graph_client import GraphAPIClient

logger = logging.getLogger(__name__)


class PublishExecutor:
    """Publishes finalized containers via ``/{account_id}/media_publish``."""

    def __init__(self, graph: GraphAPIClient) -> None:
        self.graph = graph

    async def publish_media_container(
        self,
        access_token: str,
        account_id: str,
        container_id: str,
    ) -> str:
        """Publish *container_id* and return the published-content id.

        Raises:
            ContainerNotPublishable: Container not ready, expired or
                already consumed.
            AuthFailure: Token rejected.
            ProviderUnavailable: Transient failure.
        """
        data = await self.graph.post(
            f"{account_id}/media_publish",
            access_token,
            {"creation_id": container_id},
            operation="publish container",
            rejection_error=ContainerNotPublishable,
        )
        content_id = data.get("id")
        if not content_id:
            # The container may already be live, so this must not be retried
            raise ContainerNotPublishable(
                f"Publishing {container_id} returned no content id",
                already_published=True,
            )

        logger.info(
            "[PUBLISH] Container %s published as %s",
            container_id,
            content_id,
        )
        return str(content_id)


__all__ = [
    "PublishExecutor",
]
