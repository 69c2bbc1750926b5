"""
Container readiness poller.

Video and carousel processing is asynchronous on the provider side.  The
poller checks a container's ``status_code`` at a fixed interval until it
is ``FINISHED``, fails fast on ``ERROR`` / ``EXPIRED``, and gives up with
a retryable ``ContainerNotReadyInTime`` after the overall timeout so a
job never blocks indefinitely on one container.
"""

import asyncio
import logging
import math
from typing import Optional

from scheduled_publisher.config import Settings, get_settings
from scheduled_publisher.exceptions import (
    ContainerNotPublishable,
    ContainerNotReadyInTime,
    ContainerProcessingFailed,
    ProviderUnavailable,
)
from scheduled_publisher.models import ContainerStatus
from scheduled_publisher.tools.graph_client import GraphAPIClient

logger = logging.getLogger(__name__)


class ContainerReadinessPoller:
    """Polls a container until it reaches a terminal status.

    Args:
        graph: Graph API client.
        settings: Supplies ``poll_interval_seconds`` and
            ``poll_timeout_seconds``.
    """

    def __init__(
        self,
        graph: GraphAPIClient,
        settings: Optional[Settings] = None,
    ) -> None:
        self.graph = graph
        self.settings = settings or get_settings()

    @property
    def max_polls(self) -> int:
        """Number of status checks that fit in the timeout."""
        return max(
            1,
            math.ceil(
                self.settings.poll_timeout_seconds
                / self.settings.poll_interval_seconds
            ),
        )

    async def get_container_status(
        self, access_token: str, container_id: str
    ) -> ContainerStatus:
        """Fetch the current processing status of *container_id*."""
        data = await self.graph.get(
            container_id,
            access_token,
            {"fields": "status_code,status"},
            operation="check container status",
            rejection_error=ContainerNotPublishable,
        )
        raw = data.get("status_code") or ContainerStatus.IN_PROGRESS.value
        try:
            return ContainerStatus(raw)
        except ValueError as exc:
            raise ProviderUnavailable(
                f"Unknown container status '{raw}' for {container_id}"
            ) from exc

    async def wait_for_container_ready(
        self, access_token: str, container_id: str
    ) -> None:
        """Block until *container_id* is ``FINISHED``.

        Raises:
            ContainerProcessingFailed: Provider reported ``ERROR`` or
                ``EXPIRED``.
            ContainerNotPublishable: Container was already published.
            ContainerNotReadyInTime: Still processing after the timeout.
        """
        interval = self.settings.poll_interval_seconds
        for poll in range(1, self.max_polls + 1):
            status = await self.get_container_status(access_token, container_id)

            if status is ContainerStatus.FINISHED:
                logger.info(
                    "[POLLER] Container %s ready after %d check(s)",
                    container_id,
                    poll,
                )
                return
            if status in (ContainerStatus.ERROR, ContainerStatus.EXPIRED):
                raise ContainerProcessingFailed(container_id, status.value)
            if status is ContainerStatus.PUBLISHED:
                raise ContainerNotPublishable(
                    f"Container {container_id} was already published",
                    already_published=True,
                )

            logger.debug(
                "[POLLER] Container %s still %s (check %d/%d)",
                container_id,
                status.value,
                poll,
                self.max_polls,
            )
            if poll < self.max_polls:
                await asyncio.sleep(interval)

        raise ContainerNotReadyInTime(
            container_id, self.settings.poll_timeout_seconds
        )


__all__ = [
    "ContainerReadinessPoller",
]
