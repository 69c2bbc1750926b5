"""External service clients."""

from scheduled_publisher.tools.graph_client import GraphAPIClient

__all__ = [
    "GraphAPIClient",
]
