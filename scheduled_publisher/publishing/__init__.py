"""Publish pipeline: container building, readiness polling, carousel, publish."""

from scheduled_publisher.publishing.carousel import CarouselAssembler
from scheduled_publisher.publishing.containers import MediaContainerBuilder
from scheduled_publisher.publishing.executor import PublishExecutor
from scheduled_publisher.publishing.orchestrator import PublishOrchestrator
from scheduled_publisher.publishing.readiness import ContainerReadinessPoller
from scheduled_publisher.publishing.steps import StepRunner

__all__ = [
    "CarouselAssembler",
    "ContainerReadinessPoller",
    "MediaContainerBuilder",
    "PublishExecutor",
    "PublishOrchestrator",
    "StepRunner",
]
