"""Scheduling subsystem: schedule/cancel, durable delayed queue, dispatch worker."""

from scheduled_publisher.scheduling.delayed_queue import DelayedQueue
from scheduled_publisher.scheduling.dispatcher import ScheduleDispatcher
from scheduled_publisher.scheduling.worker import DispatchWorker

__all__ = [
    "DelayedQueue",
    "DispatchWorker",
    "ScheduleDispatcher",
]
