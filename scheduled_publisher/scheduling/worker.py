"""
Background dispatch worker that delivers queued jobs at their fire times.

``DispatchWorker`` runs as an asyncio background task, periodically
taking due deliveries from the :class:`DelayedQueue`, claiming each one
atomically and handing it to the orchestrator.  Deliveries are marked
``done`` when the orchestrator published or skipped, and ``failed`` (dead
letter) otherwise.  Includes stuck-claim recovery for workers that crash
mid-job.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from scheduled_publisher.config import Settings, get_settings
from scheduled_publisher.models import JobResult
from scheduled_publisher.publishing.orchestrator import PublishOrchestrator
from scheduled_publisher.scheduling.delayed_queue import DelayedQueue

logger = logging.getLogger(__name__)


class DispatchWorker:
    """Background task that fires queued deliveries.

    Runs an asyncio loop that periodically:
    1. Fetches pending deliveries with ``fire_at <= now``.
    2. Claims each one (``pending -> claimed``); lost claims are skipped.
    3. Runs ``scheduled_publish`` with the delivery's stamp.
    4. Marks the delivery ``done`` or ``failed``.
    5. Periodically dead-letters deliveries stuck in ``claimed``.

    Args:
        queue: Delayed queue to consume.
        orchestrator: Publish orchestrator invoked per delivery.
        settings: Supplies the check interval, batch size and stuck timeout.
    """

    # How often to run stuck-claim recovery (every N check cycles)
    RECOVERY_INTERVAL_CYCLES: int = 10

    def __init__(
        self,
        queue: DelayedQueue,
        orchestrator: PublishOrchestrator,
        settings: Optional[Settings] = None,
    ) -> None:
        self.queue = queue
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self._running: bool = False
        self._cycle_count: int = 0

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Run the dispatch loop until :meth:`stop` is called or cancelled."""
        self._running = True
        self._cycle_count = 0
        interval = self.settings.dispatcher_check_interval_seconds
        logger.info("[DISPATCHER] Dispatch worker started (interval=%ds)", interval)

        while self._running:
            try:
                await self.run_once()
                self._cycle_count += 1

                if self._cycle_count % self.RECOVERY_INTERVAL_CYCLES == 0:
                    await self._recover_stuck()

            except asyncio.CancelledError:
                logger.info("[DISPATCHER] Dispatch worker cancelled")
                break
            except Exception:
                logger.exception("[DISPATCHER] Unexpected error in dispatch loop")

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                logger.info("[DISPATCHER] Dispatch worker sleep cancelled")
                break

        logger.info("[DISPATCHER] Dispatch worker stopped")

    async def stop(self) -> None:
        """Ask the loop in :meth:`start` to exit after the current cycle."""
        self._running = False
        logger.info("[DISPATCHER] Dispatch worker stop requested")

    # ================================================================
    # CORE CHECK LOOP
    # ================================================================

    async def run_once(self) -> int:
        """Deliver every due job once.

        Returns:
            Number of deliveries this worker claimed and handled.
        """
        due = await self.queue.due(self.settings.dispatcher_batch_size)
        if not due:
            return 0

        logger.info("[DISPATCHER] Found %d due deliveries", len(due))

        handled = 0
        for row in due:
            claimed = await self.queue.claim(row["id"])
            if not claimed:
                logger.debug(
                    "[DISPATCHER] Delivery %s already claimed, skipping", row["id"]
                )
                continue

            await self._deliver(row)
            handled += 1
        return handled

    async def _deliver(self, row: Dict[str, Any]) -> None:
        try:
            result = await self._invoke(row)
        except Exception as exc:
            logger.exception(
                "[DISPATCHER] Delivery %s for post %s raised",
                row["id"],
                row.get("post_id"),
            )
            await self.queue.fail(row, f"{type(exc).__name__}: {exc}")
            return

        if result.success:
            await self.queue.complete(row, result)
        else:
            await self.queue.fail(row, f"[{result.error_code}] {result.message}")

    async def _invoke(self, row: Dict[str, Any]) -> JobResult:
        return await self.orchestrator.scheduled_publish(
            row["post_id"],
            row["organization_id"],
            row.get("stamp") or "",
        )

    # ================================================================
    # RECOVERY
    # ================================================================

    async def _recover_stuck(self) -> None:
        logger.debug("[DISPATCHER] Running stuck-claim recovery check")
        await self.queue.recover_stuck(self.settings.stuck_claim_timeout_minutes)


__all__ = [
    "DispatchWorker",
]
