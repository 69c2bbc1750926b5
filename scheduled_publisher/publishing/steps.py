"""
Checkpointed, individually retried pipeline steps.

``StepRunner.run`` executes one named step of a job:

1. If a result for ``(job_key, step_name)`` is already stored (and not
   older than the allowed age), it is returned without re-running the
   step.  A job re-delivered after a crash therefore resumes after the
   last completed step instead of re-creating containers or re-publishing.
2. Otherwise the step is run under :func:`~scheduled_publisher.utils.with_retry`
   with its own small budget, retrying only ``RETRYABLE_ERRORS``.
3. The result is persisted before it is returned.

``forget`` discards checkpoints whose results turned out to be unusable
(for example a container the provider reported as ``ERROR``), so the next
invocation runs those steps again.

Step results must be JSON-serializable (container ids, flags).
"""

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Optional

from scheduled_publisher.config import Settings, get_settings
from scheduled_publisher.exceptions import RETRYABLE_ERRORS
from scheduled_publisher.utils import parse_datetime, utc_now, with_retry

logger = logging.getLogger(__name__)


class StepRunner:
    """Runs the steps of one job against a checkpoint store.

    Args:
        store: Object exposing ``get_step_result(job_key, step_name)``,
            ``save_step_result(job_key, step_name, value)`` and
            ``delete_step_results(job_key, step_names)``
            (:class:`~scheduled_publisher.database.SupabaseDB`).
        job_key: Default checkpoint key for this job's steps.
        settings: Supplies the per-step retry budget.
        max_age: Checkpoints older than this are ignored and the step is
            re-run.  ``None`` disables the age check.
    """

    def __init__(
        self,
        store: Any,
        job_key: str,
        settings: Optional[Settings] = None,
        max_age: Optional[timedelta] = None,
    ) -> None:
        self.store = store
        self.job_key = job_key
        self.settings = settings or get_settings()
        self.max_age = max_age
        self.executed: List[str] = []
        self.resumed: List[str] = []

    async def cached(
        self, step_name: str, job_key: Optional[str] = None
    ) -> Optional[Any]:
        """Return the stored result of *step_name*, or ``None``."""
        key = job_key or self.job_key
        row = await self.store.get_step_result(key, step_name)
        if not row:
            return None

        if self.max_age is not None:
            completed_at = parse_datetime(row.get("completed_at"))
            if completed_at is None or utc_now() - completed_at > self.max_age:
                logger.info(
                    "[STEP] Ignoring stale checkpoint %s/%s (completed_at=%s)",
                    key,
                    step_name,
                    row.get("completed_at"),
                )
                return None
        return row.get("result")

    async def run(
        self,
        step_name: str,
        fn: Callable[[], Awaitable[Any]],
        job_key: Optional[str] = None,
    ) -> Any:
        """Run *fn* as step *step_name*, or return its checkpointed result.

        Raises:
            RetryExhaustedError: When a retryable error persists past the
                step's attempt budget.
            PipelineError: Any non-retryable error, on first occurrence.
        """
        key = job_key or self.job_key

        previous = await self.cached(step_name, key)
        if previous is not None:
            logger.info("[STEP] %s already completed, resuming after it", step_name)
            self.resumed.append(step_name)
            return previous

        @with_retry(
            max_attempts=self.settings.step_max_attempts,
            base_delay=self.settings.step_base_delay_seconds,
            retryable_exceptions=RETRYABLE_ERRORS,
            operation_name=step_name,
        )
        async def _attempt() -> Any:
            return await fn()

        result = await _attempt()
        await self.store.save_step_result(key, step_name, result)
        self.executed.append(step_name)
        logger.debug("[STEP] %s completed", step_name)
        return result

    @property
    def completed(self) -> List[str]:
        """Steps this runner ran or resumed."""
        return self.resumed + self.executed

    async def forget(
        self, step_names: List[str], job_key: Optional[str] = None
    ) -> None:
        """Discard the checkpoints of *step_names*."""
        if not step_names:
            return
        key = job_key or self.job_key
        await self.store.delete_step_results(key, list(step_names))
        logger.info("[STEP] Discarded checkpoints %s of %s", ", ".join(step_names), key)


__all__ = [
    "StepRunner",
]
