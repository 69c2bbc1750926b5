"""
Entry point: run the dispatch worker that publishes scheduled posts.

Usage::

    python run.py
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from scheduled_publisher.config import get_settings, validate_env  # noqa: E402

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run")


async def main() -> None:
    from scheduled_publisher.database import SupabaseDB
    from scheduled_publisher.publishing import PublishOrchestrator
    from scheduled_publisher.scheduling import DelayedQueue, DispatchWorker
    from scheduled_publisher.security import CredentialService
    from scheduled_publisher.tools import GraphAPIClient

    validate_env(strict=True)
    settings = get_settings()

    db = await SupabaseDB.create()
    orchestrator = PublishOrchestrator(
        db,
        CredentialService(),
        graph=GraphAPIClient(settings),
        settings=settings,
    )
    worker = DispatchWorker(DelayedQueue(db), orchestrator, settings)

    logger.info("Graph API: %s", settings.graph_api_root)
    try:
        await worker.start()
    finally:
        await worker.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
