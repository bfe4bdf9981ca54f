"""Temporal worker for catalog background jobs.

This worker:
- Connects to the Temporal server
- Registers the catalog job workflow and its activities
- Runs the job scheduler that promotes queued jobs once their parent completes
"""

import asyncio

from temporalio.worker import Worker

from mbs_catalog.core.config import settings
from mbs_catalog.core.database import async_session_maker, close_database, init_database
from mbs_catalog.core.embedding_client import get_embedding_client
from mbs_catalog.core.temporal_client import get_temporal_client
from mbs_catalog.services.jobs.policies import JOB_POLICIES
from mbs_catalog.services.jobs.scheduler import JobScheduler, TemporalJobDispatcher
from mbs_catalog.temporal.activities.catalog_jobs import CATALOG_JOB_ACTIVITIES
from mbs_catalog.temporal.workflows.catalog_job import CatalogJobWorkflow
from mbs_catalog.utils.logging import get_logger

logger = get_logger(__name__)


async def main():
    """Start the Temporal worker and the job scheduler."""
    temporal_host = f"{settings.temporal_host}:{settings.temporal_port}"
    task_queue = settings.temporal_task_queue
    max_activities = sum(policy.concurrency for policy in JOB_POLICIES.values())

    await init_database(auto_migrate=settings.db.auto_migrate)

    # Fail fast on an unusable embedding configuration
    embedding_client = get_embedding_client()
    if embedding_client is None:
        logger.warning("No embedding provider configured; embed jobs will complete without vectors")

    logger.info(f"Connecting to Temporal server at {temporal_host}")
    client = await get_temporal_client()
    logger.info("Successfully connected to Temporal server")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=[CatalogJobWorkflow],
        activities=CATALOG_JOB_ACTIVITIES,
        max_concurrent_activities=max_activities,
        max_concurrent_workflow_tasks=10,
    )
    scheduler = JobScheduler(
        async_session_maker,
        TemporalJobDispatcher(get_temporal_client, task_queue=task_queue),
    )

    logger.info("=" * 60)
    logger.info("Catalog Worker Started Successfully")
    logger.info("=" * 60)
    logger.info(f"Connected to: {temporal_host}")
    logger.info(f"Task Queue: {task_queue}")
    logger.info(f"Max Concurrent Activities: {max_activities}")
    logger.info(f"Registered Activities: {len(CATALOG_JOB_ACTIVITIES)}")
    logger.info("=" * 60)

    try:
        await asyncio.gather(worker.run(), scheduler.run_forever())
    finally:
        scheduler.stop()
        await close_database()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    run()
