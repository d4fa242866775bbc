"""Worker for the ERP sync workflow.

Listens on the sync task queue and executes SyncWorkflow and its activities.

Run with --queue <name> to override the queue from SYNC_TASK_QUEUE.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.sync import poll_sync_job, record_sync_outcome, submit_sync_plan
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.sync_workflow import SyncWorkflow

logger = get_logger(__name__)

SYNC_ACTIVITIES = [
    submit_sync_plan,
    poll_sync_job,
    record_sync_outcome,
]


async def run_worker(queue: str = None):
    """Start a worker on ``queue``.

    Raises:
        Exception: If connection to Temporal fails
    """
    settings = get_settings()
    task_queue = queue or settings.sync_task_queue
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal namespace: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=[SyncWorkflow],
        activities=SYNC_ACTIVITIES,
    )
    logger.info(
        f"Worker created for queue '{task_queue}'",
        extra_fields={"workflows": 1, "activities": len(SYNC_ACTIVITIES)},
    )

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
    except asyncio.CancelledError:
        logger.info("Worker cancelled")
        raise


def main():
    """Entry point for worker with CLI args."""
    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)

    parser = argparse.ArgumentParser(description="ERP Sync Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=settings.sync_task_queue,
        help=f"Task queue to poll (default: {settings.sync_task_queue})",
    )
    args = parser.parse_args()

    try:
        asyncio.run(run_worker(queue=args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
