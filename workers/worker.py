"""Worker for the identity resolution engine.

Polls the ``identity-resolution`` task queue and executes the duplicate
detection and supplier resolution activities plus the document workflow.

Run with --local to connect to a local dev server instead of Temporal Cloud.
"""

import argparse
import asyncio
import logging

from temporalio.worker import Worker

from activities.resolution import ALL_ACTIVITIES, TASK_QUEUE, configure_services
from core.config import load_settings
from core.observability.logging import configure_logging
from temporal_client import get_temporal_client
from workflows.resolution_workflow import DocumentResolutionWorkflow

logger = logging.getLogger(__name__)


async def run_worker(local: bool = False):
    """Start a worker on the identity resolution task queue.

    Raises:
        Exception: If connection to Temporal fails
    """
    settings = load_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    configure_services(settings)

    try:
        client = await get_temporal_client(local=local)
        logger.info(f"Connected to Temporal: {client.namespace}")

        worker = Worker(
            client,
            task_queue=TASK_QUEUE,
            workflows=[DocumentResolutionWorkflow],
            activities=ALL_ACTIVITIES,
        )
        logger.info(f"Worker created for queue '{TASK_QUEUE}' ({len(ALL_ACTIVITIES)} activities)")
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Identity Resolution Temporal Worker")
    parser.add_argument(
        "--local", "-l",
        action="store_true",
        help="Connect to a local Temporal dev server (localhost:7233)"
    )

    args = parser.parse_args()
    asyncio.run(run_worker(local=args.local))


if __name__ == "__main__":
    main()
