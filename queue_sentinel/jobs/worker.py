"""
Background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the matching entry point. ``queue_monitor`` keeps
polling; ``queue_monitor_once`` runs a single cycle for cron-style schedulers.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from queue_sentinel.config import settings
from queue_sentinel.infrastructure.observability.logging import get_logger, setup_logging
from queue_sentinel.jobs.queue_monitor_job import (
    run_queue_monitor_once,
    start_queue_monitor_scheduler,
)

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[object]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "queue_monitor": start_queue_monitor_scheduler,
    "queue_monitor_once": run_queue_monitor_once,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "queue_monitor_once").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name, environment=settings.environment)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.log_level)
    job_name = _resolve_job_name()
    try:
        asyncio.run(run_worker(job_name))
    except KeyboardInterrupt:
        logger.info("Worker stopped by user", job=job_name)


if __name__ == "__main__":
    main()
