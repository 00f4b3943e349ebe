"""
Background worker entrypoint for the swap engine.

    python -m app.jobs.worker proposal_expiration        # long-running sweeper
    python -m app.jobs.worker proposal_expiration_once   # single sweep, then exit

The job name comes from the first CLI argument or WORKER_JOB.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.infrastructure.observability.logging import get_logger
from app.jobs.proposal_expiration_job import (
    run_proposal_expiration_once,
    start_proposal_expiration_scheduler,
)

logger = get_logger(__name__)

DEFAULT_JOB = "proposal_expiration"

JobCoroutine = Callable[[], Awaitable[object]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "proposal_expiration": start_proposal_expiration_scheduler,
    "proposal_expiration_once": run_proposal_expiration_once,
}


def _resolve_job_name() -> str:
    if len(sys.argv) > 1:
        return sys.argv[1]
    return os.getenv("WORKER_JOB", DEFAULT_JOB)


async def run_worker(job_name: str | None = None) -> object:
    """
    Run a registered job to completion and return what it returns.

    Raises:
        ValueError: job name is not registered
    """
    name = (job_name or _resolve_job_name()).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(
            f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}"
        )

    logger.info("Starting background worker", job=name)
    result = await job()
    if result is not None:
        logger.info("Background job finished", job=name, result=result)
    return result


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
