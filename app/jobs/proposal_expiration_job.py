"""
Standalone proposal expiration worker.

Runs the expiration sweeper in its own process for deployments that keep
background work out of the API container.
"""

import asyncio

from app.config import settings
from app.db.pool import db_pool
from app.features.swaps.container import build_swap_engine
from app.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def start_proposal_expiration_scheduler():
    """Start the sweeper and keep it running until the worker is cancelled."""
    setup_logging(log_level=settings.LOG_LEVEL)
    logger.info(
        "Starting proposal expiration scheduler",
        interval_minutes=settings.SWAP_EXPIRATION_CHECK_INTERVAL_MINUTES,
        batch_size=settings.SWAP_EXPIRATION_BATCH_SIZE,
    )

    await db_pool.initialize()
    engine = build_swap_engine()
    engine.sweeper.start()

    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Proposal expiration scheduler cancelled")
        raise
    finally:
        result = await engine.sweeper.stop_gracefully(
            settings.SWAP_EXPIRATION_SHUTDOWN_TIMEOUT_SECONDS
        )
        logger.info("Proposal expiration scheduler stopped", **result)
        await db_pool.close()


async def run_proposal_expiration_once() -> dict:
    """Run a single sweep and exit; suited to cron-style deployments."""
    setup_logging(log_level=settings.LOG_LEVEL)
    await db_pool.initialize()
    try:
        engine = build_swap_engine()
        metrics = await engine.sweeper.force_check()
        logger.info("One-off proposal expiration sweep finished", **metrics)
        return metrics
    finally:
        await db_pool.close()
