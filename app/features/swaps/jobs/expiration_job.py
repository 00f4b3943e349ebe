"""
Proposal expiration sweeper.

Periodically finds pending proposals whose expiry has passed and expires them
through the lifecycle manager, the same transition path users hit. The sweeper
is an explicit component: it never starts itself, and ``force_check`` runs the
exact tick the timer runs, which lets tests drive ticks deterministically.
"""

import asyncio
from datetime import datetime, timedelta

from app.config import settings
from app.features.swaps.domain import utc_now
from app.features.swaps.errors import ErrorCode, SwapEngineError
from app.features.swaps.repository import ProposalRepository
from app.features.swaps.services.lifecycle import Clock, ProposalLifecycleManager
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RECENT_ERROR_WINDOW = timedelta(minutes=10)

# Another actor resolved, extended or is still holding the proposal; the next
# sweep picks up anything left pending
SKIP_CODES = frozenset(
    {ErrorCode.PROPOSAL_NOT_PENDING, ErrorCode.PROPOSAL_NOT_EXPIRED, ErrorCode.PROPOSAL_BUSY}
)


class ExpirationSweepMetrics:
    """Metrics for a single sweep."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self.reset()

    def reset(self):
        """Reset all metrics for a new sweep."""
        self.start_time = self._clock()
        self.proposals_found = 0
        self.proposals_expired = 0
        self.proposals_skipped = 0
        self.failures = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_expired(self, proposal_id: str):
        self.proposals_expired += 1
        logger.debug("Proposal expired", proposal_id=proposal_id, job_run="proposal_expiration")

    def record_skipped(self, proposal_id: str, reason: str):
        """Another writer already moved the proposal on."""
        self.proposals_skipped += 1
        logger.info(
            "Proposal expiry skipped",
            proposal_id=proposal_id,
            reason=reason,
            job_run="proposal_expiration",
        )

    def record_failure(self, proposal_id: str, error: str, error_type: str):
        self.failures += 1
        self.errors.append(
            {
                "proposal_id": proposal_id,
                "error": error,
                "error_type": error_type,
                "timestamp": self._clock().isoformat(),
            }
        )
        logger.warning(
            "Proposal expiry failed",
            proposal_id=proposal_id,
            error=error,
            error_type=error_type,
            job_run="proposal_expiration",
        )

    def finalize(self):
        self.total_duration_seconds = (self._clock() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "proposal_expiration",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "proposals_found": self.proposals_found,
            "proposals_expired": self.proposals_expired,
            "proposals_skipped": self.proposals_skipped,
            "failures": self.failures,
            "errors_count": len(self.errors),
        }


class ExpirationSweeper:
    """
    Background sweeper for lapsed proposals.

    Running counters survive across ticks for health reporting:
    total_checks_performed, total_swaps_processed, total_failures, last_error.
    """

    def __init__(
        self,
        lifecycle: ProposalLifecycleManager,
        proposals: ProposalRepository,
        *,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
        clock: Clock = utc_now,
    ):
        self.lifecycle = lifecycle
        self.proposals = proposals
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.expiration_interval_seconds()
        )
        self.batch_size = batch_size or settings.SWAP_EXPIRATION_BATCH_SIZE
        self.clock = clock

        self.is_checking = False
        self.started_at: datetime | None = None
        self.last_check_at: datetime | None = None
        self.total_checks_performed = 0
        self.total_swaps_processed = 0
        self.total_failures = 0
        self.last_error: dict | None = None
        self.job_metrics = ExpirationSweepMetrics(clock)

        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the timer loop on the running event loop. Idempotent."""
        if self.is_running:
            logger.warning("Expiration sweeper already running")
            return

        self._stop_event = asyncio.Event()
        self.started_at = self.clock()
        self._task = asyncio.create_task(self._run_loop(), name="proposal-expiration-sweeper")
        logger.info("Expiration sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop immediately, cancelling an in-flight tick."""
        if not self._task:
            return

        if self._stop_event:
            self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiration sweeper stopped")

    async def stop_gracefully(self, timeout: float | None = None) -> dict:
        """
        Let an in-flight tick finish, then stop.

        Returns:
            {"success": bool, "timed_out": bool}
        """
        if timeout is None:
            timeout = settings.SWAP_EXPIRATION_SHUTDOWN_TIMEOUT_SECONDS
        if not self._task:
            return {"success": True, "timed_out": False}

        if self._stop_event:
            self._stop_event.set()

        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except TimeoutError:
            logger.warning("Expiration sweeper did not stop in time, cancelling", timeout=timeout)
            await self.stop()
            return {"success": False, "timed_out": True}
        except Exception as e:
            logger.error("Expiration sweeper loop ended with error", error=str(e))
            self._task = None
            return {"success": False, "timed_out": False}

        self._task = None
        logger.info("Expiration sweeper stopped gracefully")
        return {"success": True, "timed_out": False}

    async def force_check(self) -> dict:
        """Run one tick now, on the same path as the timer."""
        logger.info("Forced expiration check requested")
        return await self.run_once()

    async def run_once(self) -> dict:
        """
        Expire every lapsed pending proposal in one batch.

        Per-proposal failures are logged and counted; they never abort the batch.
        """
        if self.is_checking:
            logger.warning("Expiration check already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_checking = True
        self.job_metrics.reset()
        try:
            now = self.clock()
            try:
                lapsed = await self.proposals.find_expired_pending(now, self.batch_size)
            except Exception as e:
                self._record_error(f"Failed to load expired proposals: {e}")
                logger.error("Expiration check could not load proposals", error=str(e))
                raise

            self.job_metrics.proposals_found = len(lapsed)

            for proposal in lapsed:
                await self._expire_one(proposal.id)

            self.job_metrics.finalize()
            metrics = self.job_metrics.to_dict()
            if lapsed:
                logger.info("Expiration check completed", **metrics)
            else:
                logger.debug("Expiration check found nothing to expire")
            return metrics

        finally:
            self.total_checks_performed += 1
            self.last_check_at = self.clock()
            self.is_checking = False

    async def _expire_one(self, proposal_id: str) -> None:
        try:
            await self.lifecycle.expire_proposal(proposal_id)
        except SwapEngineError as e:
            if e.code in SKIP_CODES:
                self.job_metrics.record_skipped(proposal_id, e.code.value)
            else:
                self._fail(proposal_id, e)
        except Exception as e:
            self._fail(proposal_id, e)
        else:
            self.total_swaps_processed += 1
            self.job_metrics.record_expired(proposal_id)

    def _fail(self, proposal_id: str, e: Exception) -> None:
        self.total_failures += 1
        self.job_metrics.record_failure(proposal_id, str(e), type(e).__name__)
        self._record_error(f"Proposal {proposal_id}: {e}")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(
                    "Expiration sweep failed", error=str(e), error_type=type(e).__name__
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                continue

    def _record_error(self, message: str) -> None:
        self.last_error = {"message": message, "timestamp": self.clock()}

    def get_status(self) -> dict:
        next_check_in = None
        if self.is_running and self.last_check_at:
            elapsed = (self.clock() - self.last_check_at).total_seconds()
            next_check_in = max(0.0, self.interval_seconds - elapsed)

        return {
            "job_name": "proposal_expiration",
            "is_running": self.is_running,
            "is_checking": self.is_checking,
            "check_interval_seconds": self.interval_seconds,
            "next_check_in_seconds": next_check_in,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "total_checks_performed": self.total_checks_performed,
            "total_swaps_processed": self.total_swaps_processed,
            "total_failures": self.total_failures,
            "last_error": (
                {
                    "message": self.last_error["message"],
                    "timestamp": self.last_error["timestamp"].isoformat(),
                }
                if self.last_error
                else None
            ),
        }

    def health_check(self) -> dict:
        """
        Health of the sweeper.

        unhealthy: not running; degraded: an error in the last 10 minutes.
        """
        status = self.get_status()

        if not self.is_running:
            health = "unhealthy"
        elif self.last_error and self.clock() - self.last_error["timestamp"] < RECENT_ERROR_WINDOW:
            health = "degraded"
        else:
            health = "healthy"

        return {
            "healthy": health == "healthy",
            "status": health,
            "service": "proposal_expiration_sweeper",
            "details": status,
        }
