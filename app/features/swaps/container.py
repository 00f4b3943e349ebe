"""
Wiring for the swap proposal engine.

Builds the engine components from the module-level repositories and settings.
Tests construct the same components directly with in-memory collaborators.
"""

from dataclasses import dataclass

from app.config import settings
from app.features.swaps.jobs import ExpirationSweeper
from app.features.swaps.repository import (
    booking_repository,
    proposal_repository,
    swap_repository,
    targeting_repository,
)
from app.features.swaps.services import (
    AssetLockManager,
    EligibilityValidator,
    NotarizationClient,
    NotificationDispatcher,
    OwnershipTransferService,
    ProposalLifecycleManager,
    RetryPolicy,
    TargetingService,
    compatibility_engine,
)
from app.infrastructure.observability.logging import get_logger
from app.services.rate_limiter import rate_limiter

logger = get_logger(__name__)


@dataclass(slots=True)
class SwapEngine:
    validator: EligibilityValidator
    locks: AssetLockManager
    targeting: TargetingService
    lifecycle: ProposalLifecycleManager
    sweeper: ExpirationSweeper


def build_swap_engine() -> SwapEngine:
    validator = EligibilityValidator(
        swaps=swap_repository,
        proposals=proposal_repository,
        compatibility=compatibility_engine,
        warning_threshold=settings.COMPATIBILITY_WARNING_THRESHOLD,
    )
    locks = AssetLockManager(booking_repository)
    targeting = TargetingService(targeting_repository)

    lifecycle = ProposalLifecycleManager(
        proposals=proposal_repository,
        locks=locks,
        validator=validator,
        targeting=targeting,
        notary=NotarizationClient(),
        transfers=OwnershipTransferService(),
        notifier=NotificationDispatcher(),
        rate_limiter=rate_limiter,
        retry_policy=RetryPolicy.from_settings(),
    )
    sweeper = ExpirationSweeper(lifecycle, proposal_repository)

    logger.info(
        "Swap engine built",
        environment=settings.environment,
        expiration_interval_seconds=sweeper.interval_seconds,
        notifications_enabled=bool(settings.NOTIFICATION_API_URL),
    )
    return SwapEngine(
        validator=validator,
        locks=locks,
        targeting=targeting,
        lifecycle=lifecycle,
        sweeper=sweeper,
    )
