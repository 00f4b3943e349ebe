"""
Proposal lifecycle manager.

Owns the proposal state machine:

    pending  -> accepted | rejected | cancelled | expired
    accepted -> completed | rejected (rollback after a failed transfer)

Every transition is a check-and-set under the proposal row lock, so a user
accepting at the instant the sweeper expires the proposal gets exactly one
winner. Each transition is recorded on the notarization ledger before its
status is committed. Booking releases run on the same transaction, so when the
ledger cannot confirm they roll back with the status change and no other
proposal can take the bookings in the meantime.
"""

from collections.abc import Callable
from datetime import datetime
from typing import assert_never
from uuid import uuid4

from app.features.swaps.domain import (
    BookingOffer,
    CashOffer,
    LedgerConfirmation,
    NotarizationRecord,
    ProposalRequest,
    ProposalStatus,
    ProposalTransition,
    SwapProposal,
    TransitionKind,
    ValidationResult,
    utc_now,
)
from app.features.swaps.errors import (
    ConcurrencyConflictError,
    ErrorCode,
    ExternalDependencyError,
    ProposalRateLimitError,
    ProposalValidationError,
)
from app.features.swaps.repository import ProposalRepository
from app.features.swaps.services.collaborators import (
    NotificationDispatcher,
    OwnershipTransferError,
    OwnershipTransferService,
)
from app.features.swaps.services.eligibility import EligibilityValidator
from app.features.swaps.services.lock_manager import AssetLockManager
from app.features.swaps.services.notarization import NotarizationClient, notarize_with_retry
from app.features.swaps.services.retry import RetryPolicy, Sleep, call_with_retry
from app.features.swaps.services.targeting import TargetingService
from app.infrastructure.observability.logging import (
    get_logger,
    log_anomaly,
    proposal_log_context,
)

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"

Clock = Callable[[], datetime]
Authorize = Callable[[SwapProposal], None]


class ProposalLifecycleManager:
    def __init__(
        self,
        *,
        proposals: ProposalRepository,
        locks: AssetLockManager,
        validator: EligibilityValidator,
        targeting: TargetingService,
        notary: NotarizationClient,
        transfers: OwnershipTransferService,
        notifier: NotificationDispatcher,
        rate_limiter=None,
        retry_policy: RetryPolicy | None = None,
        clock: Clock = utc_now,
        sleep: Sleep | None = None,
    ):
        self.proposals = proposals
        self.locks = locks
        self.validator = validator
        self.targeting = targeting
        self.notary = notary
        self.transfers = transfers
        self.notifier = notifier
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_proposal(self, request: ProposalRequest) -> SwapProposal:
        """
        Validate, lock both bookings and persist a notarized pending proposal.

        Raises:
            ProposalValidationError: eligibility, terms or expiry failure
            ConcurrencyConflictError: one of the bookings is already locked
            ExternalDependencyError: creation could not be notarized
        """
        now = self.clock()

        await self._enforce_rate_limit(request.proposer_id)

        terms_check = self.validator.validate_terms(request.terms)
        if not terms_check.is_valid:
            raise self._validation_error(terms_check, "create_proposal")

        expires_at = request.terms.expires_at
        if expires_at.tzinfo is None or expires_at.utcoffset() is None:
            raise ProposalValidationError(
                ErrorCode.INVALID_EXPIRY,
                "Proposal expiry must include a timezone",
                operation="create_proposal",
            )
        if expires_at <= now:
            raise ProposalValidationError(ErrorCode.INVALID_EXPIRY, operation="create_proposal")

        match request.offer:
            case BookingOffer():
                if not request.source_swap_id:
                    raise ProposalValidationError(
                        ErrorCode.SOURCE_SWAP_REQUIRED, operation="create_proposal"
                    )
                result = await self.validator.validate(
                    request.proposer_id, request.source_swap_id, request.target_swap_id
                )
            case CashOffer(amount=amount):
                if amount is None or amount <= 0:
                    raise ProposalValidationError(
                        ErrorCode.INVALID_CASH_AMOUNT, operation="create_proposal"
                    )
                result = await self.validator.validate_cash_offer(
                    request.proposer_id, request.target_swap_id
                )
            case _:
                assert_never(request.offer)

        if not result.is_valid:
            raise self._validation_error(result, "create_proposal")

        source_booking_id = (
            result.source_swap.booking.id if isinstance(request.offer, BookingOffer) else None
        )
        target_booking_id = result.target_swap.booking.id

        proposal = SwapProposal(
            id=str(uuid4()),
            source_swap_id=request.source_swap_id if source_booking_id else None,
            target_swap_id=request.target_swap_id,
            source_booking_id=source_booking_id,
            target_booking_id=target_booking_id,
            proposer_id=request.proposer_id,
            owner_id=result.target_swap.owner_id,
            status=ProposalStatus.PENDING,
            offer=request.offer,
            terms=request.terms,
            proposed_at=now,
        )

        await self.locks.lock_pair(source_booking_id, target_booking_id, request.proposer_id)

        async def notarize_creation(pending: SwapProposal) -> str:
            confirmation = await self._notarize(
                pending, TransitionKind.CREATION, request.proposer_id, None, ProposalStatus.PENDING
            )
            return confirmation.confirmation_id

        try:
            created = await self.proposals.create(proposal, notarize_creation)
        except Exception as e:
            logger.warning(
                "Proposal creation failed, releasing bookings",
                proposal_id=proposal.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._release_quietly(
                source_booking_id, target_booking_id, request.proposer_id, "create_rollback"
            )
            raise

        if created.source_swap_id:
            await self.targeting.record_link(
                created.source_swap_id, created.target_swap_id, created.id
            )

        await self.notifier.notify(
            created.owner_id,
            "proposal_created",
            {
                "proposal_id": created.id,
                "target_swap_id": created.target_swap_id,
                "warnings": result.warnings,
            },
        )

        logger.info(
            "Proposal lifecycle started",
            proposal_id=created.id,
            proposer_id=request.proposer_id,
            offer_type="cash" if created.is_cash_offer else "booking",
            compatibility_score=(
                result.compatibility.overall_score if result.compatibility else None
            ),
        )
        return created

    # ------------------------------------------------------------------
    # Accept -> complete
    # ------------------------------------------------------------------

    async def accept_proposal(self, proposal_id: str, user_id: str) -> SwapProposal:
        """
        Accept a pending proposal and drive it to completion.

        The ownership transfer runs after acceptance is committed. If it fails
        the proposal is rolled back to rejected and both bookings released.
        """
        now = self.clock()

        def authorize(proposal: SwapProposal) -> None:
            self._require_owner(proposal, user_id)
            if proposal.target_booking_id is None:
                raise ProposalValidationError(
                    ErrorCode.TARGET_NOT_SELECTED, operation="accept_proposal"
                )
            if proposal.is_expired(now):
                raise ProposalValidationError(
                    ErrorCode.PROPOSAL_EXPIRED,
                    operation="accept_proposal",
                    details={"expires_at": proposal.terms.expires_at.isoformat()},
                )

        accepted = await self._run_transition(
            proposal_id,
            expected=ProposalStatus.PENDING,
            target=ProposalStatus.ACCEPTED,
            kind=TransitionKind.ACCEPTANCE,
            actor_id=user_id,
            authorize=authorize,
            now=now,
        )
        await self.targeting.mirror_proposal_status(accepted)
        await self.notifier.notify(
            accepted.proposer_id, "proposal_accepted", {"proposal_id": accepted.id}
        )

        try:
            transfer_id = await call_with_retry(
                lambda: self.transfers.transfer(accepted),
                policy=self.retry_policy,
                dependency="ownership_transfer",
                error_code=ErrorCode.OWNERSHIP_TRANSFER_FAILED,
                operation_name="transfer",
                retry_on=(OwnershipTransferError,),
                **self._sleep_kwargs(),
            )
        except ExternalDependencyError:
            await self._rollback_acceptance(accepted, user_id)
            raise

        try:
            completed = await self._run_transition(
                proposal_id,
                expected=ProposalStatus.ACCEPTED,
                target=ProposalStatus.COMPLETED,
                kind=TransitionKind.COMPLETION,
                actor_id=SYSTEM_ACTOR,
                transfer_confirmation_id=transfer_id,
            )
        except Exception as e:
            # Ownership already moved; reverting to rejected would contradict it
            log_anomaly(
                "completion_not_recorded",
                proposal_id=proposal_id,
                transfer_confirmation_id=transfer_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        for booking_id in (completed.source_booking_id, completed.target_booking_id):
            if booking_id is None:
                continue
            try:
                await self.locks.mark_swapped(booking_id)
            except Exception as e:
                log_anomaly(
                    "booking_not_marked_swapped",
                    proposal_id=completed.id,
                    booking_id=booking_id,
                    error=str(e),
                )

        await self.targeting.mirror_proposal_status(completed)
        for recipient in (completed.proposer_id, completed.owner_id):
            await self.notifier.notify(
                recipient,
                "swap_completed",
                {"proposal_id": completed.id, "transfer_confirmation_id": transfer_id},
            )
        return completed

    async def _rollback_acceptance(self, accepted: SwapProposal, user_id: str) -> None:
        try:
            rolled_back = await self._run_transition(
                accepted.id,
                expected=ProposalStatus.ACCEPTED,
                target=ProposalStatus.REJECTED,
                kind=TransitionKind.ROLLBACK,
                actor_id=SYSTEM_ACTOR,
                release_locks=True,
                details={"reason": "ownership_transfer_failed", "accepted_by": user_id},
            )
        except Exception as e:
            logger.error(
                "Acceptance rollback failed, proposal left accepted",
                proposal_id=accepted.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        await self.targeting.mirror_proposal_status(rolled_back)
        for recipient in (rolled_back.proposer_id, rolled_back.owner_id):
            await self.notifier.notify(recipient, "swap_failed", {"proposal_id": rolled_back.id})

    # ------------------------------------------------------------------
    # Reject / cancel / expire
    # ------------------------------------------------------------------

    async def reject_proposal(
        self, proposal_id: str, user_id: str, reason: str | None = None
    ) -> SwapProposal:
        """Owner declines a pending proposal; both bookings are released."""

        rejected = await self._run_transition(
            proposal_id,
            expected=ProposalStatus.PENDING,
            target=ProposalStatus.REJECTED,
            kind=TransitionKind.REJECTION,
            actor_id=user_id,
            authorize=lambda proposal: self._require_owner(proposal, user_id),
            release_locks=True,
            details={"reason": reason} if reason else None,
        )
        await self.targeting.mirror_proposal_status(rejected)
        await self.notifier.notify(
            rejected.proposer_id,
            "proposal_rejected",
            {"proposal_id": rejected.id, "reason": reason},
        )
        return rejected

    async def cancel_proposal(self, proposal_id: str, user_id: str) -> SwapProposal:
        """Proposer withdraws a pending proposal; both bookings are released."""

        def authorize(proposal: SwapProposal) -> None:
            if proposal.proposer_id is None or proposal.proposer_id != user_id:
                raise ProposalValidationError(
                    ErrorCode.USER_NOT_PROPOSER, operation="cancel_proposal"
                )

        cancelled = await self._run_transition(
            proposal_id,
            expected=ProposalStatus.PENDING,
            target=ProposalStatus.CANCELLED,
            kind=TransitionKind.CANCELLATION,
            actor_id=user_id,
            authorize=authorize,
            release_locks=True,
        )
        await self.targeting.mirror_proposal_status(cancelled)
        await self.notifier.notify(
            cancelled.owner_id, "proposal_cancelled", {"proposal_id": cancelled.id}
        )
        return cancelled

    async def expire_proposal(self, proposal_id: str) -> SwapProposal:
        """Expire a lapsed pending proposal. Used by the expiration sweeper."""
        now = self.clock()

        def authorize(proposal: SwapProposal) -> None:
            if not proposal.is_expired(now):
                raise ProposalValidationError(
                    ErrorCode.PROPOSAL_NOT_EXPIRED, operation="expire_proposal"
                )

        expired = await self._run_transition(
            proposal_id,
            expected=ProposalStatus.PENDING,
            target=ProposalStatus.EXPIRED,
            kind=TransitionKind.EXPIRY,
            actor_id=SYSTEM_ACTOR,
            authorize=authorize,
            release_locks=True,
            now=now,
        )
        await self.targeting.mirror_proposal_status(expired)
        for recipient in (expired.proposer_id, expired.owner_id):
            await self.notifier.notify(recipient, "proposal_expired", {"proposal_id": expired.id})
        return expired

    async def get_proposal(self, proposal_id: str) -> SwapProposal:
        proposal = await self.proposals.get(proposal_id)
        if proposal is None:
            raise ProposalValidationError(ErrorCode.PROPOSAL_NOT_FOUND, operation="get_proposal")
        return proposal

    # ------------------------------------------------------------------
    # Shared transition path
    # ------------------------------------------------------------------

    async def _run_transition(
        self,
        proposal_id: str,
        *,
        expected: ProposalStatus,
        target: ProposalStatus,
        kind: TransitionKind,
        actor_id: str,
        authorize: Authorize | None = None,
        release_locks: bool = False,
        transfer_confirmation_id: str | None = None,
        details: dict | None = None,
        now: datetime | None = None,
    ) -> SwapProposal:
        """
        Check-and-set one transition.

        Order inside the row lock: status precondition, authorization, optional
        booking release, notarization. The release shares the transaction, so
        a failure after it leaves both bookings locked.
        """
        now = now or self.clock()

        async def apply(proposal: SwapProposal, connection) -> ProposalTransition:
            if proposal.status != expected:
                raise ConcurrencyConflictError(
                    ErrorCode.PROPOSAL_NOT_PENDING
                    if expected == ProposalStatus.PENDING
                    else ErrorCode.PROPOSAL_NOT_ACCEPTED,
                    f"Proposal is {proposal.status.value}, expected {expected.value}",
                    operation=kind.value,
                    details={"proposal_id": proposal.id, "current_status": proposal.status.value},
                )

            if authorize is not None:
                authorize(proposal)

            if release_locks:
                await self.locks.unlock_pair(
                    proposal.source_booking_id,
                    proposal.target_booking_id,
                    actor_id,
                    connection=connection,
                )

            confirmation = await self._notarize(
                proposal, kind, actor_id, proposal.status, target, details=details
            )
            return ProposalTransition(
                status=target,
                kind=kind,
                reference_id=confirmation.confirmation_id,
                responded_at=now if expected == ProposalStatus.PENDING else None,
                transfer_confirmation_id=transfer_confirmation_id,
            )

        with proposal_log_context(proposal_id=proposal_id, transition=kind.value):
            return await self.proposals.transition(proposal_id, apply)

    async def _notarize(
        self,
        proposal: SwapProposal,
        kind: TransitionKind,
        actor_id: str,
        from_status: ProposalStatus | None,
        to_status: ProposalStatus,
        *,
        details: dict | None = None,
    ) -> LedgerConfirmation:
        record = NotarizationRecord(
            proposal_id=proposal.id,
            kind=kind,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            occurred_at=self.clock(),
            details={
                "source_booking_id": proposal.source_booking_id,
                "target_booking_id": proposal.target_booking_id,
                **(details or {}),
            },
        )
        return await notarize_with_retry(
            self.notary, record, self.retry_policy, sleep=self._sleep
        )

    async def _enforce_rate_limit(self, user_id: str) -> None:
        if self.rate_limiter is None:
            return

        allowed, info = await self.rate_limiter.check_proposal_rate_limit(user_id)
        if not allowed:
            logger.info("Proposal rate limit exceeded", user_id=user_id, **info)
            raise ProposalRateLimitError(retry_after=info.get("retry_after"), details=info)

    def _require_owner(self, proposal: SwapProposal, user_id: str) -> None:
        if proposal.owner_id is None:
            log_anomaly("missing_derived_owner", proposal_id=proposal.id)
        if proposal.owner_id is None or proposal.owner_id != user_id:
            raise ProposalValidationError(ErrorCode.USER_NOT_PROPOSAL_OWNER)

    def _validation_error(
        self, result: ValidationResult, operation: str
    ) -> ProposalValidationError:
        return ProposalValidationError(
            result.error_code or ErrorCode.INVALID_TERMS,
            "; ".join(result.errors) or None,
            operation=operation,
            details={"checks": result.checks, "warnings": result.warnings},
        )

    def _sleep_kwargs(self) -> dict:
        return {"sleep": self._sleep} if self._sleep is not None else {}

    async def _release_quietly(
        self, source_booking_id: str | None, target_booking_id: str, actor_id: str, step: str
    ) -> None:
        try:
            await self.locks.unlock_pair(source_booking_id, target_booking_id, actor_id)
        except Exception as e:
            log_anomaly(
                "bookings_left_locked",
                step=step,
                source_booking_id=source_booking_id,
                target_booking_id=target_booking_id,
                error=str(e),
            )

