"""
Persistence for swap proposals.

Two primitives carry the lifecycle guarantees:

- ``create`` inserts the pending row, notarizes it and stores the creation
  reference inside one transaction, so a failed notarization leaves no row.
- ``transition`` holds the proposal row (``SELECT ... FOR UPDATE``) while the
  caller checks preconditions and notarizes, then writes the new status and
  its reference together. Concurrent accept/cancel/expire calls serialize on
  the row lock and only the first sees ``pending``. Booking releases made by
  the caller on the same connection commit or roll back with the status.

Owner and proposer ids are derived from the current booking owners at read
time. A stored ``proposer_id`` is only authoritative for cash offers, which
have no source booking.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from decimal import Decimal
from typing import assert_never

from psycopg import AsyncConnection
from psycopg.types.json import Jsonb

from app.db.helpers import (
    DatabaseError,
    LockTimeoutError,
    UniqueViolationError,
    execute_query,
    fetch_all,
    fetch_one,
)
from app.db.pool import db_pool
from app.features.swaps.domain import (
    ACTIVE_PROPOSAL_STATUSES,
    BookingOffer,
    CashOffer,
    NotarizationRefs,
    ProposalStatus,
    ProposalTerms,
    ProposalTransition,
    SwapProposal,
    TransitionKind,
)
from app.features.swaps.errors import (
    ConcurrencyConflictError,
    ErrorCode,
    ProposalValidationError,
)
from app.infrastructure.observability.logging import get_logger, log_anomaly

logger = get_logger(__name__)

ApplyTransition = Callable[[SwapProposal, AsyncConnection], Awaitable[ProposalTransition]]
Notarize = Callable[[SwapProposal], Awaitable[str]]

REF_COLUMNS: dict[TransitionKind, str] = {
    TransitionKind.CREATION: "creation_ref",
    TransitionKind.ACCEPTANCE: "acceptance_ref",
    TransitionKind.REJECTION: "rejection_ref",
    TransitionKind.CANCELLATION: "cancellation_ref",
    TransitionKind.EXPIRY: "expiry_ref",
    TransitionKind.COMPLETION: "completion_ref",
    TransitionKind.ROLLBACK: "rollback_ref",
}

ACTIVE_STATUSES = sorted(status.value for status in ACTIVE_PROPOSAL_STATUSES)


class ProposalRepository:
    """Proposal rows with derived ownership and row-locked transitions."""

    SELECT_FROM = """
        SELECT
            p.id, p.source_swap_id, p.target_swap_id,
            p.source_booking_id, p.target_booking_id,
            p.proposer_id, p.status, p.offer_type, p.additional_payment,
            p.cash_amount, p.cash_currency, p.message, p.conditions, p.expires_at,
            p.creation_ref, p.acceptance_ref, p.rejection_ref, p.cancellation_ref,
            p.expiry_ref, p.completion_ref, p.rollback_ref,
            p.transfer_confirmation_id, p.proposed_at, p.responded_at, p.updated_at,
            tb.owner_id AS target_owner_id,
            sb.owner_id AS source_owner_id
        FROM swap_proposals p
        LEFT JOIN bookings tb ON tb.id = p.target_booking_id
        LEFT JOIN bookings sb ON sb.id = p.source_booking_id
    """

    @staticmethod
    def _row_to_proposal(row: dict | None) -> SwapProposal | None:
        if not row:
            return None

        proposal_id = str(row["id"])

        if row["offer_type"] == "cash":
            offer = CashOffer(
                amount=Decimal(row["cash_amount"]),
                currency=row.get("cash_currency") or "USD",
            )
            proposer_id = str(row["proposer_id"]) if row.get("proposer_id") else None
        else:
            additional = row.get("additional_payment")
            offer = BookingOffer(
                additional_payment=Decimal(additional) if additional is not None else None
            )
            proposer_id = str(row["source_owner_id"]) if row.get("source_owner_id") else None
            if proposer_id is None:
                log_anomaly(
                    "missing_derived_proposer",
                    proposal_id=proposal_id,
                    source_booking_id=str(row.get("source_booking_id")),
                )

        owner_id = str(row["target_owner_id"]) if row.get("target_owner_id") else None
        if owner_id is None and row.get("target_booking_id"):
            log_anomaly(
                "missing_derived_owner",
                proposal_id=proposal_id,
                target_booking_id=str(row["target_booking_id"]),
            )

        return SwapProposal(
            id=proposal_id,
            source_swap_id=str(row["source_swap_id"]) if row.get("source_swap_id") else None,
            target_swap_id=str(row["target_swap_id"]),
            source_booking_id=(
                str(row["source_booking_id"]) if row.get("source_booking_id") else None
            ),
            target_booking_id=(
                str(row["target_booking_id"]) if row.get("target_booking_id") else None
            ),
            proposer_id=proposer_id,
            owner_id=owner_id,
            status=ProposalStatus(row["status"]),
            offer=offer,
            terms=ProposalTerms(
                expires_at=row["expires_at"],
                message=row.get("message"),
                conditions=list(row.get("conditions") or []),
            ),
            refs=NotarizationRefs(
                creation=row.get("creation_ref"),
                acceptance=row.get("acceptance_ref"),
                rejection=row.get("rejection_ref"),
                cancellation=row.get("cancellation_ref"),
                expiry=row.get("expiry_ref"),
                completion=row.get("completion_ref"),
                rollback=row.get("rollback_ref"),
            ),
            transfer_confirmation_id=row.get("transfer_confirmation_id"),
            proposed_at=row.get("proposed_at"),
            responded_at=row.get("responded_at"),
            updated_at=row.get("updated_at"),
        )

    async def get(self, proposal_id: str) -> SwapProposal | None:
        row = await fetch_one(f"{self.SELECT_FROM} WHERE p.id = %s", (proposal_id,))
        return self._row_to_proposal(row)

    async def find_active_between(
        self, source_booking_id: str, target_booking_id: str
    ) -> SwapProposal | None:
        """Non-terminal proposal for the ordered (source, target) booking pair."""

        query = f"""
            {self.SELECT_FROM}
            WHERE p.source_booking_id = %s
              AND p.target_booking_id = %s
              AND p.status = ANY(%s)
            LIMIT 1
        """
        row = await fetch_one(query, (source_booking_id, target_booking_id, list(ACTIVE_STATUSES)))
        return self._row_to_proposal(row)

    async def find_active_cash_offer(
        self, proposer_id: str, target_booking_id: str
    ) -> SwapProposal | None:
        query = f"""
            {self.SELECT_FROM}
            WHERE p.offer_type = 'cash'
              AND p.proposer_id = %s
              AND p.target_booking_id = %s
              AND p.status = ANY(%s)
            LIMIT 1
        """
        row = await fetch_one(query, (proposer_id, target_booking_id, list(ACTIVE_STATUSES)))
        return self._row_to_proposal(row)

    async def find_expired_pending(self, now: datetime, limit: int) -> list[SwapProposal]:
        query = f"""
            {self.SELECT_FROM}
            WHERE p.status = 'pending' AND p.expires_at <= %s
            ORDER BY p.expires_at ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (now, limit))
        return [self._row_to_proposal(row) for row in rows]

    async def create(self, proposal: SwapProposal, notarize: Notarize) -> SwapProposal:
        """
        Insert a pending proposal and record its creation reference atomically.

        Raises:
            ProposalValidationError: PROPOSAL_ALREADY_EXISTS on a duplicate pending pair
            ExternalDependencyError: notarization failed; the insert is rolled back
        """
        match proposal.offer:
            case CashOffer(amount=amount, currency=currency):
                offer_type, additional, cash_amount, cash_currency = "cash", None, amount, currency
            case BookingOffer(additional_payment=additional_payment):
                offer_type, additional, cash_amount, cash_currency = (
                    "booking",
                    additional_payment,
                    None,
                    None,
                )
            case _:
                assert_never(proposal.offer)

        insert_query = """
            INSERT INTO swap_proposals (
                id, source_swap_id, target_swap_id, source_booking_id, target_booking_id,
                proposer_id, status, offer_type, additional_payment, cash_amount,
                cash_currency, message, conditions, expires_at, proposed_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, 'pending', %s, %s, %s, %s, %s, %s, %s, %s)
        """
        params = (
            proposal.id,
            proposal.source_swap_id,
            proposal.target_swap_id,
            proposal.source_booking_id,
            proposal.target_booking_id,
            proposal.proposer_id,
            offer_type,
            additional,
            cash_amount,
            cash_currency,
            proposal.terms.message,
            Jsonb(proposal.terms.conditions),
            proposal.terms.expires_at,
            proposal.proposed_at,
        )

        try:
            async with db_pool.transaction() as conn:
                await execute_query(insert_query, params, connection=conn)

                reference_id = await notarize(proposal)

                await execute_query(
                    "UPDATE swap_proposals SET creation_ref = %s, updated_at = NOW() WHERE id = %s",
                    (reference_id, proposal.id),
                    connection=conn,
                )

                row = await fetch_one(
                    f"{self.SELECT_FROM} WHERE p.id = %s", (proposal.id,), connection=conn
                )
        except UniqueViolationError as e:
            logger.info(
                "Duplicate pending proposal rejected by unique index",
                target_booking_id=proposal.target_booking_id,
                constraint=e.constraint,
            )
            raise ProposalValidationError(
                ErrorCode.PROPOSAL_ALREADY_EXISTS, operation="create_proposal"
            ) from e

        logger.info(
            "Proposal created",
            proposal_id=proposal.id,
            target_swap_id=proposal.target_swap_id,
            offer_type=offer_type,
        )
        return self._row_to_proposal(row)

    async def transition(self, proposal_id: str, apply: ApplyTransition) -> SwapProposal:
        """
        Check-and-set a proposal under its row lock.

        ``apply`` receives the locked proposal and the transaction connection,
        raises to abort, or returns the transition to persist. Status and
        notarization reference are written in the same transaction.

        Raises:
            ConcurrencyConflictError: PROPOSAL_BUSY when another transition
                holds the row past the lock timeout
        """
        async with db_pool.transaction() as conn:
            try:
                row = await fetch_one(
                    f"{self.SELECT_FROM} WHERE p.id = %s FOR UPDATE OF p",
                    (proposal_id,),
                    connection=conn,
                )
            except LockTimeoutError as e:
                logger.info("Proposal row busy", proposal_id=proposal_id)
                raise ConcurrencyConflictError(
                    ErrorCode.PROPOSAL_BUSY,
                    operation="transition",
                    details={"proposal_id": proposal_id},
                ) from e
            proposal = self._row_to_proposal(row)
            if proposal is None:
                raise ProposalValidationError(
                    ErrorCode.PROPOSAL_NOT_FOUND, operation="transition"
                )

            change = await apply(proposal, conn)

            ref_column = REF_COLUMNS[change.kind]
            updated = await execute_query(
                f"""
                UPDATE swap_proposals
                SET status = %s,
                    {ref_column} = %s,
                    responded_at = COALESCE(responded_at, %s),
                    transfer_confirmation_id = COALESCE(%s, transfer_confirmation_id),
                    updated_at = NOW()
                WHERE id = %s AND status = %s
                """,
                (
                    change.status.value,
                    change.reference_id,
                    change.responded_at,
                    change.transfer_confirmation_id,
                    proposal_id,
                    proposal.status.value,
                ),
                connection=conn,
            )
            if updated != 1:
                raise DatabaseError(
                    f"Proposal {proposal_id} changed while locked", operation="transition"
                )

            row = await fetch_one(
                f"{self.SELECT_FROM} WHERE p.id = %s", (proposal_id,), connection=conn
            )

        logger.info(
            "Proposal transitioned",
            proposal_id=proposal_id,
            from_status=proposal.status.value,
            to_status=change.status.value,
            transition=change.kind.value,
        )
        return self._row_to_proposal(row)


proposal_repository = ProposalRepository()
