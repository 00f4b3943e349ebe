"""
Domain models for the swap proposal engine.

Plain dataclasses shared by repositories, services and the expiration job.
Ownership is never stored on a proposal as a source of truth: repositories
derive ``owner_id`` (and ``proposer_id`` for booking exchanges) from the
current booking rows every time a proposal is read.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from app.features.swaps.errors import ErrorCode


def utc_now() -> datetime:
    return datetime.now(UTC)


class BookingStatus(StrEnum):
    AVAILABLE = "available"
    LOCKED = "locked"
    SWAPPED = "swapped"


class SwapStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_SWAP_STATUSES = frozenset({SwapStatus.ACTIVE})


class ProposalStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PROPOSAL_STATUSES


TERMINAL_PROPOSAL_STATUSES = frozenset(
    {
        ProposalStatus.REJECTED,
        ProposalStatus.CANCELLED,
        ProposalStatus.EXPIRED,
        ProposalStatus.COMPLETED,
    }
)

# Statuses that still hold both bookings
ACTIVE_PROPOSAL_STATUSES = frozenset({ProposalStatus.PENDING, ProposalStatus.ACCEPTED})


class TransitionKind(StrEnum):
    CREATION = "creation"
    ACCEPTANCE = "acceptance"
    REJECTION = "rejection"
    CANCELLATION = "cancellation"
    EXPIRY = "expiry"
    COMPLETION = "completion"
    ROLLBACK = "rollback"


class TargetingStatus(StrEnum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Targeting links mirror the status of the proposal that created them
PROPOSAL_TO_TARGETING_STATUS: dict[ProposalStatus, TargetingStatus] = {
    ProposalStatus.PENDING: TargetingStatus.ACTIVE,
    ProposalStatus.ACCEPTED: TargetingStatus.ACCEPTED,
    ProposalStatus.COMPLETED: TargetingStatus.ACCEPTED,
    ProposalStatus.REJECTED: TargetingStatus.REJECTED,
    ProposalStatus.CANCELLED: TargetingStatus.CANCELLED,
    ProposalStatus.EXPIRED: TargetingStatus.CANCELLED,
}


@dataclass(slots=True)
class BookingDescriptor:
    """The subset of a booking the compatibility engine scores."""

    location: str | None = None
    check_in: date | datetime | None = None
    check_out: date | datetime | None = None
    total_price: Decimal | float | None = None
    accommodation_type: str | None = None
    guests: int | None = None


@dataclass(slots=True)
class Booking:
    """Represents a bookings row."""

    id: str
    owner_id: str | None
    status: BookingStatus
    title: str | None = None
    location: str | None = None
    check_in: date | None = None
    check_out: date | None = None
    total_price: Decimal | None = None
    accommodation_type: str | None = None
    guests: int | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None

    def to_descriptor(self) -> BookingDescriptor:
        return BookingDescriptor(
            location=self.location,
            check_in=self.check_in,
            check_out=self.check_out,
            total_price=self.total_price,
            accommodation_type=self.accommodation_type,
            guests=self.guests,
        )


@dataclass(slots=True)
class SwapListing:
    """A booking offered for swapping. Read-only to the engine."""

    id: str
    booking: Booking
    status: SwapStatus

    @property
    def owner_id(self) -> str | None:
        return self.booking.owner_id

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_SWAP_STATUSES


@dataclass(slots=True, frozen=True)
class BookingOffer:
    """Exchange of the proposer's booking, optionally with a cash top-up."""

    additional_payment: Decimal | None = None


@dataclass(slots=True, frozen=True)
class CashOffer:
    """Pure cash offer for the target booking."""

    amount: Decimal
    currency: str = "USD"


Offer = BookingOffer | CashOffer


@dataclass(slots=True)
class ProposalTerms:
    expires_at: datetime
    message: str | None = None
    conditions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class NotarizationRefs:
    """One ledger confirmation id per lifecycle transition."""

    creation: str | None = None
    acceptance: str | None = None
    rejection: str | None = None
    cancellation: str | None = None
    expiry: str | None = None
    completion: str | None = None
    rollback: str | None = None

    def get(self, kind: TransitionKind) -> str | None:
        return getattr(self, kind.value)


@dataclass(slots=True)
class SwapProposal:
    """Represents a swap_proposals row with ownership derived from bookings."""

    id: str
    target_swap_id: str
    proposer_id: str | None
    owner_id: str | None
    status: ProposalStatus
    offer: Offer
    terms: ProposalTerms
    source_swap_id: str | None = None
    source_booking_id: str | None = None
    target_booking_id: str | None = None
    refs: NotarizationRefs = field(default_factory=NotarizationRefs)
    transfer_confirmation_id: str | None = None
    proposed_at: datetime | None = None
    responded_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.terms.expires_at <= now

    @property
    def is_cash_offer(self) -> bool:
        return isinstance(self.offer, CashOffer)


@dataclass(slots=True)
class ProposalRequest:
    """Input to proposal creation."""

    proposer_id: str
    target_swap_id: str
    offer: Offer
    terms: ProposalTerms
    source_swap_id: str | None = None


@dataclass(slots=True)
class ProposalTransition:
    """What a successful check-and-set writes back to the proposal row."""

    status: ProposalStatus
    kind: TransitionKind
    reference_id: str
    responded_at: datetime | None = None
    transfer_confirmation_id: str | None = None


@dataclass(slots=True)
class NotarizationRecord:
    """Payload submitted to the notarization ledger for one transition."""

    proposal_id: str
    kind: TransitionKind
    actor_id: str
    from_status: ProposalStatus | None
    to_status: ProposalStatus
    occurred_at: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "transition": self.kind.value,
            "actorId": self.actor_id,
            "fromStatus": self.from_status.value if self.from_status else None,
            "toStatus": self.to_status.value,
            "occurredAt": self.occurred_at.isoformat(),
            "details": self.details,
        }


@dataclass(slots=True, frozen=True)
class LedgerConfirmation:
    confirmation_id: str
    timestamp: datetime


@dataclass(slots=True)
class TargetingLink:
    """Represents a swap_targets row."""

    id: str
    source_swap_id: str
    target_swap_id: str
    status: TargetingStatus
    proposal_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class TargetingView:
    """Per-swap summary of who is targeting whom."""

    swap_id: str
    incoming_targets: list[TargetingLink] = field(default_factory=list)
    outgoing_target: TargetingLink | None = None
    incoming_count: int = 0
    outgoing_count: int = 0
    has_multiple_outgoing: bool = False

    @property
    def has_accepted_link(self) -> bool:
        links = list(self.incoming_targets)
        if self.outgoing_target:
            links.append(self.outgoing_target)
        return any(link.status == TargetingStatus.ACCEPTED for link in links)


@dataclass(slots=True)
class ConsistencyIssue:
    swap_id: str
    issue_type: str
    severity: str  # "low" | "medium" | "high"
    message: str


@dataclass(slots=True)
class ConsistencyReport:
    is_consistent: bool
    issues: list[ConsistencyIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CompatibilityFactor:
    score: int
    weight: float
    status: str  # "excellent" | "good" | "fair" | "poor"
    details: str


@dataclass(slots=True)
class CompatibilityWeights:
    location: float = 0.25
    date: float = 0.20
    value: float = 0.30
    accommodation: float = 0.15
    guests: float = 0.10

    def as_dict(self) -> dict[str, float]:
        return {
            "location": self.location,
            "date": self.date,
            "value": self.value,
            "accommodation": self.accommodation,
            "guests": self.guests,
        }


@dataclass(slots=True)
class CompatibilityAnalysis:
    overall_score: int
    factors: dict[str, CompatibilityFactor]
    recommendations: list[str] = field(default_factory=list)
    potential_issues: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    checks: dict[str, bool] = field(default_factory=dict)
    error_code: ErrorCode | None = None
    compatibility: CompatibilityAnalysis | None = None
    source_swap: SwapListing | None = None
    target_swap: SwapListing | None = None

    def fail(self, check: str, code: ErrorCode, message: str) -> "ValidationResult":
        self.checks[check] = False
        self.is_valid = False
        self.error_code = code
        self.errors.append(message)
        return self
