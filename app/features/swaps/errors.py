"""
Error taxonomy for the swap proposal engine.

Every failure the engine surfaces carries an ``ErrorCode`` so the caller-facing
layer can map it 1:1 to user guidance:

- ProposalValidationError: structural or authorization failure, never retried
- ConcurrencyConflictError: lock held or status precondition failed, the
  caller may retry
- ExternalDependencyError: notarization or ownership transfer exhausted its
  retries; local state has already been rolled back and the cause is chained
"""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    # Validation
    SOURCE_SWAP_NOT_FOUND = "SOURCE_SWAP_NOT_FOUND"
    USER_NOT_SOURCE_OWNER = "USER_NOT_SOURCE_OWNER"
    SOURCE_SWAP_NOT_OPEN = "SOURCE_SWAP_NOT_OPEN"
    SOURCE_SWAP_REQUIRED = "SOURCE_SWAP_REQUIRED"
    TARGET_SWAP_NOT_FOUND = "TARGET_SWAP_NOT_FOUND"
    TARGET_SWAP_NOT_OPEN = "TARGET_SWAP_NOT_OPEN"
    CANNOT_PROPOSE_TO_OWN_SWAP = "CANNOT_PROPOSE_TO_OWN_SWAP"
    PROPOSAL_ALREADY_EXISTS = "PROPOSAL_ALREADY_EXISTS"
    INVALID_EXPIRY = "INVALID_EXPIRY"
    INVALID_TERMS = "INVALID_TERMS"
    INAPPROPRIATE_CONTENT = "INAPPROPRIATE_CONTENT"
    INVALID_CASH_AMOUNT = "INVALID_CASH_AMOUNT"
    PROPOSAL_NOT_FOUND = "PROPOSAL_NOT_FOUND"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    USER_NOT_PROPOSAL_OWNER = "USER_NOT_PROPOSAL_OWNER"
    USER_NOT_PROPOSER = "USER_NOT_PROPOSER"
    TARGET_NOT_SELECTED = "TARGET_NOT_SELECTED"
    PROPOSAL_EXPIRED = "PROPOSAL_EXPIRED"
    PROPOSAL_NOT_EXPIRED = "PROPOSAL_NOT_EXPIRED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Concurrency
    BOOKING_NOT_AVAILABLE = "BOOKING_NOT_AVAILABLE"
    BOOKING_ALREADY_SWAPPED = "BOOKING_ALREADY_SWAPPED"
    PROPOSAL_NOT_PENDING = "PROPOSAL_NOT_PENDING"
    PROPOSAL_NOT_ACCEPTED = "PROPOSAL_NOT_ACCEPTED"
    PROPOSAL_BUSY = "PROPOSAL_BUSY"

    # External dependencies
    NOTARIZATION_FAILED = "NOTARIZATION_FAILED"
    OWNERSHIP_TRANSFER_FAILED = "OWNERSHIP_TRANSFER_FAILED"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.SOURCE_SWAP_NOT_FOUND: "Source swap does not exist",
    ErrorCode.USER_NOT_SOURCE_OWNER: "User does not own the source swap",
    ErrorCode.SOURCE_SWAP_NOT_OPEN: "Source swap is not open for proposals",
    ErrorCode.SOURCE_SWAP_REQUIRED: "A booking exchange needs a source swap",
    ErrorCode.TARGET_SWAP_NOT_FOUND: "Target swap does not exist",
    ErrorCode.TARGET_SWAP_NOT_OPEN: "Target swap is not open for proposals",
    ErrorCode.CANNOT_PROPOSE_TO_OWN_SWAP: "Users cannot propose to their own swap",
    ErrorCode.PROPOSAL_ALREADY_EXISTS: "A proposal already exists between these swaps",
    ErrorCode.INVALID_EXPIRY: "Proposal expiry must be in the future",
    ErrorCode.INVALID_TERMS: "Proposal terms are invalid",
    ErrorCode.INAPPROPRIATE_CONTENT: "Proposal terms contain disallowed content",
    ErrorCode.INVALID_CASH_AMOUNT: "Cash offers need a positive amount",
    ErrorCode.PROPOSAL_NOT_FOUND: "Proposal does not exist",
    ErrorCode.BOOKING_NOT_FOUND: "Booking does not exist",
    ErrorCode.USER_NOT_PROPOSAL_OWNER: "Only the owner of the target booking can respond",
    ErrorCode.USER_NOT_PROPOSER: "Only the proposer can cancel this proposal",
    ErrorCode.TARGET_NOT_SELECTED: "Proposal has no target booking yet",
    ErrorCode.PROPOSAL_EXPIRED: "Proposal has expired",
    ErrorCode.PROPOSAL_NOT_EXPIRED: "Proposal has not expired yet",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many proposals created recently",
    ErrorCode.BOOKING_NOT_AVAILABLE: "Booking is not available",
    ErrorCode.BOOKING_ALREADY_SWAPPED: "Booking has already been swapped",
    ErrorCode.PROPOSAL_NOT_PENDING: "Proposal is not pending",
    ErrorCode.PROPOSAL_NOT_ACCEPTED: "Proposal is not accepted",
    ErrorCode.PROPOSAL_BUSY: "Proposal is being updated by another request",
    ErrorCode.NOTARIZATION_FAILED: "Could not record the transition on the ledger",
    ErrorCode.OWNERSHIP_TRANSFER_FAILED: "Ownership transfer did not complete",
}

SUGGESTED_ACTIONS: dict[ErrorCode, str] = {
    ErrorCode.SOURCE_SWAP_NOT_FOUND: "Choose one of your active swaps",
    ErrorCode.USER_NOT_SOURCE_OWNER: "Choose one of your own swaps to offer",
    ErrorCode.SOURCE_SWAP_NOT_OPEN: "Reactivate your swap or choose another one",
    ErrorCode.TARGET_SWAP_NOT_FOUND: "Browse for another swap",
    ErrorCode.TARGET_SWAP_NOT_OPEN: "Browse for another swap",
    ErrorCode.CANNOT_PROPOSE_TO_OWN_SWAP: "Browse swaps listed by other users",
    ErrorCode.PROPOSAL_ALREADY_EXISTS: "Wait for a response to your existing proposal",
    ErrorCode.INVALID_EXPIRY: "Pick an expiry time in the future",
    ErrorCode.INVALID_TERMS: "Shorten the message or conditions",
    ErrorCode.INAPPROPRIATE_CONTENT: "Remove contact details from the message",
    ErrorCode.PROPOSAL_EXPIRED: "Ask the proposer to send a new proposal",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Try again later",
    ErrorCode.BOOKING_NOT_AVAILABLE: "The booking is part of another proposal; try again later",
    ErrorCode.PROPOSAL_NOT_PENDING: "Refresh the proposal to see its current status",
    ErrorCode.PROPOSAL_BUSY: "Try again in a moment",
    ErrorCode.NOTARIZATION_FAILED: "Try again in a few minutes",
    ErrorCode.OWNERSHIP_TRANSFER_FAILED: "Try again in a few minutes",
}


class SwapEngineError(Exception):
    """Base exception carrying an enumerable error code."""

    recoverable = False

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        *,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message or ERROR_MESSAGES.get(code, code.value))
        self.code = code
        self.operation = operation
        self.details = details or {}

    @property
    def suggested_action(self) -> str | None:
        return SUGGESTED_ACTIONS.get(self.code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": str(self),
            "recoverable": self.recoverable,
            "suggested_action": self.suggested_action,
            "details": self.details,
        }


class ProposalValidationError(SwapEngineError):
    """Structural or authorization failure."""


class ProposalRateLimitError(ProposalValidationError):
    def __init__(self, retry_after: int | None, details: dict[str, Any] | None = None):
        super().__init__(
            ErrorCode.RATE_LIMIT_EXCEEDED, operation="create_proposal", details=details
        )
        self.retry_after = retry_after


class ConcurrencyConflictError(SwapEngineError):
    """Another writer won the race; safe to retry after re-reading state."""

    recoverable = True


class BookingNotAvailableError(ConcurrencyConflictError):
    def __init__(self, booking_id: str, current_status: str | None = None):
        super().__init__(
            ErrorCode.BOOKING_NOT_AVAILABLE,
            f"Booking {booking_id} is not available",
            operation="lock",
            details={"booking_id": booking_id, "current_status": current_status},
        )
        self.booking_id = booking_id


class ExternalDependencyError(SwapEngineError):
    """A collaborator failed after all retries; see ``__cause__``."""

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        *,
        dependency: str,
        attempts: int,
        operation: str | None = None,
    ):
        super().__init__(
            code,
            message,
            operation=operation,
            details={"dependency": dependency, "attempts": attempts},
        )
        self.dependency = dependency
        self.attempts = attempts
