"""
Domain layer for the swap proposal engine.
"""

from .models import (
    ACTIVE_PROPOSAL_STATUSES,
    OPEN_SWAP_STATUSES,
    PROPOSAL_TO_TARGETING_STATUS,
    TERMINAL_PROPOSAL_STATUSES,
    Booking,
    BookingDescriptor,
    BookingOffer,
    BookingStatus,
    CashOffer,
    CompatibilityAnalysis,
    CompatibilityFactor,
    CompatibilityWeights,
    ConsistencyIssue,
    ConsistencyReport,
    LedgerConfirmation,
    NotarizationRecord,
    NotarizationRefs,
    Offer,
    ProposalRequest,
    ProposalStatus,
    ProposalTerms,
    ProposalTransition,
    SwapListing,
    SwapProposal,
    SwapStatus,
    TargetingLink,
    TargetingStatus,
    TargetingView,
    TransitionKind,
    ValidationResult,
    utc_now,
)

__all__ = [
    "ACTIVE_PROPOSAL_STATUSES",
    "OPEN_SWAP_STATUSES",
    "PROPOSAL_TO_TARGETING_STATUS",
    "TERMINAL_PROPOSAL_STATUSES",
    "Booking",
    "BookingDescriptor",
    "BookingOffer",
    "BookingStatus",
    "CashOffer",
    "CompatibilityAnalysis",
    "CompatibilityFactor",
    "CompatibilityWeights",
    "ConsistencyIssue",
    "ConsistencyReport",
    "LedgerConfirmation",
    "NotarizationRecord",
    "NotarizationRefs",
    "Offer",
    "ProposalRequest",
    "ProposalStatus",
    "ProposalTerms",
    "ProposalTransition",
    "SwapListing",
    "SwapProposal",
    "SwapStatus",
    "TargetingLink",
    "TargetingStatus",
    "TargetingView",
    "TransitionKind",
    "ValidationResult",
    "utc_now",
]
