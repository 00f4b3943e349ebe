"""
Swap proposal engine feature package.

Everything that governs a booking swap proposal lives here: the domain model,
repositories over bookings, swaps, proposals and targeting links, the
lifecycle services and the expiration sweeper.
"""

# Re-export the primary building blocks for easy access.
from .errors import (  # noqa: F401
    ConcurrencyConflictError,
    ErrorCode,
    ExternalDependencyError,
    ProposalValidationError,
    SwapEngineError,
)
from .domain.models import ProposalRequest, ProposalStatus, SwapProposal  # noqa: F401
from .services.lifecycle import ProposalLifecycleManager  # noqa: F401
from .jobs.expiration_job import ExpirationSweeper  # noqa: F401
from .container import SwapEngine, build_swap_engine  # noqa: F401
