"""
Persistence layer for the swap proposal engine.
"""

from .booking_repository import BookingRepository, booking_repository
from .proposal_repository import ProposalRepository, proposal_repository
from .swap_repository import SwapRepository, swap_repository
from .targeting_repository import TargetingRepository, targeting_repository

__all__ = [
    "BookingRepository",
    "booking_repository",
    "ProposalRepository",
    "proposal_repository",
    "SwapRepository",
    "swap_repository",
    "TargetingRepository",
    "targeting_repository",
]
