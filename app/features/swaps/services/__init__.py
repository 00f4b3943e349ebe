"""
Service layer for the swap proposal engine.
"""

from .collaborators import (
    NotificationDispatcher,
    OwnershipTransferError,
    OwnershipTransferService,
)
from .compatibility import CompatibilityEngine, analyze_compatibility, compatibility_engine
from .eligibility import EligibilityValidator
from .lifecycle import SYSTEM_ACTOR, ProposalLifecycleManager
from .lock_manager import AssetLockManager
from .notarization import NotarizationClient, NotarizationError, notarize_with_retry
from .retry import RetryPolicy, call_with_retry
from .targeting import TargetingService, transform_targeting_rows, validate_targeting_consistency

__all__ = [
    "AssetLockManager",
    "CompatibilityEngine",
    "EligibilityValidator",
    "NotarizationClient",
    "NotarizationError",
    "NotificationDispatcher",
    "OwnershipTransferError",
    "OwnershipTransferService",
    "ProposalLifecycleManager",
    "RetryPolicy",
    "SYSTEM_ACTOR",
    "TargetingService",
    "analyze_compatibility",
    "call_with_retry",
    "compatibility_engine",
    "notarize_with_retry",
    "transform_targeting_rows",
    "validate_targeting_consistency",
]
