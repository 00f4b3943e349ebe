"""
Eligibility validation for new proposals.

Structural checks run in a fixed order and stop at the first hard failure.
Compatibility is advisory: a low score or a scoring failure only adds a
warning, so negotiation is never blocked by analytics.
"""

import re

from app.config import settings
from app.features.swaps.domain import ProposalTerms, SwapListing, ValidationResult
from app.features.swaps.errors import ErrorCode
from app.features.swaps.repository import (
    ProposalRepository,
    SwapRepository,
    proposal_repository,
    swap_repository,
)
from app.features.swaps.services.compatibility import CompatibilityEngine, compatibility_engine
from app.infrastructure.observability.logging import get_logger, log_anomaly

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 500
MAX_CONDITIONS = 10
MAX_CONDITION_LENGTH = 200

# Contact details must go through the platform, not the proposal text
CONTACT_PATTERNS = [
    re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+", re.IGNORECASE),
    re.compile(r"(?:\+?\d[\s().-]*){9,}"),
    re.compile(r"\b(?:whatsapp|telegram|signal|wechat|viber|skype)\b", re.IGNORECASE),
    re.compile(r"\b(?:call|text|email|contact) me (?:at|on)\b", re.IGNORECASE),
]

SPAM_PATTERNS = [
    re.compile(r"(.)\1{9,}"),
    re.compile(r"\b(?:act now|limited time|guaranteed|click here|free money)\b", re.IGNORECASE),
]


class EligibilityValidator:
    def __init__(
        self,
        swaps: SwapRepository | None = None,
        proposals: ProposalRepository | None = None,
        compatibility: CompatibilityEngine | None = None,
        warning_threshold: int | None = None,
    ):
        self.swaps = swaps or swap_repository
        self.proposals = proposals or proposal_repository
        self.compatibility = compatibility or compatibility_engine
        self.warning_threshold = (
            warning_threshold
            if warning_threshold is not None
            else settings.COMPATIBILITY_WARNING_THRESHOLD
        )

    async def validate(
        self, user_id: str, source_swap_id: str, target_swap_id: str
    ) -> ValidationResult:
        """
        Validate a booking-exchange proposal between two swaps.

        Returns a ValidationResult; only structural failures make it invalid.
        """
        result = ValidationResult()

        # (1) caller owns the source swap
        source = await self.swaps.get(source_swap_id)
        result.source_swap = source
        if source is None:
            return result.fail(
                "source_ownership",
                ErrorCode.SOURCE_SWAP_NOT_FOUND,
                f"Source swap {source_swap_id} does not exist",
            )
        if source.owner_id is None:
            log_anomaly("missing_swap_owner", swap_id=source.id, booking_id=source.booking.id)
        if source.owner_id != user_id:
            return result.fail(
                "source_ownership",
                ErrorCode.USER_NOT_SOURCE_OWNER,
                "User does not own the source swap",
            )
        result.checks["source_ownership"] = True

        # (2) source swap is open
        if not source.is_open:
            return result.fail(
                "source_open",
                ErrorCode.SOURCE_SWAP_NOT_OPEN,
                f"Source swap is {source.status.value}, not open",
            )
        result.checks["source_open"] = True

        # (3) + (4) target swap exists, is open, and belongs to someone else
        target = await self._check_target(result, user_id, target_swap_id)
        if target is None:
            return result

        # (5) no live proposal already links the two bookings
        existing = await self.proposals.find_active_between(source.booking.id, target.booking.id)
        if existing is not None:
            return result.fail(
                "no_existing_proposal",
                ErrorCode.PROPOSAL_ALREADY_EXISTS,
                "A proposal already exists between these swaps",
            )
        result.checks["no_existing_proposal"] = True

        # (6) compatibility, advisory only
        self._check_compatibility(result, source, target)

        logger.info(
            "Proposal eligibility validated",
            user_id=user_id,
            source_swap_id=source_swap_id,
            target_swap_id=target_swap_id,
            warnings=len(result.warnings),
        )
        return result

    async def validate_cash_offer(self, user_id: str, target_swap_id: str) -> ValidationResult:
        """Validate a cash offer: no source swap, so only target-side checks apply."""
        result = ValidationResult()

        target = await self._check_target(result, user_id, target_swap_id)
        if target is None:
            return result

        existing = await self.proposals.find_active_cash_offer(user_id, target.booking.id)
        if existing is not None:
            return result.fail(
                "no_existing_proposal",
                ErrorCode.PROPOSAL_ALREADY_EXISTS,
                "You already have a pending offer for this swap",
            )
        result.checks["no_existing_proposal"] = True
        return result

    def validate_terms(self, terms: ProposalTerms) -> ValidationResult:
        """Length limits and disallowed content in the message and conditions."""
        result = ValidationResult()

        message = terms.message or ""
        if len(message) > MAX_MESSAGE_LENGTH:
            return result.fail(
                "terms",
                ErrorCode.INVALID_TERMS,
                f"Message must be {MAX_MESSAGE_LENGTH} characters or fewer",
            )

        conditions = terms.conditions or []
        if len(conditions) > MAX_CONDITIONS:
            return result.fail(
                "terms", ErrorCode.INVALID_TERMS, f"At most {MAX_CONDITIONS} conditions are allowed"
            )
        for condition in conditions:
            if not isinstance(condition, str) or not condition.strip():
                return result.fail(
                    "terms", ErrorCode.INVALID_TERMS, "Conditions cannot be empty"
                )
            if len(condition) > MAX_CONDITION_LENGTH:
                return result.fail(
                    "terms",
                    ErrorCode.INVALID_TERMS,
                    f"Each condition must be {MAX_CONDITION_LENGTH} characters or fewer",
                )
        result.checks["terms"] = True

        texts = [message, *conditions]
        if any(pattern.search(text) for text in texts for pattern in CONTACT_PATTERNS):
            return result.fail(
                "content",
                ErrorCode.INAPPROPRIATE_CONTENT,
                "Proposal text cannot include contact details",
            )
        result.checks["content"] = True

        if any(pattern.search(text) for text in texts for pattern in SPAM_PATTERNS):
            result.warnings.append("Proposal text looks like spam and may be ignored")

        return result

    async def _check_target(
        self, result: ValidationResult, user_id: str, target_swap_id: str
    ) -> SwapListing | None:
        target = await self.swaps.get(target_swap_id)
        result.target_swap = target
        if target is None:
            result.fail(
                "target_open",
                ErrorCode.TARGET_SWAP_NOT_FOUND,
                f"Target swap {target_swap_id} does not exist",
            )
            return None
        if not target.is_open:
            result.fail(
                "target_open",
                ErrorCode.TARGET_SWAP_NOT_OPEN,
                f"Target swap is {target.status.value}, not open",
            )
            return None
        result.checks["target_open"] = True

        if target.owner_id is None:
            log_anomaly("missing_swap_owner", swap_id=target.id, booking_id=target.booking.id)
        if target.owner_id == user_id:
            result.fail(
                "not_own_swap",
                ErrorCode.CANNOT_PROPOSE_TO_OWN_SWAP,
                "Cannot propose to your own swap",
            )
            return None
        result.checks["not_own_swap"] = True
        return target

    def _check_compatibility(
        self, result: ValidationResult, source: SwapListing, target: SwapListing
    ) -> None:
        try:
            analysis = self.compatibility.analyze(
                source.booking.to_descriptor(), target.booking.to_descriptor()
            )
        except Exception as e:
            logger.warning(
                "Compatibility scoring failed during validation",
                source_swap_id=source.id,
                target_swap_id=target.id,
                error=str(e),
            )
            result.warnings.append("Unable to calculate compatibility")
            result.checks["compatibility"] = True
            return

        result.compatibility = analysis
        result.checks["compatibility"] = True
        if analysis.overall_score < self.warning_threshold:
            result.warnings.append(
                f"Low compatibility score ({analysis.overall_score}); "
                "the owner may be less likely to accept"
            )
