"""
Ownership transfer and notification collaborators.

Transfers are required for completion and are retried by the lifecycle
manager. Notifications are best effort: failures are logged and never
interrupt a lifecycle transition.
"""

from typing import Any

import httpx

from app.config import settings
from app.features.swaps.domain import SwapProposal
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class OwnershipTransferError(Exception):
    """Transfer service failed or refused the transfer."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OwnershipTransferService:
    """HTTP client for the external ownership transfer service."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.OWNERSHIP_TRANSFER_API_URL).rstrip("/")
        self.timeout = timeout or settings.OWNERSHIP_TRANSFER_TIMEOUT_SECONDS
        self._transport = transport

    async def transfer(self, proposal: SwapProposal) -> str:
        """Transfer ownership for an accepted proposal and return the confirmation id."""
        payload = {
            "proposalId": proposal.id,
            "sourceBookingId": proposal.source_booking_id,
            "targetBookingId": proposal.target_booking_id,
            "fromUserId": proposal.owner_id,
            "toUserId": proposal.proposer_id,
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post("/transfers", json=payload)
        except httpx.RequestError as e:
            raise OwnershipTransferError(f"Transfer request failed: {e}") from e

        if response.status_code >= 400:
            raise OwnershipTransferError(
                f"Transfer service returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            confirmation_id = response.json()["confirmationId"]
        except (ValueError, KeyError, TypeError) as e:
            raise OwnershipTransferError(f"Malformed transfer response: {e}") from e

        logger.info(
            "Ownership transfer confirmed",
            proposal_id=proposal.id,
            confirmation_id=confirmation_id,
        )
        return str(confirmation_id)


class NotificationDispatcher:
    """Fire-and-forget notifications to users."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        url = base_url if base_url is not None else settings.NOTIFICATION_API_URL
        self.base_url = url.rstrip("/") if url else None
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._transport = transport

    async def notify(self, user_id: str | None, event: str, payload: dict[str, Any]) -> None:
        if not user_id:
            logger.warning("Notification skipped, no recipient", notification_event=event)
            return

        if not self.base_url:
            logger.info(
                "Notification (log only)", user_id=user_id, notification_event=event, **payload
            )
            return

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    "/notifications",
                    json={"userId": user_id, "event": event, "data": payload},
                )
            if response.status_code >= 400:
                logger.warning(
                    "Notification rejected",
                    user_id=user_id,
                    notification_event=event,
                    status_code=response.status_code,
                )
        except Exception as e:
            logger.warning(
                "Notification delivery failed",
                user_id=user_id,
                notification_event=event,
                error=str(e),
                error_type=type(e).__name__,
            )
