"""
Asset lock manager.

Bookings are locked by a conditional update on their own row, so the
datastore decides the single winner when two proposals race for the same
booking. Locking fails immediately instead of waiting. Pair operations are
all-or-nothing: a partial lock or unlock is compensated before the error
reaches the caller. Releases made on a transition's connection need no
compensation; they roll back with the transaction and stay invisible to
other writers until it commits.
"""

from app.features.swaps.domain import Booking, BookingStatus
from app.features.swaps.errors import (
    BookingNotAvailableError,
    ConcurrencyConflictError,
    ErrorCode,
    ProposalValidationError,
)
from app.features.swaps.repository import BookingRepository, booking_repository
from app.infrastructure.observability.logging import get_logger, log_anomaly

logger = get_logger(__name__)


class AssetLockManager:
    def __init__(self, bookings: BookingRepository | None = None):
        self.bookings = bookings or booking_repository

    async def lock(self, booking_id: str, by_user: str) -> Booking:
        """
        Lock an available booking.

        Raises:
            BookingNotAvailableError: booking is locked, swapped or missing
        """
        booking = await self.bookings.try_lock(booking_id, by_user)
        if booking is not None:
            logger.info("Booking locked", booking_id=booking_id, locked_by=by_user)
            return booking

        current = await self.bookings.get(booking_id)
        logger.info(
            "Booking lock refused",
            booking_id=booking_id,
            requested_by=by_user,
            current_status=current.status.value if current else None,
        )
        raise BookingNotAvailableError(
            booking_id, current_status=current.status.value if current else None
        )

    async def unlock(self, booking_id: str, by_user: str, *, connection=None) -> Booking:
        """
        Release a booking. Unlocking an available booking is a no-op.

        Raises:
            ProposalValidationError: booking does not exist
            ConcurrencyConflictError: booking was already swapped
        """
        booking = await self.bookings.try_unlock(booking_id, connection=connection)
        if booking is not None:
            logger.info("Booking unlocked", booking_id=booking_id, unlocked_by=by_user)
            return booking

        current = await self.bookings.get(booking_id, connection=connection)
        if current is None:
            raise ProposalValidationError(
                ErrorCode.BOOKING_NOT_FOUND,
                f"Booking {booking_id} does not exist",
                operation="unlock",
            )

        if current.status == BookingStatus.AVAILABLE:
            logger.debug("Booking already available", booking_id=booking_id)
            return current

        # Swapped, or locked again by another writer between the update and the read
        raise ConcurrencyConflictError(
            ErrorCode.BOOKING_ALREADY_SWAPPED
            if current.status == BookingStatus.SWAPPED
            else ErrorCode.BOOKING_NOT_AVAILABLE,
            f"Booking {booking_id} could not be unlocked from status {current.status.value}",
            operation="unlock",
            details={"booking_id": booking_id, "current_status": current.status.value},
        )

    async def lock_pair(
        self, source_booking_id: str | None, target_booking_id: str | None, by_user: str
    ) -> None:
        """Lock source then target; release anything locked if a later lock fails."""
        acquired: list[str] = []
        for booking_id in (source_booking_id, target_booking_id):
            if booking_id is None:
                continue
            try:
                await self.lock(booking_id, by_user)
            except Exception:
                for locked_id in reversed(acquired):
                    await self._compensate(
                        self.unlock, locked_id, by_user, "unlock_after_failed_lock"
                    )
                raise
            acquired.append(booking_id)

    async def unlock_pair(
        self,
        source_booking_id: str | None,
        target_booking_id: str | None,
        by_user: str,
        *,
        connection=None,
    ) -> None:
        """
        Unlock source then target.

        Without a connection each release commits on its own, so anything
        released is re-locked if a later unlock fails.
        """
        released: list[str] = []
        for booking_id in (source_booking_id, target_booking_id):
            if booking_id is None:
                continue
            try:
                await self.unlock(booking_id, by_user, connection=connection)
            except Exception:
                if connection is not None:
                    raise
                for unlocked_id in reversed(released):
                    await self._compensate(
                        self.lock, unlocked_id, by_user, "relock_after_failed_unlock"
                    )
                raise
            released.append(booking_id)

    async def mark_swapped(self, booking_id: str) -> Booking:
        booking = await self.bookings.try_mark_swapped(booking_id)
        if booking is None:
            current = await self.bookings.get(booking_id)
            if current is not None and current.status == BookingStatus.SWAPPED:
                return current
            raise ConcurrencyConflictError(
                ErrorCode.BOOKING_NOT_AVAILABLE,
                f"Booking {booking_id} is not locked and cannot be marked swapped",
                operation="mark_swapped",
                details={
                    "booking_id": booking_id,
                    "current_status": current.status.value if current else None,
                },
            )

        logger.info("Booking marked swapped", booking_id=booking_id)
        return booking

    async def _compensate(self, action, booking_id: str, by_user: str, step: str) -> None:
        try:
            await action(booking_id, by_user)
        except Exception as e:
            # The original error still propagates; this booking needs manual cleanup
            log_anomaly(
                "lock_compensation_failed",
                step=step,
                booking_id=booking_id,
                error=str(e),
                error_type=type(e).__name__,
            )
