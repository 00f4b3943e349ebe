"""
Persistence for booking rows.

Locks live on the booking row itself. Every state change is a single
conditional UPDATE (``WHERE status = ...``) so concurrent service instances
get exactly one winner without any in-process mutex.
"""

from app.db.helpers import LockTimeoutError, fetch_one
from app.features.swaps.domain import Booking, BookingStatus
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class BookingRepository:
    """Conditional-update primitives backing the asset lock manager."""

    SELECT_COLUMNS = """
        id, owner_id, status, title, location, check_in, check_out,
        total_price, accommodation_type, guests, locked_by, locked_at
    """

    @staticmethod
    def _row_to_booking(row: dict | None) -> Booking | None:
        if not row:
            return None

        return Booking(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]) if row.get("owner_id") else None,
            status=BookingStatus(row["status"]),
            title=row.get("title"),
            location=row.get("location"),
            check_in=row.get("check_in"),
            check_out=row.get("check_out"),
            total_price=row.get("total_price"),
            accommodation_type=row.get("accommodation_type"),
            guests=row.get("guests"),
            locked_by=str(row["locked_by"]) if row.get("locked_by") else None,
            locked_at=row.get("locked_at"),
        )

    async def get(self, booking_id: str, *, connection=None) -> Booking | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM bookings WHERE id = %s"
        row = await fetch_one(query, (booking_id,), connection=connection)
        return self._row_to_booking(row)

    async def try_lock(
        self, booking_id: str, user_id: str, *, connection=None
    ) -> Booking | None:
        """
        Lock an available booking. Returns None when another writer holds it.

        A release that is still uncommitted inside another transition holds the
        row; when the lock timeout runs out first the booking counts as taken.
        """

        query = f"""
            UPDATE bookings
            SET status = 'locked',
                locked_by = %s,
                locked_at = NOW(),
                updated_at = NOW()
            WHERE id = %s AND status = 'available'
            RETURNING {self.SELECT_COLUMNS}
        """
        try:
            row = await fetch_one(query, (user_id, booking_id), connection=connection)
        except LockTimeoutError:
            logger.info("Booking row held by another transaction", booking_id=booking_id)
            return None
        return self._row_to_booking(row)

    async def try_unlock(self, booking_id: str, *, connection=None) -> Booking | None:
        """
        Release a locked booking. Returns None when it was not locked.

        Pass the transition's connection so the release commits or rolls back
        with the proposal status change.
        """

        query = f"""
            UPDATE bookings
            SET status = 'available',
                locked_by = NULL,
                locked_at = NULL,
                updated_at = NOW()
            WHERE id = %s AND status = 'locked'
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (booking_id,), connection=connection)
        return self._row_to_booking(row)

    async def try_mark_swapped(self, booking_id: str, *, connection=None) -> Booking | None:
        query = f"""
            UPDATE bookings
            SET status = 'swapped',
                locked_by = NULL,
                locked_at = NULL,
                updated_at = NOW()
            WHERE id = %s AND status = 'locked'
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (booking_id,), connection=connection)
        return self._row_to_booking(row)


booking_repository = BookingRepository()
