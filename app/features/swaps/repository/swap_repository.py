"""
Read-only access to swap listings joined with their bookings.
"""

from app.db.helpers import fetch_all, fetch_one
from app.features.swaps.domain import SwapListing, SwapStatus
from app.features.swaps.repository.booking_repository import BookingRepository


class SwapRepository:
    SELECT_COLUMNS = """
        s.id AS swap_id, s.status AS swap_status,
        b.id, b.owner_id, b.status, b.title, b.location, b.check_in, b.check_out,
        b.total_price, b.accommodation_type, b.guests, b.locked_by, b.locked_at
    """

    @staticmethod
    def _row_to_swap(row: dict | None) -> SwapListing | None:
        if not row:
            return None

        return SwapListing(
            id=str(row["swap_id"]),
            booking=BookingRepository._row_to_booking(row),
            status=SwapStatus(row["swap_status"]),
        )

    async def get(self, swap_id: str) -> SwapListing | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM swaps s
            JOIN bookings b ON b.id = s.booking_id
            WHERE s.id = %s
        """
        row = await fetch_one(query, (swap_id,))
        return self._row_to_swap(row)

    async def list_open(self, limit: int = 50, offset: int = 0) -> list[SwapListing]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM swaps s
            JOIN bookings b ON b.id = s.booking_id
            WHERE s.status = 'active' AND b.status = 'available'
            ORDER BY s.created_at DESC
            LIMIT %s OFFSET %s
        """
        rows = await fetch_all(query, (limit, offset))
        return [self._row_to_swap(row) for row in rows]


swap_repository = SwapRepository()
