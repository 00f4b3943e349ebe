import asyncio
from types import SimpleNamespace

import pytest

from app.features.swaps.domain import BookingStatus
from app.features.swaps.errors import (
    BookingNotAvailableError,
    ConcurrencyConflictError,
    ErrorCode,
    ProposalValidationError,
)


@pytest.mark.asyncio
async def test_lock_is_exclusive(world):
    locked = await world.locks.lock("b-alice", "bob")
    assert locked.status == BookingStatus.LOCKED
    assert locked.locked_by == "bob"

    with pytest.raises(BookingNotAvailableError) as exc_info:
        await world.locks.lock("b-alice", "carol")

    assert exc_info.value.details == {"booking_id": "b-alice", "current_status": "locked"}
    assert world.bookings.bookings["b-alice"].locked_by == "bob"


@pytest.mark.asyncio
async def test_lock_missing_booking_is_not_available(world):
    with pytest.raises(BookingNotAvailableError) as exc_info:
        await world.locks.lock("b-nobody", "bob")

    assert exc_info.value.details["current_status"] is None


@pytest.mark.asyncio
async def test_unlock_is_idempotent(world):
    await world.locks.lock("b-alice", "bob")

    await world.locks.unlock("b-alice", "bob")
    again = await world.locks.unlock("b-alice", "bob")

    assert again.status == BookingStatus.AVAILABLE


@pytest.mark.asyncio
async def test_unlock_missing_booking_raises(world):
    with pytest.raises(ProposalValidationError) as exc_info:
        await world.locks.unlock("b-nobody", "bob")

    assert exc_info.value.code == ErrorCode.BOOKING_NOT_FOUND


@pytest.mark.asyncio
async def test_unlock_swapped_booking_conflicts(world):
    world.bookings.bookings["b-alice"].status = BookingStatus.SWAPPED

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await world.locks.unlock("b-alice", "bob")

    assert exc_info.value.code == ErrorCode.BOOKING_ALREADY_SWAPPED


@pytest.mark.asyncio
async def test_lock_pair_is_all_or_nothing(world):
    await world.locks.lock("b-alice", "dave")

    with pytest.raises(BookingNotAvailableError):
        await world.locks.lock_pair("b-bob", "b-alice", "bob")

    assert world.booking_status("bob") == BookingStatus.AVAILABLE
    assert world.bookings.bookings["b-alice"].locked_by == "dave"


@pytest.mark.asyncio
async def test_lock_pair_skips_missing_source(world):
    await world.locks.lock_pair(None, "b-alice", "carol")

    assert world.booking_status("alice") == BookingStatus.LOCKED
    assert world.booking_status("carol") == BookingStatus.AVAILABLE


@pytest.mark.asyncio
async def test_unlock_pair_relocks_on_partial_failure(world):
    await world.locks.lock_pair("b-bob", "b-alice", "bob")
    world.bookings.bookings["b-alice"].status = BookingStatus.SWAPPED

    with pytest.raises(ConcurrencyConflictError):
        await world.locks.unlock_pair("b-bob", "b-alice", "bob")

    assert world.booking_status("bob") == BookingStatus.LOCKED


@pytest.mark.asyncio
async def test_mark_swapped_requires_lock(world):
    with pytest.raises(ConcurrencyConflictError):
        await world.locks.mark_swapped("b-alice")

    await world.locks.lock("b-alice", "bob")
    swapped = await world.locks.mark_swapped("b-alice")
    assert swapped.status == BookingStatus.SWAPPED

    again = await world.locks.mark_swapped("b-alice")
    assert again.status == BookingStatus.SWAPPED


@pytest.mark.asyncio
async def test_concurrent_locks_have_one_winner(world):
    results = await asyncio.gather(
        world.locks.lock("b-alice", "bob"),
        world.locks.lock("b-alice", "carol"),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, BookingNotAvailableError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert world.bookings.bookings["b-alice"].locked_by == winners[0].locked_by


@pytest.mark.asyncio
async def test_unlock_pair_on_a_transaction_leaves_rollback_to_it(world):
    await world.locks.lock_pair("b-bob", "b-alice", "bob")
    world.bookings.bookings["b-alice"].status = BookingStatus.SWAPPED
    transaction = SimpleNamespace(before={})

    with pytest.raises(ConcurrencyConflictError):
        await world.locks.unlock_pair("b-bob", "b-alice", "bob", connection=transaction)

    # Uncommitted release: still taken for everyone outside the transaction
    assert (await world.bookings.get("b-bob")).status == BookingStatus.LOCKED
    with pytest.raises(BookingNotAvailableError):
        await world.locks.lock("b-bob", "carol")

    world.bookings.rollback(transaction)
    assert world.booking_status("bob") == BookingStatus.LOCKED
    assert world.bookings.bookings["b-bob"].locked_by == "bob"
