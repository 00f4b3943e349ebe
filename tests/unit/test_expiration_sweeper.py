import asyncio

import pytest

from app.features.swaps.domain import BookingStatus, ProposalStatus, TransitionKind


async def _propose(world, proposer, owner, **kwargs):
    return await world.lifecycle.create_proposal(world.booking_request(proposer, owner, **kwargs))


@pytest.mark.asyncio
async def test_tick_expires_lapsed_proposals_and_releases_bookings(world):
    proposal = await _propose(world, "bob", "alice")
    world.clock.advance(days=4)

    metrics = await world.sweeper.force_check()

    assert metrics["proposals_found"] == 1
    assert metrics["proposals_expired"] == 1
    assert world.proposals.rows[proposal.id].status == ProposalStatus.EXPIRED
    assert world.proposals.rows[proposal.id].refs.expiry is not None
    assert world.booking_status("alice") == BookingStatus.AVAILABLE
    assert world.booking_status("bob") == BookingStatus.AVAILABLE
    assert world.notifier.events_for("alice")[-1] == "proposal_expired"
    assert world.notifier.events_for("bob")[-1] == "proposal_expired"
    assert world.sweeper.total_swaps_processed == 1
    assert world.sweeper.total_checks_performed == 1


@pytest.mark.asyncio
async def test_tick_leaves_unexpired_proposals_alone(world):
    proposal = await _propose(world, "bob", "alice")
    world.clock.advance(days=1)

    metrics = await world.sweeper.run_once()

    assert metrics["proposals_found"] == 0
    assert world.proposals.rows[proposal.id].status == ProposalStatus.PENDING


@pytest.mark.asyncio
async def test_one_failure_does_not_abort_the_batch(world):
    failing = await _propose(world, "bob", "alice")
    healthy = await _propose(world, "dave", "carol")
    world.clock.advance(days=4)
    world.notary.fail_when = lambda record: (
        record.proposal_id == failing.id and record.kind == TransitionKind.EXPIRY
    )

    metrics = await world.sweeper.run_once()

    assert metrics["proposals_expired"] == 1
    assert metrics["failures"] == 1
    assert world.proposals.rows[healthy.id].status == ProposalStatus.EXPIRED
    assert world.proposals.rows[failing.id].status == ProposalStatus.PENDING
    # The release rolled back with the failed expiry
    assert world.booking_status("alice") == BookingStatus.LOCKED
    assert world.booking_status("bob") == BookingStatus.LOCKED
    assert world.sweeper.total_failures == 1
    assert failing.id in world.sweeper.last_error["message"]


@pytest.mark.asyncio
async def test_unlock_failure_is_counted_and_batch_continues(world):
    broken = await _propose(world, "bob", "alice")
    healthy = await _propose(world, "dave", "carol")
    world.clock.advance(days=4)
    world.bookings.bookings["b-alice"].status = BookingStatus.SWAPPED

    metrics = await world.sweeper.run_once()

    assert metrics["proposals_expired"] == 1
    assert metrics["failures"] == 1
    assert world.sweeper.total_swaps_processed == 1
    assert world.proposals.rows[broken.id].status == ProposalStatus.PENDING
    assert world.proposals.rows[healthy.id].status == ProposalStatus.EXPIRED
    assert world.booking_status("bob") == BookingStatus.LOCKED


@pytest.mark.asyncio
async def test_proposal_resolved_by_someone_else_is_skipped(world):
    proposal = await _propose(world, "bob", "alice")
    world.clock.advance(days=4)
    lapsed = await world.proposals.find_expired_pending(world.clock(), 10)
    await world.lifecycle.cancel_proposal(proposal.id, "bob")

    async def stale_batch(now, limit):
        return lapsed

    world.sweeper.proposals.find_expired_pending = stale_batch

    metrics = await world.sweeper.run_once()

    assert metrics["proposals_skipped"] == 1
    assert metrics["failures"] == 0
    assert world.proposals.rows[proposal.id].status == ProposalStatus.CANCELLED


@pytest.mark.asyncio
async def test_proposal_held_by_another_transition_is_skipped(world):
    busy = await _propose(world, "bob", "alice")
    free = await _propose(world, "dave", "carol")
    world.clock.advance(days=4)
    world.proposals.busy.add(busy.id)

    metrics = await world.sweeper.run_once()

    assert metrics["proposals_skipped"] == 1
    assert metrics["proposals_expired"] == 1
    assert metrics["failures"] == 0
    assert world.sweeper.total_failures == 0
    assert world.sweeper.last_error is None
    assert world.proposals.rows[busy.id].status == ProposalStatus.PENDING
    assert world.proposals.rows[free.id].status == ProposalStatus.EXPIRED

    world.proposals.busy.clear()
    metrics = await world.sweeper.run_once()

    assert metrics["proposals_expired"] == 1
    assert world.proposals.rows[busy.id].status == ProposalStatus.EXPIRED



@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(world):
    world.sweeper.is_checking = True

    result = await world.sweeper.run_once()

    assert result == {"skipped": True, "reason": "already_running"}
    assert world.sweeper.total_checks_performed == 0


@pytest.mark.asyncio
async def test_health_reflects_lifecycle(world):
    sweeper = world.sweeper
    assert sweeper.health_check()["status"] == "unhealthy"

    sweeper.start()
    await asyncio.sleep(0)
    assert sweeper.is_running
    assert sweeper.health_check()["status"] == "healthy"

    sweeper.last_error = {"message": "boom", "timestamp": world.clock()}
    assert sweeper.health_check()["status"] == "degraded"

    world.clock.advance(minutes=11)
    assert sweeper.health_check()["status"] == "healthy"

    result = await sweeper.stop_gracefully(timeout=1)
    assert result == {"success": True, "timed_out": False}
    assert not sweeper.is_running
    assert sweeper.health_check()["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_start_runs_a_tick_immediately(world):
    proposal = await _propose(world, "bob", "alice")
    world.clock.advance(days=4)

    world.sweeper.start()
    for _ in range(20):
        if world.sweeper.total_checks_performed:
            break
        await asyncio.sleep(0)
    await world.sweeper.stop_gracefully(timeout=1)

    assert world.proposals.rows[proposal.id].status == ProposalStatus.EXPIRED


@pytest.mark.asyncio
async def test_graceful_stop_times_out_on_stuck_tick(world):
    gate = asyncio.Event()

    async def never_returns(now, limit):
        await gate.wait()
        return []

    world.sweeper.proposals.find_expired_pending = never_returns
    world.sweeper.start()
    await asyncio.sleep(0)

    result = await world.sweeper.stop_gracefully(timeout=0.05)

    assert result == {"success": False, "timed_out": True}
    assert not world.sweeper.is_running
    assert world.sweeper.is_checking is False


@pytest.mark.asyncio
async def test_status_reports_counters(world):
    await world.sweeper.run_once()

    status = world.sweeper.get_status()

    assert status["job_name"] == "proposal_expiration"
    assert status["total_checks_performed"] == 1
    assert status["last_check_at"] == world.clock().isoformat()
    assert status["last_error"] is None
    assert status["is_running"] is False
