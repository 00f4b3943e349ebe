import pytest

from app.features.swaps.domain import (
    Booking,
    BookingStatus,
    ProposalStatus,
    SwapListing,
    SwapStatus,
    TargetingLink,
    TargetingStatus,
)
from app.features.swaps.services import transform_targeting_rows, validate_targeting_consistency


def targeting_row(swap_id, direction, link, *, incoming_count=0, outgoing_count=0) -> dict:
    return {
        "swap_id": swap_id,
        "direction": direction,
        "link_id": link.id,
        "source_swap_id": link.source_swap_id,
        "target_swap_id": link.target_swap_id,
        "proposal_id": link.proposal_id,
        "status": link.status.value,
        "created_at": None,
        "updated_at": None,
        "incoming_count": incoming_count,
        "outgoing_count": outgoing_count,
    }


def _link(link_id, source, target, status=TargetingStatus.ACTIVE) -> TargetingLink:
    return TargetingLink(
        id=link_id,
        source_swap_id=source,
        target_swap_id=target,
        status=status,
        proposal_id=f"p-{link_id}",
    )


def test_transform_groups_rows_by_swap():
    rows = [
        targeting_row("s-a", "incoming", _link("1", "s-b", "s-a"), incoming_count=2),
        targeting_row("s-a", "incoming", _link("2", "s-c", "s-a"), incoming_count=2),
        targeting_row("s-b", "outgoing", _link("1", "s-b", "s-a"), outgoing_count=1),
    ]

    views = transform_targeting_rows(rows)

    assert [link.id for link in views["s-a"].incoming_targets] == ["1", "2"]
    assert views["s-a"].outgoing_target is None
    assert views["s-b"].outgoing_target.target_swap_id == "s-a"
    assert validate_targeting_consistency(views).is_consistent


def test_transform_keeps_first_outgoing_link():
    rows = [
        targeting_row("s-a", "outgoing", _link("1", "s-a", "s-b"), outgoing_count=2),
        targeting_row("s-a", "outgoing", _link("2", "s-a", "s-c"), outgoing_count=2),
    ]

    views = transform_targeting_rows(rows)

    assert views["s-a"].outgoing_target.id == "1"
    assert views["s-a"].has_multiple_outgoing is True


def test_transform_skips_malformed_rows():
    good = targeting_row("s-a", "incoming", _link("1", "s-b", "s-a"), incoming_count=1)
    rows = [
        good,
        {"swap_id": "s-a", "direction": "incoming"},
        {**good, "status": "bogus"},
        {**good, "direction": "sideways"},
    ]

    views = transform_targeting_rows(rows)

    assert len(views["s-a"].incoming_targets) == 1


def test_consistency_flags_count_mismatch_and_duplicates():
    rows = [
        targeting_row("s-a", "incoming", _link("1", "s-b", "s-a"), incoming_count=3),
        targeting_row("s-a", "incoming", _link("2", "s-b", "s-a"), incoming_count=3),
    ]

    report = validate_targeting_consistency(transform_targeting_rows(rows))

    assert not report.is_consistent
    issues = {(issue.issue_type, issue.severity) for issue in report.issues}
    assert issues == {("count_mismatch", "medium"), ("duplicate_relationship", "high")}
    assert len(report.recommendations) == 2


@pytest.mark.asyncio
async def test_browse_filter_drops_spoken_for_swaps(world):
    proposal = await world.lifecycle.create_proposal(world.booking_request("bob", "alice"))
    await world.lifecycle.accept_proposal(proposal.id, "alice")
    assert world.proposals.rows[proposal.id].status == ProposalStatus.COMPLETED

    listings = [await world.swaps.get(f"s-{user}") for user in world.USERS]
    listings.append(
        SwapListing(
            id="s-paused",
            booking=Booking(id="b-x", owner_id="x", status=BookingStatus.AVAILABLE),
            status=SwapStatus.PAUSED,
        )
    )

    browsable = await world.targeting.filter_browsable(listings)

    assert [swap.id for swap in browsable] == ["s-carol", "s-dave"]


@pytest.mark.asyncio
async def test_accepted_link_hides_swap_in_either_direction(world):
    world.targeting_store.links.append(
        _link("9", "s-carol", "s-dave", status=TargetingStatus.ACCEPTED)
    )
    listings = [await world.swaps.get("s-carol"), await world.swaps.get("s-dave")]

    browsable = await world.targeting.filter_browsable(listings)

    assert browsable == []


@pytest.mark.asyncio
async def test_targeting_outage_degrades_to_no_targeting(world):
    world.targeting_store.fail = True

    proposal = await world.lifecycle.create_proposal(world.booking_request("bob", "alice"))
    views = await world.targeting.get_targeting_views(["s-alice"])

    assert proposal.status == ProposalStatus.PENDING
    assert views == {}
