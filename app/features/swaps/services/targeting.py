"""
Targeting subsystem.

Keeps swap_targets in step with proposals and answers "is this swap already
spoken for, in either direction" for browse listings without loading full
proposal graphs. Targeting problems are data-integrity findings: they are
logged and degraded to "no targeting", never raised into the request path.
"""

from collections import Counter
from collections.abc import Iterable

from app.db.helpers import DatabaseError
from app.features.swaps.domain import (
    PROPOSAL_TO_TARGETING_STATUS,
    BookingStatus,
    ConsistencyIssue,
    ConsistencyReport,
    SwapListing,
    SwapProposal,
    TargetingLink,
    TargetingStatus,
    TargetingView,
)
from app.features.swaps.repository import TargetingRepository, targeting_repository
from app.infrastructure.observability.logging import get_logger, log_anomaly

logger = get_logger(__name__)


def _row_to_link(row: dict) -> TargetingLink:
    return TargetingLink(
        id=str(row["link_id"]),
        source_swap_id=str(row["source_swap_id"]),
        target_swap_id=str(row["target_swap_id"]),
        proposal_id=str(row["proposal_id"]) if row.get("proposal_id") else None,
        status=TargetingStatus(row["status"]),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def transform_targeting_rows(rows: Iterable[dict]) -> dict[str, TargetingView]:
    """
    Group bidirectional targeting rows into one view per swap.

    A swap may have many incoming links but at most one outgoing link. Extra
    outgoing rows are dropped (first wins) and the view is flagged. Counts are
    carried from the query so consistency validation can compare them with
    the arrays actually built. Malformed rows are skipped.
    """
    views: dict[str, TargetingView] = {}
    skipped = 0

    for row in rows:
        try:
            swap_id = str(row["swap_id"])
            direction = row["direction"]
            link = _row_to_link(row)
        except (KeyError, ValueError, TypeError) as e:
            skipped += 1
            logger.warning("Skipping malformed targeting row", error=str(e))
            continue

        view = views.get(swap_id)
        if view is None:
            view = TargetingView(
                swap_id=swap_id,
                incoming_count=int(row.get("incoming_count") or 0),
                outgoing_count=int(row.get("outgoing_count") or 0),
            )
            views[swap_id] = view

        if direction == "incoming":
            view.incoming_targets.append(link)
        elif direction == "outgoing":
            if view.outgoing_target is None:
                view.outgoing_target = link
            else:
                view.has_multiple_outgoing = True
                log_anomaly(
                    "multiple_outgoing_targets",
                    swap_id=swap_id,
                    kept_link_id=view.outgoing_target.id,
                    dropped_link_id=link.id,
                )
        else:
            skipped += 1
            logger.warning("Skipping targeting row with unknown direction", direction=direction)

    if skipped:
        logger.warning("Targeting rows skipped during transform", skipped=skipped)

    return views


def validate_targeting_consistency(views: dict[str, TargetingView]) -> ConsistencyReport:
    """Report count mismatches and duplicate relationships without raising."""
    issues: list[ConsistencyIssue] = []

    for swap_id, view in views.items():
        if view.incoming_count != len(view.incoming_targets):
            issues.append(
                ConsistencyIssue(
                    swap_id=swap_id,
                    issue_type="count_mismatch",
                    severity="medium",
                    message=(
                        f"Incoming count {view.incoming_count} does not match "
                        f"{len(view.incoming_targets)} incoming targets"
                    ),
                )
            )

        expected_outgoing = 1 if view.outgoing_target else 0
        if view.outgoing_count != expected_outgoing:
            issues.append(
                ConsistencyIssue(
                    swap_id=swap_id,
                    issue_type="count_mismatch",
                    severity="medium",
                    message=(
                        f"Outgoing count {view.outgoing_count} does not match "
                        f"{expected_outgoing} outgoing target"
                    ),
                )
            )

        duplicates = [
            source
            for source, count in Counter(
                link.source_swap_id for link in view.incoming_targets
            ).items()
            if count > 1
        ]
        for source in duplicates:
            issues.append(
                ConsistencyIssue(
                    swap_id=swap_id,
                    issue_type="duplicate_relationship",
                    severity="high",
                    message=f"Swap {source} targets this swap more than once",
                )
            )

    recommendations: list[str] = []
    issue_types = {issue.issue_type for issue in issues}
    if "count_mismatch" in issue_types:
        recommendations.append("Re-read targeting for the affected swaps before displaying counts")
    if "duplicate_relationship" in issue_types:
        recommendations.append("Cancel duplicate targeting links, keeping the most recent one")

    for issue in issues:
        log_anomaly(
            "targeting_inconsistency",
            swap_id=issue.swap_id,
            issue_type=issue.issue_type,
            severity=issue.severity,
        )

    return ConsistencyReport(
        is_consistent=not issues, issues=issues, recommendations=recommendations
    )


class TargetingService:
    def __init__(self, repository: TargetingRepository | None = None):
        self.repository = repository or targeting_repository

    async def record_link(
        self, source_swap_id: str, target_swap_id: str, proposal_id: str
    ) -> TargetingLink | None:
        try:
            link = await self.repository.create_link(source_swap_id, target_swap_id, proposal_id)
        except DatabaseError as e:
            log_anomaly(
                "targeting_link_not_recorded",
                proposal_id=proposal_id,
                source_swap_id=source_swap_id,
                target_swap_id=target_swap_id,
                error=str(e),
            )
            return None

        logger.debug("Targeting link recorded", proposal_id=proposal_id, link_id=link.id)
        return link

    async def mirror_proposal_status(self, proposal: SwapProposal) -> None:
        """Copy the proposal status onto its targeting link."""
        status = PROPOSAL_TO_TARGETING_STATUS[proposal.status]
        try:
            updated = await self.repository.update_status_for_proposal(proposal.id, status)
        except DatabaseError as e:
            log_anomaly(
                "targeting_status_not_mirrored",
                proposal_id=proposal.id,
                status=status.value,
                error=str(e),
            )
            return

        if updated:
            logger.debug(
                "Targeting link status mirrored", proposal_id=proposal.id, status=status.value
            )

    async def get_targeting_views(self, swap_ids: list[str]) -> dict[str, TargetingView]:
        """Targeting views for the given swaps; empty when the store is unavailable."""
        try:
            rows = await self.repository.fetch_targeting_rows(swap_ids)
        except DatabaseError as e:
            logger.warning(
                "Targeting lookup failed, treating as no targeting",
                swap_count=len(swap_ids),
                error=str(e),
            )
            return {}

        views = transform_targeting_rows(rows)
        validate_targeting_consistency(views)
        return views

    async def filter_browsable(self, swaps: list[SwapListing]) -> list[SwapListing]:
        """Drop swaps that are closed, not available, or hold an accepted link either way."""
        candidates = [
            swap
            for swap in swaps
            if swap.is_open and swap.booking.status == BookingStatus.AVAILABLE
        ]
        views = await self.get_targeting_views([swap.id for swap in candidates])
        return [
            swap
            for swap in candidates
            if not (swap.id in views and views[swap.id].has_accepted_link)
        ]
