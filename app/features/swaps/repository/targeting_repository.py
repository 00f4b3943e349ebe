"""
Persistence for swap_targets, the lightweight "who is targeting whom" index.
"""

from uuid import uuid4

from app.db.helpers import execute_query, fetch_all, fetch_one
from app.features.swaps.domain import TargetingLink, TargetingStatus


class TargetingRepository:
    SELECT_COLUMNS = (
        "id, source_swap_id, target_swap_id, proposal_id, status, created_at, updated_at"
    )

    @staticmethod
    def _row_to_link(row: dict | None) -> TargetingLink | None:
        if not row:
            return None

        return TargetingLink(
            id=str(row["id"]),
            source_swap_id=str(row["source_swap_id"]),
            target_swap_id=str(row["target_swap_id"]),
            proposal_id=str(row["proposal_id"]) if row.get("proposal_id") else None,
            status=TargetingStatus(row["status"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    async def create_link(
        self, source_swap_id: str, target_swap_id: str, proposal_id: str | None
    ) -> TargetingLink:
        query = f"""
            INSERT INTO swap_targets (id, source_swap_id, target_swap_id, proposal_id, status)
            VALUES (%s, %s, %s, %s, 'active')
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (str(uuid4()), source_swap_id, target_swap_id, proposal_id))
        return self._row_to_link(row)

    async def update_status_for_proposal(self, proposal_id: str, status: TargetingStatus) -> int:
        query = """
            UPDATE swap_targets
            SET status = %s, updated_at = NOW()
            WHERE proposal_id = %s AND status <> %s
        """
        return await execute_query(query, (status.value, proposal_id, status.value))

    async def fetch_targeting_rows(self, swap_ids: list[str]) -> list[dict]:
        """
        Bidirectional rows for the given swaps.

        Each row is one live link seen from one subject swap, tagged with its
        direction and the per-subject incoming/outgoing counts.
        """
        if not swap_ids:
            return []

        query = """
            WITH links AS (
                SELECT t.target_swap_id AS swap_id, 'incoming' AS direction,
                       t.id AS link_id, t.source_swap_id, t.target_swap_id,
                       t.proposal_id, t.status, t.created_at, t.updated_at
                FROM swap_targets t
                WHERE t.target_swap_id = ANY(%s) AND t.status IN ('active', 'accepted')
                UNION ALL
                SELECT t.source_swap_id AS swap_id, 'outgoing' AS direction,
                       t.id AS link_id, t.source_swap_id, t.target_swap_id,
                       t.proposal_id, t.status, t.created_at, t.updated_at
                FROM swap_targets t
                WHERE t.source_swap_id = ANY(%s) AND t.status IN ('active', 'accepted')
            )
            SELECT links.*,
                   COUNT(*) FILTER (WHERE direction = 'incoming')
                       OVER (PARTITION BY swap_id) AS incoming_count,
                   COUNT(*) FILTER (WHERE direction = 'outgoing')
                       OVER (PARTITION BY swap_id) AS outgoing_count
            FROM links
            ORDER BY swap_id, created_at
        """
        return await fetch_all(query, (swap_ids, swap_ids))


targeting_repository = TargetingRepository()
