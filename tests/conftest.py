import asyncio
import copy
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from app.db.helpers import DatabaseError
from app.features.swaps.domain import (
    ACTIVE_PROPOSAL_STATUSES,
    Booking,
    BookingOffer,
    BookingStatus,
    CashOffer,
    LedgerConfirmation,
    ProposalRequest,
    ProposalStatus,
    ProposalTerms,
    SwapListing,
    SwapStatus,
    TargetingLink,
    TargetingStatus,
)
from app.features.swaps.errors import (
    ConcurrencyConflictError,
    ErrorCode,
    ProposalValidationError,
)
from app.features.swaps.jobs import ExpirationSweeper
from app.features.swaps.services import (
    AssetLockManager,
    CompatibilityEngine,
    EligibilityValidator,
    OwnershipTransferError,
    ProposalLifecycleManager,
    RetryPolicy,
    TargetingService,
)
from app.features.swaps.services.notarization import NotarizationNetworkError

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTransaction:
    """Stands in for the transition connection; remembers booking rows written on it."""

    def __init__(self):
        self.before: dict[str, Booking] = {}


class FakeBookingStore:
    """
    Bookings with the same conditional-update semantics as the SQL repository.

    Writes made on a FakeTransaction hold the row: other writers see the
    booking as taken and other readers see the committed copy until the
    transaction commits or rolls back.
    """

    def __init__(self):
        self.bookings: dict[str, Booking] = {}
        self.held: dict[str, FakeTransaction] = {}

    def add(self, booking: Booking) -> Booking:
        self.bookings[booking.id] = booking
        return booking

    def _held_elsewhere(self, booking_id: str, connection) -> bool:
        holder = self.held.get(booking_id)
        return holder is not None and holder is not connection

    def _stage(self, booking: Booking, connection) -> None:
        if connection is None:
            return
        connection.before.setdefault(booking.id, copy.copy(booking))
        self.held[booking.id] = connection

    def commit(self, transaction: FakeTransaction) -> None:
        for booking_id in transaction.before:
            self.held.pop(booking_id, None)

    def rollback(self, transaction: FakeTransaction) -> None:
        for booking_id, before in transaction.before.items():
            booking = self.bookings[booking_id]
            booking.status = before.status
            booking.locked_by = before.locked_by
            booking.locked_at = before.locked_at
            self.held.pop(booking_id, None)

    async def get(self, booking_id: str, *, connection=None) -> Booking | None:
        if self._held_elsewhere(booking_id, connection):
            return self.held[booking_id].before[booking_id]
        return self.bookings.get(booking_id)

    async def try_lock(self, booking_id: str, user_id: str, *, connection=None) -> Booking | None:
        if self._held_elsewhere(booking_id, connection):
            return None
        booking = self.bookings.get(booking_id)
        if booking is None or booking.status != BookingStatus.AVAILABLE:
            return None
        self._stage(booking, connection)
        booking.status = BookingStatus.LOCKED
        booking.locked_by = user_id
        return booking

    async def try_unlock(self, booking_id: str, *, connection=None) -> Booking | None:
        if self._held_elsewhere(booking_id, connection):
            return None
        booking = self.bookings.get(booking_id)
        if booking is None or booking.status != BookingStatus.LOCKED:
            return None
        self._stage(booking, connection)
        booking.status = BookingStatus.AVAILABLE
        booking.locked_by = None
        return booking

    async def try_mark_swapped(self, booking_id: str, *, connection=None) -> Booking | None:
        if self._held_elsewhere(booking_id, connection):
            return None
        booking = self.bookings.get(booking_id)
        if booking is None or booking.status != BookingStatus.LOCKED:
            return None
        self._stage(booking, connection)
        booking.status = BookingStatus.SWAPPED
        booking.locked_by = None
        return booking


class FakeSwapStore:
    def __init__(self, bookings: FakeBookingStore):
        self.bookings = bookings
        self.swaps: dict[str, tuple[str, SwapStatus]] = {}

    def add(self, swap_id: str, booking_id: str, status: SwapStatus = SwapStatus.ACTIVE) -> None:
        self.swaps[swap_id] = (booking_id, status)

    async def get(self, swap_id: str) -> SwapListing | None:
        entry = self.swaps.get(swap_id)
        if entry is None:
            return None
        booking_id, status = entry
        return SwapListing(id=swap_id, booking=self.bookings.bookings[booking_id], status=status)


class FakeProposalStore:
    """
    In-memory proposals.

    ``transition`` serializes on a per-proposal asyncio.Lock the way the SQL
    repository serializes on the row lock, and hands ``apply`` a FakeTransaction
    whose booking writes commit or roll back with the status change. Ids in
    ``busy`` fail the way a row held past the lock timeout does. Owner and
    proposer are derived from the booking store on every read.
    """

    def __init__(self, bookings: FakeBookingStore, clock: FakeClock):
        self.bookings = bookings
        self.clock = clock
        self.rows: dict = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.fail_writes_to: set[ProposalStatus] = set()
        self.busy: set[str] = set()

    def _read(self, proposal_id: str):
        stored = self.rows.get(proposal_id)
        if stored is None:
            return None
        proposal = copy.deepcopy(stored)
        target = self.bookings.bookings.get(proposal.target_booking_id)
        proposal.owner_id = target.owner_id if target else None
        if not proposal.is_cash_offer:
            source = self.bookings.bookings.get(proposal.source_booking_id)
            proposal.proposer_id = source.owner_id if source else None
        return proposal

    async def get(self, proposal_id: str):
        return self._read(proposal_id)

    async def find_active_between(self, source_booking_id: str, target_booking_id: str):
        for proposal_id, row in self.rows.items():
            if (
                row.source_booking_id == source_booking_id
                and row.target_booking_id == target_booking_id
                and row.status in ACTIVE_PROPOSAL_STATUSES
            ):
                return self._read(proposal_id)
        return None

    async def find_active_cash_offer(self, proposer_id: str, target_booking_id: str):
        for proposal_id, row in self.rows.items():
            if (
                row.is_cash_offer
                and row.proposer_id == proposer_id
                and row.target_booking_id == target_booking_id
                and row.status in ACTIVE_PROPOSAL_STATUSES
            ):
                return self._read(proposal_id)
        return None

    async def find_expired_pending(self, now: datetime, limit: int):
        lapsed = [
            row
            for row in self.rows.values()
            if row.status == ProposalStatus.PENDING and row.terms.expires_at <= now
        ]
        lapsed.sort(key=lambda row: row.terms.expires_at)
        return [self._read(row.id) for row in lapsed[:limit]]

    async def create(self, proposal, notarize):
        duplicate = (
            await self.find_active_cash_offer(proposal.proposer_id, proposal.target_booking_id)
            if proposal.is_cash_offer
            else await self.find_active_between(
                proposal.source_booking_id, proposal.target_booking_id
            )
        )
        if duplicate is not None:
            raise ProposalValidationError(
                ErrorCode.PROPOSAL_ALREADY_EXISTS, operation="create_proposal"
            )

        stored = copy.deepcopy(proposal)
        self.rows[stored.id] = stored
        try:
            stored.refs.creation = await notarize(proposal)
        except Exception:
            del self.rows[stored.id]
            raise
        stored.updated_at = self.clock()
        return self._read(stored.id)

    async def transition(self, proposal_id: str, apply):
        if proposal_id in self.busy:
            raise ConcurrencyConflictError(
                ErrorCode.PROPOSAL_BUSY,
                operation="transition",
                details={"proposal_id": proposal_id},
            )

        lock = self._locks.setdefault(proposal_id, asyncio.Lock())
        async with lock:
            current = self._read(proposal_id)
            if current is None:
                raise ProposalValidationError(ErrorCode.PROPOSAL_NOT_FOUND, operation="transition")

            transaction = FakeTransaction()
            try:
                change = await apply(current, transaction)
                if change.status in self.fail_writes_to:
                    raise DatabaseError("simulated write failure", operation="transition")
            except Exception:
                self.bookings.rollback(transaction)
                raise

            stored = self.rows[proposal_id]
            stored.status = change.status
            setattr(stored.refs, change.kind.value, change.reference_id)
            if stored.responded_at is None:
                stored.responded_at = change.responded_at
            if change.transfer_confirmation_id:
                stored.transfer_confirmation_id = change.transfer_confirmation_id
            stored.updated_at = self.clock()
            self.bookings.commit(transaction)
        return self._read(proposal_id)


class FakeTargetingStore:
    def __init__(self):
        self.links: list[TargetingLink] = []
        self.fail = False

    async def create_link(self, source_swap_id, target_swap_id, proposal_id):
        if self.fail:
            raise DatabaseError("targeting store unavailable", operation="create_link")
        link = TargetingLink(
            id=f"link-{len(self.links) + 1}",
            source_swap_id=source_swap_id,
            target_swap_id=target_swap_id,
            proposal_id=proposal_id,
            status=TargetingStatus.ACTIVE,
        )
        self.links.append(link)
        return link

    async def update_status_for_proposal(self, proposal_id, status):
        if self.fail:
            raise DatabaseError("targeting store unavailable", operation="update_status")
        updated = 0
        for link in self.links:
            if link.proposal_id == proposal_id and link.status != status:
                link.status = status
                updated += 1
        return updated

    async def fetch_targeting_rows(self, swap_ids):
        if self.fail:
            raise DatabaseError("targeting store unavailable", operation="fetch_targeting")
        live = [
            link
            for link in self.links
            if link.status in (TargetingStatus.ACTIVE, TargetingStatus.ACCEPTED)
        ]
        rows = []
        for swap_id in swap_ids:
            incoming = [link for link in live if link.target_swap_id == swap_id]
            outgoing = [link for link in live if link.source_swap_id == swap_id]
            for direction, links in (("incoming", incoming), ("outgoing", outgoing)):
                for link in links:
                    rows.append(
                        targeting_row(
                            swap_id,
                            direction,
                            link,
                            incoming_count=len(incoming),
                            outgoing_count=len(outgoing),
                        )
                    )
        return rows


def targeting_row(swap_id, direction, link, *, incoming_count=0, outgoing_count=0) -> dict:
    return {
        "swap_id": swap_id,
        "direction": direction,
        "link_id": link.id,
        "source_swap_id": link.source_swap_id,
        "target_swap_id": link.target_swap_id,
        "proposal_id": link.proposal_id,
        "status": link.status.value,
        "created_at": link.created_at,
        "updated_at": link.updated_at,
        "incoming_count": incoming_count,
        "outgoing_count": outgoing_count,
    }


class FakeNotary:
    """Ledger double; ``fail_when(record)`` returning True fails that submission."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.records = []
        self.fail_when = None

    async def submit(self, record):
        if self.fail_when is not None and self.fail_when(record):
            raise NotarizationNetworkError("ledger unavailable", status_code=503)
        self.records.append(record)
        return LedgerConfirmation(
            confirmation_id=f"ntr-{len(self.records)}", timestamp=self.clock()
        )

    def kinds_for(self, proposal_id: str) -> list[str]:
        return [r.kind.value for r in self.records if r.proposal_id == proposal_id]


class FakeTransfers:
    def __init__(self):
        self.failures_remaining = 0
        self.calls = 0

    async def transfer(self, proposal):
        self.calls += 1
        if self.failures_remaining:
            self.failures_remaining -= 1
            raise OwnershipTransferError("transfer service unavailable", status_code=503)
        return f"xfer-{proposal.id[:8]}"


class FakeNotifier:
    def __init__(self):
        self.sent: list[tuple[str | None, str, dict]] = []

    async def notify(self, user_id, event, payload):
        self.sent.append((user_id, event, payload))

    def events_for(self, user_id: str) -> list[str]:
        return [event for recipient, event, _ in self.sent if recipient == user_id]


class FakeRateLimiter:
    def __init__(self):
        self.allowed = True
        self.calls: list[str] = []

    async def check_proposal_rate_limit(self, user_id):
        self.calls.append(user_id)
        if self.allowed:
            return True, {"allowed": True, "limit": 5, "remaining": 4, "retry_after": None}
        return False, {
            "allowed": False,
            "limit": 5,
            "remaining": 0,
            "retry_after": 42,
            "window": "minute",
        }


class SwapWorld:
    """
    A wired engine over in-memory stores.

    Seeded users alice, bob, carol and dave each own one available booking
    (``b-<name>``) listed as an active swap (``s-<name>``).
    """

    USERS = ("alice", "bob", "carol", "dave")

    def __init__(self):
        self.clock = FakeClock()
        self.sleeps: list[float] = []

        self.bookings = FakeBookingStore()
        self.swaps = FakeSwapStore(self.bookings)
        self.proposals = FakeProposalStore(self.bookings, self.clock)
        self.targeting_store = FakeTargetingStore()
        self.notary = FakeNotary(self.clock)
        self.transfers = FakeTransfers()
        self.notifier = FakeNotifier()
        self.rate_limiter = FakeRateLimiter()

        for index, user in enumerate(self.USERS):
            self.bookings.add(
                Booking(
                    id=f"b-{user}",
                    owner_id=user,
                    status=BookingStatus.AVAILABLE,
                    title=f"{user.title()}'s place",
                    location="Paris, France" if index % 2 == 0 else "Lyon, France",
                    check_in=date(2026, 7, 1),
                    check_out=date(2026, 7, 8),
                    total_price=Decimal("1400.00") + index * 50,
                    accommodation_type="apartment",
                    guests=4,
                )
            )
            self.swaps.add(f"s-{user}", f"b-{user}")

        self.validator = EligibilityValidator(
            swaps=self.swaps,
            proposals=self.proposals,
            compatibility=CompatibilityEngine(),
            warning_threshold=60,
        )
        self.locks = AssetLockManager(self.bookings)
        self.targeting = TargetingService(self.targeting_store)
        self.retry_policy = RetryPolicy(
            max_attempts=3, backoff_base_seconds=1.0, attempt_timeout_seconds=5.0
        )
        self.lifecycle = ProposalLifecycleManager(
            proposals=self.proposals,
            locks=self.locks,
            validator=self.validator,
            targeting=self.targeting,
            notary=self.notary,
            transfers=self.transfers,
            notifier=self.notifier,
            rate_limiter=self.rate_limiter,
            retry_policy=self.retry_policy,
            clock=self.clock,
            sleep=self._sleep,
        )
        self.sweeper = ExpirationSweeper(
            self.lifecycle,
            self.proposals,
            interval_seconds=3600,
            batch_size=50,
            clock=self.clock,
        )

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def booking_status(self, user: str) -> BookingStatus:
        return self.bookings.bookings[f"b-{user}"].status

    def booking_request(
        self, proposer: str, owner: str, *, expires_in=timedelta(days=3), **terms
    ) -> ProposalRequest:
        return ProposalRequest(
            proposer_id=proposer,
            source_swap_id=f"s-{proposer}",
            target_swap_id=f"s-{owner}",
            offer=BookingOffer(),
            terms=ProposalTerms(expires_at=self.clock() + expires_in, **terms),
        )

    def cash_request(
        self, proposer: str, owner: str, amount=Decimal("900"), *, expires_in=timedelta(days=3)
    ) -> ProposalRequest:
        return ProposalRequest(
            proposer_id=proposer,
            target_swap_id=f"s-{owner}",
            offer=CashOffer(amount=amount),
            terms=ProposalTerms(expires_at=self.clock() + expires_in),
        )


@pytest.fixture
def world():
    return SwapWorld()
