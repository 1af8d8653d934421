# fundledger/chain/fundraising.py
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from fundledger.core.errors import (
    AlreadyActive,
    AlreadyInactive,
    BelowMinimum,
    DirectTransferRejected,
    FundraiserNotActive,
    InvalidAddress,
    InvalidAmount,
    InvalidReceiver,
    LedgerError,
    LedgerIntegrityError,
    NotAdmin,
    NotAuthorized,
    NothingToWithdraw,
    OutboundTransferFailed,
)
from fundledger.core.types import (
    AnyEvent,
    DonationRecord,
    DonationRecorded,
    FundraiserActivated,
    FundraiserDeactivated,
    FundsWithdrawn,
    LedgerCreated,
    Role,
)
from fundledger.core.units import MINIMUM_DONATION, format_ether, is_null_identity, normalize_identity
from fundledger.chain.transfer import NullTransferAgent, TransferAgent
from fundledger.logging_utils import get_logger
from fundledger.storage import StorageBackend, create_storage

logger = get_logger(__name__)

Subscriber = Callable[[AnyEvent], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FundRaising:
    """
    Custody ledger for donations to admin-approved fundraisers.

    Holds every donated amount until the receiving fundraiser withdraws it.
    All state changes go through the event journal (``events``): each operation
    validates first, then records events, so a rejected call leaves nothing behind.
    Events are persisted and dispatched to subscribers only once the outermost
    operation commits.
    """

    MINIMUM_DONATION = MINIMUM_DONATION

    def __init__(
        self,
        admin: str,
        initial_fundraisers: Iterable[str] = (),
        *,
        transfer_agent: Optional[TransferAgent] = None,
        storage: Optional[Union[StorageBackend, str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        admin_id = normalize_identity(admin)
        if is_null_identity(admin_id):
            raise InvalidAddress("Invalid admin address")

        self._setup(transfer_agent, storage, clock)
        if self.storage and self.storage.load_events():
            raise ValueError("Storage already holds a ledger; use FundRaising.load() instead")

        with self._operation():
            self._record(LedgerCreated, admin=admin_id, minimum_donation=self.MINIMUM_DONATION)
            for fundraiser in initial_fundraisers:
                self._activate(fundraiser)

        logger.info("Ledger created by %s with %d fundraisers", admin_id, len(self.active_fundraisers()))

    @classmethod
    def load(
        cls,
        storage: Union[StorageBackend, str],
        *,
        transfer_agent: Optional[TransferAgent] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "FundRaising":
        """Rebuild a ledger by replaying the journal held in ``storage``."""
        ledger = cls.__new__(cls)
        ledger._setup(transfer_agent, storage, clock)
        if ledger.storage is None:
            raise ValueError("A storage backend is required to load a ledger")

        events = ledger.storage.load_events()
        if not events or not isinstance(events[0], LedgerCreated):
            raise LedgerIntegrityError("Journal does not start with a ledger_created event")

        for index, event in enumerate(events):
            if event.sequence != index:
                raise LedgerIntegrityError(f"Sequence mismatch: expected {index}, got {event.sequence}")
            if index > 0 and isinstance(event, LedgerCreated):
                raise LedgerIntegrityError(f"Duplicate ledger_created event at {index}")
            ledger._apply(event)
            ledger._events.append(event)
        ledger._committed = len(ledger._events)

        logger.info("Loaded ledger with %d events from storage", len(events))
        return ledger

    def _setup(
        self,
        transfer_agent: Optional[TransferAgent],
        storage: Optional[Union[StorageBackend, str]],
        clock: Optional[Callable[[], datetime]],
    ) -> None:
        self._admin = ""
        self.minimum_donation = self.MINIMUM_DONATION
        self._active: Dict[str, bool] = {}
        self._balances: Dict[str, int] = {}
        self._total_raised: Dict[str, int] = {}
        self._by_donor: Dict[str, List[DonationRecord]] = {}
        self._by_fundraiser: Dict[str, List[DonationRecord]] = {}
        self._held = 0
        self._donation_count = 0
        self._last_time: Optional[datetime] = None

        self._events: List[AnyEvent] = []
        self._committed = 0
        self._depth = 0
        self._subscribers: List[Subscriber] = []

        self.transfer_agent = transfer_agent or NullTransferAgent()
        self._clock = clock or utc_now

        # Plain paths are treated as SQLite files, empty string means in-memory only
        if isinstance(storage, str):
            stripped = storage.strip()
            if stripped.startswith("sqlite://"):
                storage = create_storage(stripped)
            elif stripped:
                storage = create_storage(f"sqlite://{stripped}")
            else:
                storage = None
        self.storage: Optional[StorageBackend] = storage

    # ── mutating operations ──────────────────────────────────────────

    def donate(self, caller: str, fundraiser: str, message: str, value: int) -> DonationRecorded:
        """
        Record a donation of ``value`` wei from ``caller`` to ``fundraiser``.
        The value stays in the ledger's custody until the fundraiser withdraws.
        """
        donor = normalize_identity(caller)
        receiver = normalize_identity(fundraiser)
        with self._operation():
            if not isinstance(value, int) or isinstance(value, bool):
                raise self._reject(InvalidAmount(f"Donation must be a whole number of wei, got {value!r}"))
            if value < self.minimum_donation:
                raise self._reject(BelowMinimum(
                    f"Must send at least {format_ether(self.minimum_donation)} ETH to prevent spamming"
                ))
            if is_null_identity(receiver):
                raise self._reject(InvalidReceiver())
            if not self._active.get(receiver, False):
                raise self._reject(FundraiserNotActive(f"Receiver {receiver} is not a valid fundraiser"))

            event = self._record(
                DonationRecorded,
                donor=donor,
                fundraiser=receiver,
                amount=value,
                message="" if message is None else str(message),
            )

        logger.info("Donation of %s ETH from %s to %s", format_ether(value), donor, receiver)
        return event

    def withdraw(self, caller: str) -> FundsWithdrawn:
        """
        Pay the caller's whole balance out through the transfer agent.

        The balance is zeroed before the transfer runs, so a recipient that calls
        back into ``withdraw`` finds nothing left. If the transfer raises, every
        change made since the withdrawal started is undone.
        """
        fundraiser = normalize_identity(caller)
        with self._operation():
            if not self._active.get(fundraiser, False):
                raise self._reject(NotAuthorized())
            amount = self._balances.get(fundraiser, 0)
            if amount <= 0:
                raise self._reject(NothingToWithdraw())

            checkpoint = self._checkpoint()
            event = self._record(FundsWithdrawn, fundraiser=fundraiser, amount=amount)
            try:
                self.transfer_agent.send(fundraiser, amount)
            except Exception as e:
                self._restore(checkpoint)
                logger.warning("Payout of %s ETH to %s failed: %s", format_ether(amount), fundraiser, e)
                raise OutboundTransferFailed(f"Transfer of {format_ether(amount)} ETH to {fundraiser} failed: {e}") from e

        logger.info("Withdrawal of %s ETH by %s", format_ether(amount), fundraiser)
        return event

    def activate_fundraiser(self, caller: str, identity: str) -> FundraiserActivated:
        with self._operation():
            self._only_admin(caller)
            event = self._activate(identity)
        logger.info("Fundraiser %s activated", event.fundraiser)
        return event

    def deactivate_fundraiser(self, caller: str, identity: str) -> FundraiserDeactivated:
        """Stop accepting donations for ``identity``; its balance stays held until reactivation."""
        with self._operation():
            self._only_admin(caller)
            fundraiser = normalize_identity(identity)
            if is_null_identity(fundraiser):
                raise self._reject(InvalidAddress())
            if not self._active.get(fundraiser, False):
                raise self._reject(AlreadyInactive())
            event = self._record(FundraiserDeactivated, fundraiser=fundraiser)
        logger.info("Fundraiser %s deactivated", fundraiser)
        return event

    def receive(self, caller: str, value: int, data: bytes = b"") -> None:
        """Bare value transfers are refused; donations must go through ``donate``."""
        raise self._reject(DirectTransferRejected())

    # ── read-only queries ────────────────────────────────────────────

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def held(self) -> int:
        """Total wei currently in custody (sum of all unwithdrawn balances)."""
        return self._held

    @property
    def events(self) -> List[AnyEvent]:
        """Copy of the committed journal."""
        return self._events[:self._committed]

    def is_active(self, identity: str) -> bool:
        return self._active.get(normalize_identity(identity), False)

    def total_raised(self, identity: str) -> int:
        return self._total_raised.get(normalize_identity(identity), 0)

    def balance_of(self, identity: str) -> int:
        return self._balances.get(normalize_identity(identity), 0)

    def donations_of_donor(self, identity: str) -> List[DonationRecord]:
        return list(self._by_donor.get(normalize_identity(identity), ()))

    def donations_of_fundraiser(self, identity: str) -> List[DonationRecord]:
        return list(self._by_fundraiser.get(normalize_identity(identity), ()))

    def donation_count_of_donor(self, identity: str) -> int:
        return len(self._by_donor.get(normalize_identity(identity), ()))

    def donation_count_of_fundraiser(self, identity: str) -> int:
        return len(self._by_fundraiser.get(normalize_identity(identity), ()))

    def donations_of(self, identity: str, role: Role = Role.FUNDRAISER) -> List[DonationRecord]:
        if Role(role) is Role.DONOR:
            return self.donations_of_donor(identity)
        return self.donations_of_fundraiser(identity)

    def donation_count(self, identity: str, role: Role = Role.FUNDRAISER) -> int:
        if Role(role) is Role.DONOR:
            return self.donation_count_of_donor(identity)
        return self.donation_count_of_fundraiser(identity)

    def active_fundraisers(self) -> List[str]:
        return [ident for ident, active in self._active.items() if active]

    def known_fundraisers(self) -> List[str]:
        """Every identity ever activated, current status regardless."""
        return list(self._active)

    def known_donors(self) -> List[str]:
        return list(self._by_donor)

    # ── subscribers ──────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Subscriber:
        self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers.remove(callback)

    def close(self) -> None:
        if self.storage:
            self.storage.close()
            logger.debug("Storage closed")
            self.storage = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ── internals ────────────────────────────────────────────────────

    def _only_admin(self, caller: str) -> None:
        if normalize_identity(caller) != self._admin:
            raise self._reject(NotAdmin())

    def _activate(self, identity: str) -> FundraiserActivated:
        fundraiser = normalize_identity(identity)
        if is_null_identity(fundraiser):
            raise self._reject(InvalidAddress())
        if self._active.get(fundraiser, False):
            raise self._reject(AlreadyActive(f"Fundraiser {fundraiser} already active"))
        return self._record(FundraiserActivated, fundraiser=fundraiser)

    @staticmethod
    def _reject(error: LedgerError) -> LedgerError:
        logger.debug("Rejected: %s (%s)", error.code, error)
        return error

    def _now(self) -> datetime:
        now = self._clock()
        if self._last_time is not None and now < self._last_time:
            now = self._last_time
        return now

    def _record(self, event_cls, **fields) -> AnyEvent:
        now = self._now()
        event = event_cls(
            sequence=len(self._events),
            timestamp=now.isoformat(timespec="milliseconds"),
            **fields,
        )
        self._apply(event)
        self._events.append(event)
        self._last_time = now
        return event

    def _apply(self, event: AnyEvent) -> None:
        """Fold one event into the state. Shared by live operations and journal replay."""
        if isinstance(event, LedgerCreated):
            self._admin = event.admin
            self.minimum_donation = event.minimum_donation
        elif isinstance(event, FundraiserActivated):
            self._active[event.fundraiser] = True
        elif isinstance(event, FundraiserDeactivated):
            self._active[event.fundraiser] = False
        elif isinstance(event, DonationRecorded):
            record = DonationRecord(
                sequence=self._donation_count,
                donor=event.donor,
                fundraiser=event.fundraiser,
                amount=event.amount,
                message=event.message,
                timestamp=event.timestamp,
            )
            self._by_donor.setdefault(event.donor, []).append(record)
            self._by_fundraiser.setdefault(event.fundraiser, []).append(record)
            self._balances[event.fundraiser] = self._balances.get(event.fundraiser, 0) + event.amount
            self._total_raised[event.fundraiser] = self._total_raised.get(event.fundraiser, 0) + event.amount
            self._held += event.amount
            self._donation_count += 1
        elif isinstance(event, FundsWithdrawn):
            balance = self._balances.get(event.fundraiser, 0)
            if event.amount > balance:
                raise LedgerIntegrityError(
                    f"Withdrawal of {event.amount} exceeds balance {balance} of {event.fundraiser}"
                )
            self._balances[event.fundraiser] = balance - event.amount
            self._held -= event.amount
        else:
            raise LedgerIntegrityError(f"Unknown event type: {type(event).__name__}")

    def _checkpoint(self) -> Tuple:
        # Histories are append-only, so their lengths are enough to roll them back
        return (
            dict(self._active),
            dict(self._balances),
            dict(self._total_raised),
            {k: len(v) for k, v in self._by_donor.items()},
            {k: len(v) for k, v in self._by_fundraiser.items()},
            self._held,
            self._donation_count,
            self._last_time,
            len(self._events),
        )

    def _restore(self, checkpoint: Tuple) -> None:
        (active, balances, total_raised, donor_lens, fundraiser_lens,
         held, donation_count, last_time, event_count) = checkpoint
        self._active = active
        self._balances = balances
        self._total_raised = total_raised
        self._by_donor = _truncate(self._by_donor, donor_lens)
        self._by_fundraiser = _truncate(self._by_fundraiser, fundraiser_lens)
        self._held = held
        self._donation_count = donation_count
        self._last_time = last_time
        del self._events[event_count:]

    @contextmanager
    def _operation(self):
        # Only the outermost operation commits; nested ones (re-entrant calls) join it
        checkpoint = self._checkpoint() if self._depth == 0 else None
        self._depth += 1
        try:
            yield
        except BaseException:
            if checkpoint is not None:
                self._restore(checkpoint)
            raise
        finally:
            self._depth -= 1
        if checkpoint is not None:
            self._flush(checkpoint)

    def _flush(self, checkpoint: Tuple) -> None:
        pending = self._events[self._committed:]
        if not pending:
            return
        if self.storage:
            try:
                self.storage.append_many(pending)
            except Exception as e:
                self._restore(checkpoint)
                logger.warning("Journal write failed, operation undone: %s", e)
                raise
        self._committed = len(self._events)
        for event in pending:
            for callback in list(self._subscribers):
                callback(event)


def _truncate(index: Dict[str, List[DonationRecord]], lengths: Dict[str, int]) -> Dict[str, List[DonationRecord]]:
    kept = {}
    for key, records in index.items():
        if key in lengths:
            del records[lengths[key]:]
            kept[key] = records
    return kept
