# fundledger/core/types.py
from dataclasses import dataclass, asdict
from enum import Enum
from typing import ClassVar, Union

ZERO_ADDRESS = "0x" + "0" * 40


class Role(str, Enum):
    """Which side of a donation an identity is queried as."""
    DONOR = "donor"
    FUNDRAISER = "fundraiser"


@dataclass(frozen=True)
class DonationRecord:
    """Single donation, shared by the donor index and the fundraiser index."""
    sequence: int                   # position in the ledger-wide donation order
    donor: str
    fundraiser: str
    amount: int                     # wei
    message: str                    # free-form signature text, may be empty
    timestamp: str                  # ISO 8601 UTC with millis

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LedgerEvent:
    """Base for every journaled state change."""
    kind: ClassVar[str] = "event"
    sequence: int
    timestamp: str

    def to_dict(self) -> dict:
        d = asdict(self)
        d["kind"] = self.kind
        return d


@dataclass(frozen=True)
class LedgerCreated(LedgerEvent):
    kind: ClassVar[str] = "ledger_created"
    admin: str = ""
    minimum_donation: int = 0


@dataclass(frozen=True)
class FundraiserActivated(LedgerEvent):
    kind: ClassVar[str] = "fundraiser_activated"
    fundraiser: str = ""


@dataclass(frozen=True)
class FundraiserDeactivated(LedgerEvent):
    kind: ClassVar[str] = "fundraiser_deactivated"
    fundraiser: str = ""


@dataclass(frozen=True)
class DonationRecorded(LedgerEvent):
    kind: ClassVar[str] = "donation_recorded"
    donor: str = ""
    fundraiser: str = ""
    amount: int = 0
    message: str = ""


@dataclass(frozen=True)
class FundsWithdrawn(LedgerEvent):
    kind: ClassVar[str] = "funds_withdrawn"
    fundraiser: str = ""
    amount: int = 0


AnyEvent = Union[LedgerCreated, FundraiserActivated, FundraiserDeactivated, DonationRecorded, FundsWithdrawn]

EVENT_TYPES = {
    cls.kind: cls
    for cls in (LedgerCreated, FundraiserActivated, FundraiserDeactivated, DonationRecorded, FundsWithdrawn)
}


def event_from_dict(data: dict) -> AnyEvent:
    """Rebuild an event from its ``to_dict`` form (kind tag included)."""
    payload = dict(data)
    kind = payload.pop("kind", None)
    cls = EVENT_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown event kind: {kind!r}")
    return cls(**payload)
