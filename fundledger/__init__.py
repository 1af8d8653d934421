# fundledger/__init__.py
"""
fundledger: custody ledger for donations to authorized fundraisers.
Donors give, fundraisers withdraw, a single admin decides who may raise funds.

Every state change is journaled as an event and can be persisted to a hash-chained SQLite store.
"""

from fundledger.core.types import (
    DonationRecord,
    DonationRecorded,
    FundraiserActivated,
    FundraiserDeactivated,
    FundsWithdrawn,
    LedgerCreated,
    Role,
    ZERO_ADDRESS,
)
from fundledger.core.errors import LedgerError
from fundledger.core.units import MINIMUM_DONATION, format_ether, parse_ether
from fundledger.chain.fundraising import FundRaising
from fundledger.chain.transfer import InMemoryBank, NullTransferAgent, TransferAgent
from fundledger.verify.verifier import LedgerVerifier

__version__ = "0.1.0-dev"

__all__ = [
    "DonationRecord",
    "DonationRecorded",
    "FundRaising",
    "FundraiserActivated",
    "FundraiserDeactivated",
    "FundsWithdrawn",
    "InMemoryBank",
    "LedgerCreated",
    "LedgerError",
    "LedgerVerifier",
    "MINIMUM_DONATION",
    "NullTransferAgent",
    "Role",
    "TransferAgent",
    "ZERO_ADDRESS",
    "format_ether",
    "parse_ether",
]
