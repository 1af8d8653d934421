# fundledger/core/errors.py
"""
Distinct failure conditions raised by the ledger.
Each carries a stable ``code`` so tooling can tell them apart without parsing messages.
"""


class LedgerError(Exception):
    """Base for every rejected ledger operation."""
    code = "LedgerError"
    default_message = "Ledger operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class BelowMinimum(LedgerError):
    code = "BelowMinimum"
    default_message = "Must send at least the minimum donation"


class InvalidReceiver(LedgerError):
    code = "InvalidReceiver"
    default_message = "Invalid receiver address"


class FundraiserNotActive(LedgerError):
    code = "FundraiserNotActive"
    default_message = "Receiver is not a valid fundraiser"


class NotAuthorized(LedgerError):
    code = "NotAuthorized"
    default_message = "Only valid fundraisers can withdraw"


class NothingToWithdraw(LedgerError):
    code = "NothingToWithdraw"
    default_message = "No funds to withdraw"


class NotAdmin(LedgerError):
    code = "NotAdmin"
    default_message = "Only admin can call this function"


class InvalidAddress(LedgerError):
    code = "InvalidAddress"
    default_message = "Invalid fundraiser address"


class AlreadyActive(LedgerError):
    code = "AlreadyActive"
    default_message = "Fundraiser already active"


class AlreadyInactive(LedgerError):
    code = "AlreadyInactive"
    default_message = "Fundraiser already inactive"


class DirectTransferRejected(LedgerError):
    code = "DirectTransferRejected"
    default_message = "Please use the donate function"


class OutboundTransferFailed(LedgerError):
    code = "OutboundTransferFailed"
    default_message = "Transfer failed"


class InvalidAmount(LedgerError, ValueError):
    code = "InvalidAmount"
    default_message = "Invalid amount"


class LedgerIntegrityError(LedgerError):
    code = "LedgerIntegrityError"
    default_message = "Stored journal is corrupted"
