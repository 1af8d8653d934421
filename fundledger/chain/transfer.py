# fundledger/chain/transfer.py
"""
Outbound value transfer used by withdrawals.
An agent signals that the recipient could not accept funds by raising.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Set

from fundledger.core.units import format_ether, normalize_identity
from fundledger.logging_utils import get_logger

logger = get_logger(__name__)


class RecipientRejected(Exception):
    """Recipient refused the incoming transfer."""


class TransferAgent(ABC):
    """Abstract base for anything that can pay a fundraiser out."""

    @abstractmethod
    def send(self, recipient: str, amount: int) -> None:
        pass


class NullTransferAgent(TransferAgent):
    """Pays out into the void; the CLI journal only records that it happened."""

    def send(self, recipient: str, amount: int) -> None:
        logger.info("Payout of %s ETH to %s", format_ether(amount), recipient)


class InMemoryBank(TransferAgent):
    """
    External account balances kept in memory.
    Recipients can be marked as rejecting, or given a hook that runs mid-transfer
    (e.g. a contract-like recipient that calls back into the ledger).
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances: Dict[str, int] = {normalize_identity(k): v for k, v in (balances or {}).items()}
        self._rejecting: Set[str] = set()
        self._hooks: Dict[str, Callable[[str, int], None]] = {}

    def balance_of(self, identity: str) -> int:
        return self.balances.get(normalize_identity(identity), 0)

    def reject(self, identity: str) -> None:
        self._rejecting.add(normalize_identity(identity))

    def accept(self, identity: str) -> None:
        self._rejecting.discard(normalize_identity(identity))

    def on_receive(self, identity: str, hook: Optional[Callable[[str, int], None]]) -> None:
        """Install (or clear, with None) a callback run while ``identity`` receives funds."""
        ident = normalize_identity(identity)
        if hook is None:
            self._hooks.pop(ident, None)
        else:
            self._hooks[ident] = hook

    def send(self, recipient: str, amount: int) -> None:
        ident = normalize_identity(recipient)
        if ident in self._rejecting:
            raise RecipientRejected(f"{recipient} cannot accept funds")
        hook = self._hooks.get(ident)
        if hook is not None:
            hook(ident, amount)
        self.balances[ident] = self.balances.get(ident, 0) + amount
