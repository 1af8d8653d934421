# fundledger/verify/verifier.py
from typing import Dict, List, Optional
from dataclasses import dataclass

from fundledger.chain.fundraising import FundRaising
from fundledger.core.types import DonationRecord, DonationRecorded, FundsWithdrawn
from fundledger.core.units import is_null_identity
from fundledger.storage import StorageBackend


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "general"  # e.g. "balance", "total", "index", "authorization", "custody", "sequence"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = None

    def __post_init__(self):
        if self.failures is None:
            self.failures = []

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def fail(self, index: int, message: str, category: str) -> None:
        self.failures.append(VerificationFailure(index, message, category))
        self.is_valid = False

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Ledger is valid ✓"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class LedgerVerifier:
    """
    Offline auditor for a ledger's bookkeeping.
    Re-derives every figure from the donation histories and the journal
    and reports anything that does not add up. Indexes in failures are
    journal sequence numbers, or -1 when a failure is not tied to one event.
    """

    def verify(self, ledger: FundRaising) -> VerificationResult:
        result = VerificationResult(True)

        # 1. Journal order
        events = ledger.events
        for i, event in enumerate(events):
            if event.sequence != i:
                result.fail(i, f"Sequence mismatch: expected {i}, got {event.sequence}", "sequence")

        # 2. Authorization set never contains the null identity
        for fundraiser in ledger.known_fundraisers():
            if is_null_identity(fundraiser):
                result.fail(-1, "Null identity present in authorization set", "authorization")

        # 3. Dual index: every record appears once on each side with identical fields
        by_donor: Dict[int, DonationRecord] = {}
        for donor in ledger.known_donors():
            for record in ledger.donations_of_donor(donor):
                if record.donor != donor:
                    result.fail(record.sequence, f"Record filed under donor {donor} names {record.donor}", "index")
                by_donor[record.sequence] = record

        by_fundraiser: Dict[int, DonationRecord] = {}
        for fundraiser in ledger.known_fundraisers():
            for record in ledger.donations_of_fundraiser(fundraiser):
                if record.fundraiser != fundraiser:
                    result.fail(
                        record.sequence,
                        f"Record filed under fundraiser {fundraiser} names {record.fundraiser}",
                        "index",
                    )
                by_fundraiser[record.sequence] = record

        for seq in sorted(set(by_donor) | set(by_fundraiser)):
            if seq not in by_donor:
                result.fail(seq, "Donation missing from donor history", "index")
            elif seq not in by_fundraiser:
                result.fail(seq, "Donation missing from fundraiser history", "index")
            elif by_donor[seq] != by_fundraiser[seq]:
                result.fail(seq, "Donor and fundraiser copies differ", "index")

        # 4. Balances and lifetime totals
        withdrawn: Dict[str, int] = {}
        for event in events:
            if isinstance(event, FundsWithdrawn):
                withdrawn[event.fundraiser] = withdrawn.get(event.fundraiser, 0) + event.amount

        balance_sum = 0
        for fundraiser in ledger.known_fundraisers():
            balance = ledger.balance_of(fundraiser)
            total = ledger.total_raised(fundraiser)
            balance_sum += balance
            if not 0 <= balance <= total:
                result.fail(-1, f"{fundraiser}: balance {balance} outside [0, {total}]", "balance")
            received = sum(r.amount for r in ledger.donations_of_fundraiser(fundraiser))
            if total != received:
                result.fail(-1, f"{fundraiser}: total raised {total} != sum of donations {received}", "total")
            if balance != received - withdrawn.get(fundraiser, 0):
                result.fail(-1, f"{fundraiser}: balance {balance} != donations minus withdrawals", "balance")

        # 5. Custody
        if ledger.held != balance_sum:
            result.fail(-1, f"Held funds {ledger.held} != sum of balances {balance_sum}", "custody")
        donated = sum(e.amount for e in events if isinstance(e, DonationRecorded))
        if ledger.held != donated - sum(withdrawn.values()):
            result.fail(-1, f"Held funds {ledger.held} != donated minus withdrawn", "custody")

        result.message = "Valid ledger" if result.is_valid else f"Failed with {len(result.failures)} issues"
        return result

    def verify_from_storage(self, storage: StorageBackend) -> VerificationResult:
        """
        Replay the journal from persistent storage and verify the rebuilt ledger.
        Returns a failed result if the journal cannot be loaded.
        """
        try:
            ledger = FundRaising.load(storage)
        except Exception as e:
            return VerificationResult(
                False,
                f"Failed to load ledger from storage: {str(e)}",
                [VerificationFailure(-1, str(e), "storage")]
            )

        return self.verify(ledger)
