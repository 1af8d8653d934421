# examples/deploy_and_donate.py
# Run with: poetry run python examples/deploy_and_donate.py
#
# Deploys an in-memory ledger, makes a donation, withdraws it and audits the result.

from fundledger import FundRaising, InMemoryBank, LedgerVerifier, format_ether, parse_ether


def print_fundraiser(ledger: FundRaising, fundraiser: str, label: str) -> None:
    print(f"{label}:")
    print("  Total raised:", format_ether(ledger.total_raised(fundraiser)), "ETH")
    print("  Current balance:", format_ether(ledger.balance_of(fundraiser)), "ETH")
    print("  Donation count:", ledger.donation_count_of_fundraiser(fundraiser))
    print()


if __name__ == "__main__":
    deployer = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"
    fundraiser1 = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
    fundraiser2 = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"

    print("=" * 60)
    print("STEP 1: DEPLOYING LEDGER")
    print("=" * 60 + "\n")

    bank = InMemoryBank()
    ledger = FundRaising(deployer, [fundraiser1, fundraiser2], transfer_agent=bank)
    ledger.subscribe(lambda event: print(f"  event #{event.sequence}: {event.kind}"))
    print("Admin:", ledger.admin)
    print("Minimum donation:", format_ether(ledger.minimum_donation), "ETH\n")

    print("=" * 60)
    print("STEP 2: MAKING DONATION")
    print("=" * 60 + "\n")

    print_fundraiser(ledger, fundraiser1, "Before donation")
    ledger.donate(deployer, fundraiser1, "Keep up the good work", parse_ether("0.001"))
    print_fundraiser(ledger, fundraiser1, "After donation")

    latest = ledger.donations_of_fundraiser(fundraiser1)[-1]
    print("Donor:", latest.donor)
    print("Receiver:", latest.fundraiser)
    print("Amount:", format_ether(latest.amount), "ETH")
    print("Timestamp:", latest.timestamp, "\n")

    print("=" * 60)
    print("STEP 3: WITHDRAWING")
    print("=" * 60 + "\n")

    ledger.withdraw(fundraiser1)
    print_fundraiser(ledger, fundraiser1, "After withdrawal")
    print("Paid out:", format_ether(bank.balance_of(fundraiser1)), "ETH\n")

    print(LedgerVerifier().verify(ledger))
