"""
CLI for deploying, operating and inspecting a fundraising ledger journal.
"""

import os
import json
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from fundledger.chain.fundraising import FundRaising
from fundledger.core.errors import LedgerError
from fundledger.core.units import format_ether, normalize_identity, parse_ether
from fundledger.logging_utils import configure_logging
from fundledger.storage import SQLiteStorage
from fundledger.verify.verifier import LedgerVerifier

app = typer.Typer(
    name="fundledger",
    help="Deploy, operate and inspect a fundraising custody ledger",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

RULE = "═" * 60


class Action(str, Enum):
    activate = "activate"
    deactivate = "deactivate"


class QueryType(str, Enum):
    contract = "contract"
    fundraiser = "fundraiser"
    donor = "donor"


def get_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. FUNDLEDGER_DB_PATH environment variable
    3. Default: ~/.fundledger/fundraising.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        env_path = os.environ.get("FUNDLEDGER_DB_PATH")
        if env_path:
            path = Path(env_path).resolve()
        else:
            path = Path.home() / ".fundledger" / "fundraising.db"

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def require_account(account: Optional[str]) -> str:
    if not account:
        console.print("[red]No acting identity given.[/]")
        console.print("  Pass --as IDENTITY or set FUNDLEDGER_ACCOUNT.")
        raise typer.Exit(1)
    return normalize_identity(account)


def open_ledger(db_path: Path) -> FundRaising:
    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Deploy a ledger first: fundledger deploy --as ADMIN")
        console.print("  • Set env var: export FUNDLEDGER_DB_PATH=/path/to/ledger.db")
        raise typer.Exit(1)

    try:
        return FundRaising.load(SQLiteStorage(db_path))
    except Exception as e:
        console.print(f"[red]Failed to load ledger: {str(e)}[/]")
        raise typer.Exit(1)


def fail(error: LedgerError) -> None:
    console.print(f"[red]✗ {error.code}: {error}[/]")
    raise typer.Exit(1)


def fundraiser_summary(ledger: FundRaising, identity: str, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Address", identity)
    table.add_row("Status", "Active ✓" if ledger.is_active(identity) else "Inactive ✗")
    table.add_row("Total raised", f"{format_ether(ledger.total_raised(identity))} ETH")
    table.add_row("Current balance", f"{format_ether(ledger.balance_of(identity))} ETH")
    table.add_row("Donations", str(ledger.donation_count_of_fundraiser(identity)))
    return table


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (overrides FUNDLEDGER_LOG_LEVEL env var)",
    ),
):
    """Manage a fundraising custody ledger."""
    configure_logging(log_level)


@app.command()
def deploy(
    fundraisers: Optional[List[str]] = typer.Argument(None, help="Initial fundraiser identities"),
    account: Optional[str] = typer.Option(None, "--as", envvar="FUNDLEDGER_ACCOUNT", help="Admin identity"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite journal (overrides FUNDLEDGER_DB_PATH)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write deployment info as JSON"),
):
    """Create a new ledger; the acting identity becomes its admin."""
    admin = require_account(account)
    db_path = get_db_path(db)

    if db_path.exists():
        with SQLiteStorage(db_path) as existing:
            if existing.get_event_count():
                console.print(f"[red]A ledger already exists in {db_path}[/]")
                raise typer.Exit(1)

    initial = list(fundraisers or [])
    if not initial:
        console.print("[yellow]No initial fundraisers provided. Adding admin as default fundraiser.[/]")
        initial = [admin]

    try:
        ledger = FundRaising(admin, initial, storage=SQLiteStorage(db_path))
    except LedgerError as e:
        fail(e)

    table = Table(title="Initial Fundraisers")
    table.add_column("Fundraiser")
    table.add_column("Status")
    for fundraiser in initial:
        status = "✓ Active" if ledger.is_active(fundraiser) else "✗ Inactive"
        table.add_row(normalize_identity(fundraiser), status)

    console.print("[green]✅ Ledger deployed[/]")
    console.print(f"  Admin: {ledger.admin}")
    console.print(f"  Minimum donation: {format_ether(ledger.minimum_donation)} ETH")
    console.print(table)

    if output:
        info = {
            "database": str(db_path),
            "admin": ledger.admin,
            "minimum_donation": format_ether(ledger.minimum_donation),
            "timestamp": ledger.events[0].timestamp,
            "initial_fundraisers": [normalize_identity(f) for f in initial],
        }
        output.write_text(json.dumps(info, indent=2), encoding="utf-8")
        console.print(f"Deployment info saved to {output}")

    ledger.close()


@app.command()
def donate(
    receiver: str = typer.Argument(..., help="Fundraiser to donate to"),
    amount: str = typer.Argument(..., help="Amount in ETH, e.g. 0.001"),
    message: str = typer.Option("", "--message", "-m", help="Message / signature attached to the donation"),
    account: Optional[str] = typer.Option(None, "--as", envvar="FUNDLEDGER_ACCOUNT", help="Donor identity"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite journal (overrides FUNDLEDGER_DB_PATH)"),
):
    """Donate to an active fundraiser."""
    donor = require_account(account)
    ledger = open_ledger(get_db_path(db))

    try:
        value = parse_ether(amount)
    except LedgerError as e:
        fail(e)

    if value < ledger.minimum_donation:
        console.print(f"[red]Donation amount must be at least {format_ether(ledger.minimum_donation)} ETH[/]")
        raise typer.Exit(1)
    if not ledger.is_active(receiver):
        console.print(f"[red]{receiver} is not a valid fundraiser[/]")
        raise typer.Exit(1)

    console.print(fundraiser_summary(ledger, normalize_identity(receiver), "Before donation"))

    try:
        ledger.donate(donor, receiver, message, value)
    except LedgerError as e:
        fail(e)

    console.print(fundraiser_summary(ledger, normalize_identity(receiver), "After donation"))

    latest = ledger.donations_of_fundraiser(receiver)[-1]
    console.print("[green]✅ Donation successful![/]")
    console.print(RULE)
    console.print(f"Donor: {latest.donor}")
    console.print(f"Receiver: {latest.fundraiser}")
    console.print(f"Amount: {format_ether(latest.amount)} ETH")
    console.print(f"Timestamp: {latest.timestamp}")
    console.print(RULE)
    ledger.close()


@app.command()
def withdraw(
    account: Optional[str] = typer.Option(None, "--as", envvar="FUNDLEDGER_ACCOUNT", help="Fundraiser identity"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite journal (overrides FUNDLEDGER_DB_PATH)"),
):
    """Withdraw the acting fundraiser's whole balance."""
    fundraiser = require_account(account)
    ledger = open_ledger(get_db_path(db))

    if not ledger.is_active(fundraiser):
        console.print(f"[red]{fundraiser} is not a valid fundraiser[/]")
        raise typer.Exit(1)

    available = ledger.balance_of(fundraiser)
    console.print(f"Available to withdraw: {format_ether(available)} ETH")
    if available == 0:
        console.print("[yellow]⚠️  No funds available to withdraw[/]")
        ledger.close()
        return

    try:
        event = ledger.withdraw(fundraiser)
    except LedgerError as e:
        fail(e)

    console.print("[green]✅ Withdrawal successful![/]")
    console.print(RULE)
    console.print(f"Withdrawn amount: {format_ether(event.amount)} ETH")
    console.print(f"Ledger balance: {format_ether(ledger.balance_of(fundraiser))} ETH")
    console.print(f"Total raised (lifetime): {format_ether(ledger.total_raised(fundraiser))} ETH")
    console.print(RULE)
    ledger.close()


@app.command()
def manage(
    action: Action = typer.Argument(..., help="activate or deactivate"),
    identity: str = typer.Argument(..., help="Fundraiser identity to manage"),
    account: Optional[str] = typer.Option(None, "--as", envvar="FUNDLEDGER_ACCOUNT", help="Admin identity"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite journal (overrides FUNDLEDGER_DB_PATH)"),
):
    """Activate or deactivate a fundraiser (admin only)."""
    admin = require_account(account)
    ledger = open_ledger(get_db_path(db))
    target = normalize_identity(identity)

    if admin != ledger.admin:
        console.print(f"[red]Only admin ({ledger.admin}) can manage fundraisers. Current identity: {admin}[/]")
        raise typer.Exit(1)

    current = ledger.is_active(target)
    if action is Action.activate and current:
        console.print("[yellow]⚠️  Fundraiser is already active[/]")
        ledger.close()
        return
    if action is Action.deactivate and not current:
        console.print("[yellow]⚠️  Fundraiser is already inactive[/]")
        ledger.close()
        return

    try:
        if action is Action.activate:
            ledger.activate_fundraiser(admin, target)
        else:
            ledger.deactivate_fundraiser(admin, target)
    except LedgerError as e:
        fail(e)

    console.print("[green]✅ Operation successful![/]")
    console.print(fundraiser_summary(ledger, target, "Fundraiser Details"))

    balance = ledger.balance_of(target)
    if action is Action.deactivate and balance > 0:
        console.print(f"[yellow]⚠️  Note: this fundraiser still holds {format_ether(balance)} ETH[/]")
    ledger.close()


@app.command()
def info(
    query: QueryType = typer.Argument(QueryType.contract, help="contract, fundraiser or donor"),
    identity: Optional[str] = typer.Argument(None, help="Identity to query (fundraiser / donor views)"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite journal (overrides FUNDLEDGER_DB_PATH)"),
):
    """Show ledger, fundraiser or donor information."""
    ledger = open_ledger(get_db_path(db))

    if query is QueryType.contract:
        table = Table(title="Ledger")
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Admin", ledger.admin)
        table.add_row("Minimum donation", f"{format_ether(ledger.minimum_donation)} ETH")
        table.add_row("Held", f"{format_ether(ledger.held)} ETH")
        table.add_row("Active fundraisers", str(len(ledger.active_fundraisers())))
        table.add_row("Events", str(len(ledger.events)))
        console.print(table)
        ledger.close()
        return

    if not identity:
        console.print(f"[red]An identity is required for the {query.value} view[/]")
        raise typer.Exit(1)

    if query is QueryType.fundraiser:
        console.print(fundraiser_summary(ledger, normalize_identity(identity), "Fundraiser Information"))
        donations = ledger.donations_of_fundraiser(identity)
        if donations:
            history = Table(title="Donation History")
            history.add_column("#")
            history.add_column("From")
            history.add_column("Amount (ETH)")
            history.add_column("Signature")
            history.add_column("Timestamp")
            for i, d in enumerate(donations, start=1):
                history.add_row(str(i), d.donor, format_ether(d.amount), d.message, d.timestamp)
            console.print(history)
    else:
        donations = ledger.donations_of_donor(identity)
        console.print(f"Total Donations Made: {len(donations)}")
        if donations:
            per_fundraiser = {}
            for d in donations:
                per_fundraiser[d.fundraiser] = per_fundraiser.get(d.fundraiser, 0) + d.amount
            summary = Table(title="Donor Information")
            summary.add_column("Fundraiser")
            summary.add_column("Amount (ETH)")
            for fundraiser, total in per_fundraiser.items():
                summary.add_row(fundraiser, format_ether(total))
            console.print(summary)
            console.print(f"Total Donated: {format_ether(sum(per_fundraiser.values()))} ETH")

            history = Table(title="Donation History")
            history.add_column("#")
            history.add_column("To")
            history.add_column("Amount (ETH)")
            history.add_column("Signature")
            history.add_column("Timestamp")
            for i, d in enumerate(donations, start=1):
                history.add_row(str(i), d.fundraiser, format_ether(d.amount), d.message, d.timestamp)
            console.print(history)
    ledger.close()


@app.command()
def verify(
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite journal (overrides FUNDLEDGER_DB_PATH)"),
):
    """Check the journal's hash chain and the ledger's bookkeeping invariants."""
    db_path = get_db_path(db)

    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        raise typer.Exit(1)

    with SQLiteStorage(db_path) as storage:
        result = LedgerVerifier().verify_from_storage(storage)

    if result.is_valid:
        console.print("[green]✓ Ledger is valid[/]")
        console.print(f"  {result.message}")
    else:
        console.print("[red]✗ Verification failed[/]")
        for failure in result.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {failure.message}")
        raise typer.Exit(1)


@app.command()
def export(
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite journal (overrides FUNDLEDGER_DB_PATH)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: fundraising-journal.jsonl)"),
):
    """Export the journal as JSONL (one event per line)."""
    db_path = get_db_path(db)

    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        raise typer.Exit(1)

    with SQLiteStorage(db_path) as storage:
        lines = storage.export_lines()

    if not lines:
        console.print("[yellow]Journal is empty[/]")
        raise typer.Exit(0)

    out_path = output or Path("fundraising-journal.jsonl")
    with open(out_path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line)
            f.write("\n")

    console.print(f"[green]Exported {len(lines)} events to {out_path}[/]")


if __name__ == "__main__":
    app()
