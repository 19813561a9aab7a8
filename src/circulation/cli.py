"""Command-line interface for the circulation desk.

Built with Typer for commands and Rich for output.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import get_config
from .engine import LendingEngine
from .errors import LendingError
from .items.schemas import ItemStatus
from .logs import configure_logging
from .loans.schemas import FineStatus

# Create the main app
app = typer.Typer(
    name="circulation",
    help="Lend, return and renew library items and assess overdue fines.",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def get_engine() -> LendingEngine:
    return LendingEngine.build(config=get_config())


def fail(error: LendingError) -> None:
    """Report a business rule failure and exit with status 1."""
    print_error(f"{error.message} [dim]({error.code})[/dim]")
    raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Set up logging before any command runs."""
    configure_logging("DEBUG" if verbose else get_config().log_level)


# ============================================================================
# Loan Commands
# ============================================================================


@app.command()
def checkout(
    item_id: str = typer.Argument(..., help="Item to lend"),
    member_id: str = typer.Argument(..., help="Borrowing member"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Loan period in days"),
) -> None:
    """Check an item out to a member."""
    engine = get_engine()
    try:
        loan = engine.ledger.checkout(item_id, member_id, days)
    except LendingError as e:
        fail(e)
    print_success(f"Loan {loan.id} created, due {loan.due_date}")


@app.command("return")
def return_cmd(
    item_id: str = typer.Argument(..., help="Item being returned"),
) -> None:
    """Return an item and assess any overdue fine."""
    engine = get_engine()
    try:
        summary = engine.ledger.return_item(item_id)
    except LendingError as e:
        fail(e)

    if summary.fine_applied:
        print_warning(
            f"Returned {summary.days_overdue} days late. "
            f"Overdue fine of {summary.fine_amount} applied."
        )
    else:
        print_success("Item returned")
    if summary.reservation_waiting:
        console.print("[cyan]A reservation is waiting for this work.[/cyan]")


@app.command()
def renew(
    loan_id: str = typer.Argument(..., help="Loan to renew"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Days to add"),
) -> None:
    """Extend a loan from its current due date."""
    engine = get_engine()
    try:
        new_due = engine.ledger.renew(loan_id, days)
    except LendingError as e:
        fail(e)
    print_success(f"Loan renewed. New due date: {new_due.isoformat()}")


@app.command("loans")
def list_loans(
    member_id: Optional[str] = typer.Option(None, "--member", "-m", help="Filter by member"),
    open_only: bool = typer.Option(False, "--open", help="Only open loans"),
    overdue_only: bool = typer.Option(False, "--overdue", help="Only overdue loans"),
) -> None:
    """List loans."""
    engine = get_engine()
    loans = engine.ledger.list_loans(
        member_id=member_id, open_only=open_only, overdue_only=overdue_only
    )
    if not loans:
        console.print("[dim]No loans found.[/dim]")
        return

    table = Table(title="Loans", show_header=True, header_style="bold magenta")
    table.add_column("Loan", style="cyan")
    table.add_column("Item")
    table.add_column("Member")
    table.add_column("Due", style="yellow")
    table.add_column("Returned")
    table.add_column("Renewals", justify="center")

    for loan in loans:
        table.add_row(
            loan.id,
            loan.item_id,
            loan.member_id,
            loan.due_date,
            loan.return_date[:10] if loan.return_date else "-",
            str(loan.renewal_count),
        )
    console.print(table)


# ============================================================================
# Fine Commands
# ============================================================================


@app.command("fines")
def list_fines(
    member_id: Optional[str] = typer.Option(None, "--member", "-m", help="Filter by member"),
    status: Optional[FineStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List fines."""
    engine = get_engine()
    fines = engine.ledger.list_fines(member_id=member_id, status=status)
    if not fines:
        console.print("[dim]No fines found.[/dim]")
        return

    table = Table(title="Fines", show_header=True, header_style="bold magenta")
    table.add_column("Fine", style="cyan")
    table.add_column("Loan")
    table.add_column("Member")
    table.add_column("Amount", justify="right", style="yellow")
    table.add_column("Assessed")
    table.add_column("Status")

    for fine in fines:
        table.add_row(
            fine.id, fine.loan_id, fine.member_id, str(fine.amount), fine.fine_date, fine.status
        )
    console.print(table)


@app.command()
def pay(
    fine_id: str = typer.Argument(..., help="Fine being paid"),
    amount: Optional[str] = typer.Option(None, "--amount", "-a", help="Amount paid"),
) -> None:
    """Record payment of a pending fine."""
    try:
        paid = Decimal(amount) if amount else None
    except InvalidOperation:
        print_error(f"Not an amount: {amount}")
        raise typer.Exit(1)

    engine = get_engine()
    try:
        fine = engine.ledger.pay_fine(fine_id, paid)
    except LendingError as e:
        fail(e)
    print_success(f"Fine {fine.id} paid ({fine.payment_amount})")


@app.command()
def waive(
    fine_id: str = typer.Argument(..., help="Fine to waive"),
) -> None:
    """Waive a pending fine."""
    engine = get_engine()
    try:
        fine = engine.ledger.waive_fine(fine_id)
    except LendingError as e:
        fail(e)
    print_success(f"Fine {fine.id} waived")


# ============================================================================
# Reservation Commands
# ============================================================================


@app.command()
def reserve(
    work_id: str = typer.Argument(..., help="Work to reserve"),
    member_id: str = typer.Argument(..., help="Requesting member"),
    expiry_days: Optional[int] = typer.Option(
        None, "--expiry-days", "-e", help="Days before the request expires"
    ),
) -> None:
    """Place a reservation for any copy of a work."""
    engine = get_engine()
    try:
        reservation = engine.reservations.place(work_id, member_id, expiry_days)
    except LendingError as e:
        fail(e)
    print_success(f"Reservation {reservation.id} placed, expires {reservation.expiry_date}")


@app.command()
def fulfill(
    reservation_id: str = typer.Argument(..., help="Reservation to fulfill"),
) -> None:
    """Fulfill a reservation by setting a copy aside."""
    engine = get_engine()
    try:
        reservation = engine.reservations.fulfill(reservation_id)
    except LendingError as e:
        fail(e)
    print_success(f"Item {reservation.item_id} set aside for reservation {reservation.id}")


@app.command()
def cancel(
    reservation_id: str = typer.Argument(..., help="Reservation to cancel"),
) -> None:
    """Cancel a pending reservation."""
    engine = get_engine()
    try:
        engine.reservations.cancel(reservation_id)
    except LendingError as e:
        fail(e)
    print_success(f"Reservation {reservation_id} cancelled")


# ============================================================================
# Item Commands
# ============================================================================


@app.command("items")
def list_items(
    work_id: Optional[str] = typer.Option(None, "--work", "-w", help="Filter by work"),
    status: Optional[ItemStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List items and their status."""
    engine = get_engine()
    items = engine.registry.list_items(work_id=work_id, status=status)
    if not items:
        console.print("[dim]No items found.[/dim]")
        return

    table = Table(title="Items", show_header=True, header_style="bold magenta")
    table.add_column("Item", style="cyan")
    table.add_column("Barcode")
    table.add_column("Location")
    table.add_column("Status", style="yellow")
    table.add_column("Condition")

    for item in items:
        table.add_row(item.id, item.barcode, item.location, item.status, item.condition)
    console.print(table)


# ============================================================================
# Sweeper Commands
# ============================================================================


@app.command()
def sweep() -> None:
    """Run the overdue sweep and the reservation housekeeping once."""
    engine = get_engine()
    result = engine.sweeper.run_once()
    expired = engine.reservations.expire_stale()
    released = engine.reservations.release_uncollected()
    print_success(
        f"{result.assessed} fines assessed, {result.skipped} skipped, "
        f"{expired} reservations expired, {released} holds released"
    )


@app.command()
def sweeper() -> None:
    """Run the overdue sweep on its configured interval until interrupted."""
    engine = get_engine()
    console.print(
        f"[dim]Sweeping every {engine.config.sweep_interval_hours} hours. "
        "Press Ctrl+C to stop.[/dim]"
    )
    try:
        engine.sweeper.run_forever()
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"circulation {__version__}")
