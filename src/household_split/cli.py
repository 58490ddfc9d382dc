"""CLI for HouseholdSplit using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import Settings, load_settings
from .currency import format_currency, format_signed_currency
from .db import Database
from .exceptions import HouseholdSplitError
from .identity import normalize_key
from .models import ExpenseInput, ExpenseRecord, FilterState, Identity, SettlementFilter
from .service import LedgerService

app = typer.Typer(
    name="household-split",
    help="Track shared household expenses and who owes whom",
)

console = Console()

ID_DISPLAY_LENGTH = 8


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def identity_from_settings(settings: Settings) -> Identity | None:
    """The signed-in party configured in the environment, if any."""
    if not settings.user_uid and not settings.user_email:
        return None
    return Identity(
        uid=settings.user_uid,
        email=settings.user_email,
        display_name=settings.user_display_name,
    )


@contextmanager
def open_service(verbose: bool) -> Iterator[LedgerService]:
    """Load settings, open the database and start a ledger session."""
    setup_logging(verbose)
    db = None
    service = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService(
            settings, db, db, db, user=identity_from_settings(settings)
        )
        yield service
    except HouseholdSplitError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if service is not None:
            service.close()
        if db is not None:
            db.close()


def require_household(service: LedgerService) -> None:
    if service.user is None:
        console.print(
            "[yellow]Not signed in. Set HOUSEHOLD_USER_EMAIL (and optionally "
            "HOUSEHOLD_USER_UID).[/yellow]"
        )
        raise typer.Exit(1)
    if not service.address.resolved:
        console.print(
            "[yellow]No partner set. Run [cyan]household-split partner EMAIL[/cyan] "
            "first.[/yellow]"
        )
        raise typer.Exit(1)


def check_cost_center(service: LedgerService, cost_center: str) -> str:
    """Reject cost centers outside the configured list."""
    options = service.settings.cost_centers
    if options and cost_center not in options:
        console.print(
            f"[red]Unknown cost center '{cost_center}'. Choose one of: "
            f"{', '.join(options)}[/red]"
        )
        raise typer.Exit(1)
    return cost_center


def resolve_ids(service: LedgerService, prefixes: list[str]) -> list[str]:
    """Expand id prefixes to full expense ids; each must match exactly one."""
    resolved = []
    for prefix in prefixes:
        matches = [e.id for e in service.expenses if e.id and e.id.startswith(prefix)]
        if len(matches) != 1:
            problem = "No expense" if not matches else "Several expenses"
            console.print(f"[red]{problem} matching id '{prefix}'[/red]")
            raise typer.Exit(1)
        resolved.append(matches[0])
    return resolved


def payer_label(service: LedgerService, expense: ExpenseRecord) -> str:
    return "You" if normalize_key(expense.payer_uid) in service.you_keys else "Partner"


def payer_key(service: LedgerService, payer: str) -> str:
    """Map the --payer option (you, partner or an identifier) to a member key."""
    choice = payer.strip().lower()
    if choice in ("", "you", "me"):
        return ""
    if choice == "partner":
        return normalize_key(service.partner)
    return normalize_key(payer)


def display_expenses(service: LedgerService) -> None:
    """Display the visible expenses in a table with the per-row net."""
    rows = service.row_nets()
    table = Table(title="Expenses", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=ID_DISPLAY_LENGTH)
    table.add_column("Date", width=10)
    table.add_column("Description", style="cyan")
    table.add_column("Category", style="yellow")
    table.add_column("Cost center")
    table.add_column("Payer")
    table.add_column("Amount", justify="right")
    table.add_column("Net for you", justify="right")
    table.add_column("Conciliado", justify="center")

    for expense, net in rows:
        table.add_row(
            (expense.id or "")[:ID_DISPLAY_LENGTH],
            expense.date,
            expense.description,
            expense.category,
            expense.cost_center,
            payer_label(service, expense),
            format_currency(expense.amount),
            signed_money(net),
            "Yes" if expense.conciliado else "No",
        )

    console.print(table)
    console.print(f"[dim]{len(rows)} of {len(service.expenses)} expenses shown[/dim]")


def signed_money(amount: Decimal) -> str:
    """Signed amount colored green when owed to you, red when you owe."""
    text = format_signed_currency(amount)
    if amount > 0:
        return f"[green]{text}[/green]"
    if amount < 0:
        return f"[red]{text}[/red]"
    return f"[dim]{text}[/dim]"


def display_balances(service: LedgerService) -> None:
    """Display the balance summary for both parties."""
    summary = service.balances()

    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("", style="bold")
    table.add_column("Gasto", justify="right")
    table.add_column("Aporto", justify="right")
    table.add_column("Balance", justify="right")
    for label, totals in (("You", summary.you), ("Partner", summary.partner)):
        table.add_row(
            label,
            format_currency(totals.gasto),
            format_currency(totals.aporto),
            signed_money(totals.balance),
        )
    console.print(table)

    balance = summary.you.balance
    if balance > 0:
        console.print(f"Partner owes you {signed_money(balance)}")
    elif balance < 0:
        console.print(f"You owe partner {signed_money(balance)}")
    else:
        console.print("[green]Even ✔︎[/green]")


def _filters(this_month: bool, status: SettlementFilter, search: str) -> FilterState:
    return FilterState(this_month=this_month, settlement=status, query=search)


@app.command()
def partner(
    email: str | None = typer.Argument(None, help="Partner email to store"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show or set the partner this household is shared with."""
    with open_service(verbose) as service:
        if service.user is not None:
            console.print(f"Hi, {escape(service.display_name)}")
        if email is not None:
            service.set_partner(email)
            console.print(f"[green]Partner set to {service.partner}[/green]")
        else:
            console.print(f"Partner: {service.partner or '[dim]not set[/dim]'}")
        if service.address.resolved:
            console.print(f"[dim]Household: {', '.join(service.address.ids)}[/dim]")


@app.command()
def add(
    description: str = typer.Option(..., "--description", "-d", help="What was paid"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount in whole pesos"),
    date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD, default today"),
    category: str | None = typer.Option(None, "--category", "-c"),
    cost_center: str | None = typer.Option(None, "--cost-center"),
    payer: str = typer.Option("you", "--payer", "-p", help="you, partner or an email"),
    your_ratio: float = typer.Option(
        0.5, "--your-ratio", "-r", min=0.0, max=1.0, help="Your share of the cost"
    ),
    conciliado: bool = typer.Option(False, "--conciliado", help="Already settled"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a new shared expense."""
    with open_service(verbose) as service:
        require_household(service)
        data = ExpenseInput(
            description=description,
            amount=amount,
            category=category or service.settings.default_category,
            cost_center=check_cost_center(
                service, cost_center or service.settings.default_cost_center
            ),
            payer=payer_key(service, payer),
            your_ratio=Decimal(str(your_ratio)),
            conciliado=conciliado,
        )
        if date:
            data.date = date
        record_id = service.add_expense(data)
        console.print(
            f"[bold green]✓ Added expense {record_id[:ID_DISPLAY_LENGTH]}[/bold green] "
            f"({format_currency(data.amount)})"
        )


@app.command()
def edit(
    expense_id: str = typer.Argument(..., help="Expense id (or unique prefix)"),
    description: str | None = typer.Option(None, "--description", "-d"),
    amount: str | None = typer.Option(None, "--amount", "-a"),
    date: str | None = typer.Option(None, "--date"),
    category: str | None = typer.Option(None, "--category", "-c"),
    cost_center: str | None = typer.Option(None, "--cost-center"),
    payer: str | None = typer.Option(None, "--payer", "-p"),
    your_ratio: float | None = typer.Option(None, "--your-ratio", "-r", min=0.0, max=1.0),
    conciliado: bool | None = typer.Option(None, "--conciliado/--pending"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Edit an expense. Unspecified fields keep their current values."""
    with open_service(verbose) as service:
        require_household(service)
        (record_id,) = resolve_ids(service, [expense_id])
        data = service.input_from_record(service.find_expense(record_id))

        if description is not None:
            data.description = description
        if amount is not None:
            data.amount = amount
        if date is not None:
            data.date = date
        if category is not None:
            data.category = category
        if cost_center is not None:
            data.cost_center = check_cost_center(service, cost_center)
        if payer is not None:
            data.payer = payer_key(service, payer)
        if your_ratio is not None:
            data.your_ratio = Decimal(str(your_ratio))
        if conciliado is not None:
            data.conciliado = conciliado

        service.edit_expense(record_id, data)
        console.print(
            f"[bold green]✓ Saved changes to {record_id[:ID_DISPLAY_LENGTH]}[/bold green]"
        )


@app.command("list")
def list_expenses(
    this_month: bool = typer.Option(False, "--this-month", "-m", help="Only this month"),
    status: SettlementFilter = typer.Option(
        SettlementFilter.PENDING, "--status", "-s", help="Settlement status to show"
    ),
    search: str = typer.Option("", "--search", "-q", help="Match description/category"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List expenses with the net effect of each on your balance."""
    with open_service(verbose) as service:
        require_household(service)
        service.filters = _filters(this_month, status, search)
        display_expenses(service)


@app.command()
def balance(
    this_month: bool = typer.Option(False, "--this-month", "-m", help="Only this month"),
    status: SettlementFilter = typer.Option(
        SettlementFilter.PENDING, "--status", "-s", help="Settlement status to include"
    ),
    search: str = typer.Option("", "--search", "-q", help="Match description/category"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show what each party spent, paid and is owed (unsettled expenses)."""
    with open_service(verbose) as service:
        require_household(service)
        service.filters = _filters(this_month, status, search)
        display_balances(service)


@app.command()
def settle(
    expense_ids: list[str] = typer.Argument(..., help="Expense ids (or prefixes)"),
    undo: bool = typer.Option(False, "--undo", help="Mark as pending again"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Mark expenses as conciliado (settled) in one atomic update."""
    with open_service(verbose) as service:
        require_household(service)
        record_ids = resolve_ids(service, expense_ids)
        service.set_settled(record_ids, settled=not undo)
        state = "pending" if undo else "conciliado"
        console.print(f"[bold green]✓ {len(record_ids)} expenses marked {state}[/bold green]")


@app.command()
def delete(
    expense_ids: list[str] = typer.Argument(..., help="Expense ids (or prefixes)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete expenses after confirmation."""
    with open_service(verbose) as service:
        require_household(service)
        record_ids = resolve_ids(service, expense_ids)

        def confirm(targets: list[ExpenseRecord]) -> bool:
            if yes:
                return True
            for expense in targets:
                console.print(
                    f"  {expense.date}  {expense.description}  "
                    f"{format_currency(expense.amount)}"
                )
            console.print(
                f"\n[bold yellow]⚠️  Delete {len(targets)} expenses?[/bold yellow]"
            )
            answer = input("Continue? [y/N] ").strip().lower()
            return answer in ("y", "yes")

        if service.delete_expenses(record_ids, confirm):
            console.print(f"[bold green]✓ Deleted {len(record_ids)} expenses[/bold green]")
        else:
            console.print("[yellow]Cancelled.[/yellow]")


if __name__ == "__main__":
    app()
