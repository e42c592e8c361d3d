"""CLI for Buddy Ledger using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .db import Database
from .exceptions import BuddyLedgerError, ValidationError
from .models import ExpenseDraft, Group, MemberRef
from .money import Money
from .service import LedgerService

app = typer.Typer(
    name="buddy-ledger",
    help="Track shared expenses and balances within groups",
)

console = Console()

USER_OPTION = typer.Option(..., "--user", "-u", help="Your member id")
NAME_OPTION = typer.Option(None, "--name", "-n", help="Your display name")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def open_service(verbose: bool) -> Iterator[LedgerService]:
    """Build the service over the configured database and report failures."""
    setup_logging(verbose)
    db = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        yield LedgerService(settings, db)
    except ValidationError as e:
        console.print(f"\n[yellow]⚠️  {e}[/yellow]\n")
        sys.exit(2)
    except BuddyLedgerError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def format_money(amount: Money, symbol: str = "$", use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    """
    abs_amount = abs(amount).to_display_string(symbol)
    if amount.is_negative():
        return f"([red]{abs_amount}[/red])" if use_color else f"({abs_amount})"
    return f" [green]{abs_amount}[/green] " if use_color else f" {abs_amount} "


def display_group(group: Group, symbol: str, viewer_id: str | None = None):
    """Display a group's totals and member balances."""
    console.print(f"\n[bold]{group.name}[/bold] [dim]({group.id})[/dim]")
    if group.description:
        console.print(f"  {group.description}")
    console.print(f"  Total expenses: {format_money(group.total_expenses, symbol)}")
    if viewer_id and group.is_member(viewer_id):
        console.print(
            f"  Your balance: {format_money(group.member_balance(viewer_id), symbol)}"
        )
    console.print()

    table = Table(title="Members", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Balance", justify="right", width=14)
    for member in group.members:
        name = member.name
        if member.id == group.created_by:
            name = f"{name} (creator)"
        table.add_row(member.id, name, format_money(member.balance, symbol))
    console.print(table)


@app.command("create-group")
def create_group_command(
    name: str = typer.Argument(..., help="Group name (3-50 characters)"),
    description: str = typer.Option(
        None, "--description", "-d", help="Optional description"
    ),
    user: str = USER_OPTION,
    display_name: str = NAME_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Create a group with you as its first member."""
    with open_service(verbose) as service:
        creator = MemberRef(id=user, name=display_name or user)
        group = service.create_group(creator, name, description)
        console.print(f"\n[bold green]✓ Created group {group.name}[/bold green]")
        console.print(f"  Share this id so others can join: [cyan]{group.id}[/cyan]\n")


@app.command()
def join(
    group_id: str = typer.Argument(..., help="Id of the group to join"),
    user: str = USER_OPTION,
    display_name: str = NAME_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Join an existing group."""
    with open_service(verbose) as service:
        member = MemberRef(id=user, name=display_name or user)
        group = service.join_group(group_id, member)
        console.print(f"\n[bold green]✓ You joined {group.name}[/bold green]\n")


@app.command()
def groups(user: str = USER_OPTION, verbose: bool = VERBOSE_OPTION):
    """List the groups you belong to."""
    with open_service(verbose) as service:
        symbol = service.settings.currency_symbol
        user_groups = service.list_groups(user)
        if not user_groups:
            console.print("[yellow]You are not in any groups yet.[/yellow]")
            return

        table = Table(
            title="Your Groups", show_header=True, header_style="bold magenta"
        )
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Members", justify="right")
        table.add_column("Total", justify="right", width=14)
        table.add_column("Your balance", justify="right", width=14)
        for group in user_groups:
            table.add_row(
                group.id,
                group.name,
                str(len(group.members)),
                format_money(group.total_expenses, symbol),
                format_money(group.member_balance(user), symbol),
            )
        console.print(table)


@app.command()
def show(
    group_id: str = typer.Argument(..., help="Group id"),
    user: str = typer.Option(None, "--user", "-u", help="Your member id"),
    verbose: bool = VERBOSE_OPTION,
):
    """Show a group's balances and suggested settlements."""
    with open_service(verbose) as service:
        symbol = service.settings.currency_symbol
        group = service.get_group(group_id)
        display_group(group, symbol, viewer_id=user)

        names = {member.id: member.name for member in group.members}
        suggestions = service.settlement_suggestions(group_id)
        if suggestions:
            console.print("\n[bold]Suggested settlements:[/bold]")
            for s in suggestions:
                console.print(
                    f"  {names[s.from_member_id]} → {names[s.to_member_id]}: "
                    f"{s.amount.to_display_string(symbol)}"
                )


@app.command("add-expense")
def add_expense_command(
    group_id: str = typer.Argument(..., help="Group id"),
    title: str = typer.Argument(..., help="What the expense was for"),
    amount: str = typer.Argument(..., help="Amount paid, e.g. 30.00"),
    shared_with: list[str] = typer.Option(
        None,
        "--with",
        "-w",
        help="Member id to split with (repeatable; default: everyone)",
    ),
    user: str = USER_OPTION,
    display_name: str = NAME_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Add an expense you paid, split evenly among the selected members."""
    with open_service(verbose) as service:
        symbol = service.settings.currency_symbol
        group = service.get_group(group_id)
        member = group.get_member(user)
        payer = (
            member.ref() if member else MemberRef(id=user, name=display_name or user)
        )

        draft = ExpenseDraft(
            title=title,
            amount=amount,
            paid_by=payer,
            shared_with=shared_with or sorted(group.member_ids),
        )
        expense = service.add_expense(group_id, draft)

        console.print(
            f"\n[bold green]✓ Added {expense.title}[/bold green] "
            f"[dim]({expense.id})[/dim]"
        )
        for share in expense.shared_by:
            share_text = share.share_amount.to_display_string(symbol)
            console.print(f"  {share.name}: {share_text}")
        display_group(service.get_group(group_id), symbol, viewer_id=user)


@app.command("delete-expense")
def delete_expense_command(
    expense_id: str = typer.Argument(..., help="Expense id"),
    user: str = USER_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Delete an expense you paid and reverse its balances."""
    with open_service(verbose) as service:
        group = service.delete_expense(expense_id, user)
        console.print("\n[bold green]✓ Expense deleted[/bold green]")
        display_group(group, service.settings.currency_symbol, viewer_id=user)


@app.command()
def expenses(
    group_id: str = typer.Argument(..., help="Group id"),
    verbose: bool = VERBOSE_OPTION,
):
    """List a group's expenses, newest first."""
    with open_service(verbose) as service:
        symbol = service.settings.currency_symbol
        group_expenses = service.list_expenses(group_id)
        if not group_expenses:
            console.print("[yellow]No expenses yet.[/yellow]")
            return

        table = Table(title="Expenses", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Date")
        table.add_column("Title", style="cyan", width=30)
        table.add_column("Paid by")
        table.add_column("Amount", justify="right", width=14)
        table.add_column("Split", justify="right")
        for expense in group_expenses:
            table.add_row(
                expense.id,
                str(expense.date.date()),
                expense.title[:30],
                expense.paid_by.name,
                format_money(expense.amount, symbol),
                str(len(expense.shared_by)),
            )
        console.print(table)


@app.command("delete-group")
def delete_group_command(
    group_id: str = typer.Argument(..., help="Group id"),
    user: str = USER_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    verbose: bool = VERBOSE_OPTION,
):
    """Delete a group you created, along with all of its expenses."""
    if not yes and not typer.confirm(
        "Delete this group and all of its expenses? This cannot be undone."
    ):
        console.print("[yellow]Cancelled.[/yellow]")
        return

    with open_service(verbose) as service:
        deleted = service.delete_group(group_id, user)
        console.print(
            f"\n[bold green]✓ Group deleted[/bold green] "
            f"({deleted} expense(s) removed)\n"
        )


@app.command()
def summary(user: str = USER_OPTION, verbose: bool = VERBOSE_OPTION):
    """Show what you are owed and what you owe across all your groups."""
    with open_service(verbose) as service:
        symbol = service.settings.currency_symbol
        result = service.summarize(user)
        totals = service.spending(user)

        console.print("\n[bold]Summary:[/bold]")
        console.print(f"  Net balance:   {format_money(result.net_balance, symbol)}")
        owed_to_you = format_money(result.total_owed_to_user, symbol)
        you_owe = format_money(-result.total_user_owes, symbol)
        console.print(f"  Owed to you:   {owed_to_you}")
        console.print(f"  You owe:       {you_owe}")
        console.print(f"  You paid:      {format_money(totals.spent, symbol)}")
        console.print(f"  Your share:    {format_money(totals.share, symbol)}")
        console.print()

        if not result.per_counterparty:
            return

        table = Table(
            title="Balances by member", show_header=True, header_style="bold magenta"
        )
        table.add_column("Member", style="cyan")
        table.add_column("Balance", justify="right", width=14)
        for member_id, amount in sorted(result.per_counterparty.items()):
            table.add_row(
                result.counterparty_names.get(member_id, member_id),
                format_money(amount, symbol),
            )
        console.print(table)


if __name__ == "__main__":
    app()
