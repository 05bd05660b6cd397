"""Transaction management commands."""

import click

from tallybook.cli.account_resolution import resolve_account_or_exit
from tallybook.cli.date_filters import period_option, resolve_cli_date_range
from tallybook.cli.entry_options import build_entries_or_exit, entry_options
from tallybook.cli.error_handling import handle_domain_error, parse_or_exit
from tallybook.cli.formatting import (
    echo_pagination,
    echo_transaction_detail,
    echo_transaction_table,
)
from tallybook.domain.account import AccountService
from tallybook.domain.errors import DomainError
from tallybook.domain.rule_engine import RuleStatus
from tallybook.domain.transaction import TransactionService
from tallybook.utils.date_parser import parse_date


def _account_names(db) -> dict[int, str]:
    return {acc.id: acc.name for acc in AccountService(db).list_accounts()}


def _echo_rule_outcomes(service: TransactionService) -> None:
    for outcome in service.last_rule_outcomes:
        if outcome.status is RuleStatus.APPLIED:
            click.echo(f"  Applied rule '{outcome.rule_name}'")
        elif outcome.status is RuleStatus.FAILED:
            click.echo(f"  Rule '{outcome.rule_name}' failed: {outcome.message}", err=True)


@click.group()
def transaction_group():
    """Manage transactions."""
    pass


@transaction_group.command("add")
@click.option(
    "--date",
    "date_str",
    required=True,
    help="Transaction date (YYYY-MM-DD or relative like 'today', 'yesterday')",
)
@click.option("--description", required=True, help="Transaction description")
@entry_options
@click.option("--reference", help="Reference")
@click.option("--notes", help="Notes")
@click.pass_context
def add_transaction(
    ctx,
    date_str: str,
    description: str,
    debits: tuple[str, ...],
    credits: tuple[str, ...],
    reference: str | None,
    notes: str | None,
):
    """Add a transaction.

    Each entry is given as ACCOUNT=AMOUNT with --debit or --credit; ACCOUNT
    is an account name or ID. A transaction may be saved unbalanced and
    reconciled later.

    Examples:
        tallybook transaction add --date 2024-01-15 --description "Groceries" \\
            --debit Groceries=54.20 --credit Checking=54.20
        tallybook transaction add --date today --description "Paycheck" --debit Checking=2500
    """
    db = ctx.obj["db"]
    service = TransactionService(db)
    account_service = AccountService(db)

    txn_date = parse_or_exit(ctx, parse_date, date_str, "date format")
    entries = build_entries_or_exit(ctx, account_service, debits, credits)
    if not entries:
        click.echo("Error: At least one --debit or --credit entry is required.", err=True)
        ctx.exit(1)

    try:
        txn = service.create_transaction(
            date=txn_date,
            description=description,
            entries=entries,
            reference=reference,
            notes=notes,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Created transaction {txn.id}")
    click.echo(f"  Description: {txn.description}")
    click.echo(f"  Balanced: {'yes' if txn.is_balanced else 'no'}")
    _echo_rule_outcomes(service)


@transaction_group.command("show")
@click.argument("transaction_id", type=int)
@click.pass_context
def show_transaction(ctx, transaction_id: int) -> None:
    """Show a transaction with its entries."""
    db = ctx.obj["db"]
    service = TransactionService(db)

    try:
        txn = service.require_transaction(transaction_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
    echo_transaction_detail(txn, _account_names(db))


@transaction_group.command("update")
@click.argument("transaction_id", type=int)
@click.option("--date", "date_str", help="Transaction date (YYYY-MM-DD or relative like 'today')")
@click.option("--description", help="Transaction description")
@click.option("--reference", help="Reference")
@click.option("--notes", help="Notes")
@entry_options
@click.pass_context
def update_transaction(
    ctx,
    transaction_id: int,
    date_str: str | None,
    description: str | None,
    reference: str | None,
    notes: str | None,
    debits: tuple[str, ...],
    credits: tuple[str, ...],
) -> None:
    """Update a transaction.

    Updates only the fields that are provided. Giving any --debit/--credit
    replaces the whole entry list.

    Examples:
        tallybook transaction update 1 --description "Coffee"
        tallybook transaction update 1 --debit Dining=4.50 --credit Cash=4.50
    """
    db = ctx.obj["db"]
    service = TransactionService(db)

    txn_date = parse_or_exit(ctx, parse_date, date_str, "date format") if date_str else None
    entries = None
    if debits or credits:
        entries = build_entries_or_exit(ctx, AccountService(db), debits, credits)

    try:
        service.update_transaction(
            transaction_id=transaction_id,
            date=txn_date,
            description=description,
            reference=reference,
            notes=notes,
            entries=entries,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Updated transaction {transaction_id}")
    _echo_rule_outcomes(service)


@transaction_group.command("list")
@click.option("--start-date", help="Start date (YYYY-MM-DD or relative like 'last month', 'this year')")
@click.option("--end-date", help="End date (YYYY-MM-DD or relative like 'today', 'this month')")
@period_option
@click.option("--account", help="Account name or ID")
@click.option("--search", help="Case-insensitive regular expression over descriptions")
@click.option("--unbalanced", is_flag=True, help="Show only unbalanced transactions")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_context
def list_transactions(
    ctx,
    start_date: str | None,
    end_date: str | None,
    period: str | None,
    account: str | None,
    search: str | None,
    unbalanced: bool,
    page: int,
    limit: int,
):
    """View transactions with optional filters.

    Account can be specified by name or ID.
    """
    db = ctx.obj["db"]
    service = TransactionService(db)

    start, end = resolve_cli_date_range(
        ctx, start_date=start_date, end_date=end_date, period=period
    )
    account_id = None
    if account:
        account_id = resolve_account_or_exit(ctx, AccountService(db), account)

    try:
        result = service.list_transactions(
            start_date=start,
            end_date=end,
            account_id=account_id,
            description_pattern=search,
            unbalanced_only=unbalanced,
            page=page,
            limit=limit,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not result.items:
        click.echo("No transactions found.")
        return

    echo_transaction_table(result.items, f"Found {result.pagination.total} transaction(s):")
    echo_pagination(result.pagination)


@transaction_group.command("unbalanced")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_context
def list_unbalanced(ctx, page: int, limit: int) -> None:
    """List transactions that do not balance."""
    db = ctx.obj["db"]
    service = TransactionService(db)

    try:
        result = service.list_unbalanced(page=page, limit=limit)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not result.items:
        click.echo("No unbalanced transactions.")
        return

    echo_transaction_table(result.items, f"{result.pagination.total} unbalanced transaction(s):")
    echo_pagination(result.pagination)


@transaction_group.command("delete")
@click.argument("transaction_id", type=int)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete_transaction(ctx, transaction_id: int, yes: bool) -> None:
    """Delete a transaction.

    Examples:
        tallybook transaction delete 1
    """
    db = ctx.obj["db"]
    service = TransactionService(db)

    if service.get_transaction(transaction_id) is None:
        click.echo(f"Error: Transaction {transaction_id} not found", err=True)
        ctx.exit(1)

    if not yes and not click.confirm(f"Are you sure you want to delete transaction {transaction_id}?"):
        click.echo("Deletion cancelled.")
        return

    try:
        service.delete_transaction(transaction_id)
        click.echo(f"Deleted transaction {transaction_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


def register_commands(cli: click.Group) -> None:
    """Register transaction commands with main CLI."""
    cli.add_command(transaction_group, name="transaction")
