"""Reconciliation commands: finding counterparts, merging and splitting."""

from datetime import date

import click

from tallybook.cli.account_resolution import resolve_account_or_exit
from tallybook.cli.error_handling import handle_domain_error, parse_or_exit
from tallybook.cli.formatting import (
    balance_label,
    echo_pagination,
    echo_transaction_table,
)
from tallybook.domain.account import AccountService
from tallybook.domain.entities import EntrySide, SideFilter
from tallybook.domain.errors import DomainError
from tallybook.domain.reconciliation import ReconciliationService
from tallybook.domain.search import MatchSearchService
from tallybook.utils.amount_parser import format_amount, parse_amount
from tallybook.utils.date_parser import parse_date

side_filter_choice = click.Choice([s.value for s in SideFilter], case_sensitive=False)


def _paging_options(command):
    command = click.option("--limit", type=int, default=10, show_default=True)(command)
    command = click.option("--page", type=int, default=1, show_default=True)(command)
    return command


@click.group()
def reconcile_group():
    """Find complementary transactions and restructure them."""
    pass


@reconcile_group.command("matches")
@click.option("--amount", required=True, help="Excess amount of the transaction to complete")
@click.option(
    "--side",
    type=click.Choice([s.value for s in EntrySide], case_sensitive=False),
    required=True,
    help="Side on which the transaction has its excess",
)
@click.option("--date", "date_str", default="today", show_default=True, help="Reference date")
@click.option("--business-days", type=int, help="Window in business days on each side (default 15)")
@click.option("--exclude", type=int, help="Transaction ID to leave out")
@click.option("--account", help="Only candidates with an entry on this account")
@click.option("--type", "entry_type", type=side_filter_choice, help="Only candidates with an entry on this side")
@click.option("--search", help="Case-insensitive regular expression over descriptions")
@_paging_options
@click.pass_context
def find_matches(
    ctx,
    amount: str,
    side: str,
    date_str: str,
    business_days: int | None,
    exclude: int | None,
    account: str | None,
    entry_type: str | None,
    search: str | None,
    page: int,
    limit: int,
) -> None:
    """Find unbalanced transactions that would cancel an excess.

    Examples:
        tallybook reconcile matches --amount 54.20 --side debit --date 2024-01-15
    """
    db = ctx.obj["db"]
    service = MatchSearchService(db)

    value = parse_or_exit(ctx, parse_amount, amount, "amount")
    reference = parse_or_exit(ctx, parse_date, date_str, "date format")
    account_id = None
    if account:
        account_id = resolve_account_or_exit(ctx, AccountService(db), account)

    try:
        window = service.window(reference, business_days)
        result = service.find_complementary(
            value,
            side.lower(),
            reference,
            business_days=business_days,
            exclude_transaction_id=exclude,
            account_id=account_id,
            entry_type_filter=entry_type.lower() if entry_type else None,
            search_text=search,
            page=page,
            limit=limit,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(
        f"Searching {window.start.date()} to {window.end.date()} "
        f"({window.business_days} business days around {reference})"
    )
    if not result.items:
        click.echo("No complementary transactions found.")
        return
    echo_transaction_table(result.items, f"Found {result.pagination.total} candidate(s):")
    echo_pagination(result.pagination)


@reconcile_group.command("suggest")
@click.argument("transaction_id", type=int)
@click.option("--business-days", type=int, help="Window in business days on each side (default 15)")
@_paging_options
@click.pass_context
def suggest(ctx, transaction_id: int, business_days: int | None, page: int, limit: int) -> None:
    """Suggest counterparts for an unbalanced transaction."""
    service = MatchSearchService(ctx.obj["db"])

    try:
        result = service.suggest_matches(
            transaction_id, business_days=business_days, page=page, limit=limit
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not result.items:
        click.echo(f"No counterparts found for transaction {transaction_id}.")
        return
    echo_transaction_table(
        result.items, f"Counterparts for transaction {transaction_id}:"
    )
    echo_pagination(result.pagination)


@reconcile_group.command("entries")
@click.option("--date", "date_str", help="Reference date; searches all dates when omitted")
@click.option("--business-days", type=int, help="Window in business days on each side (default 15)")
@click.option("--account", help="Account name or ID")
@click.option("--side", type=side_filter_choice, help="Entry side")
@click.option("--min-amount", help="Minimum amount (inclusive)")
@click.option("--max-amount", help="Maximum amount (inclusive)")
@click.option("--search", help="Case-insensitive regular expression over descriptions")
@click.option("--exclude", type=int, help="Transaction ID to leave out")
@click.option("--include-balanced", is_flag=True, help="Also show entries of balanced transactions")
@_paging_options
@click.pass_context
def search_entries(
    ctx,
    date_str: str | None,
    business_days: int | None,
    account: str | None,
    side: str | None,
    min_amount: str | None,
    max_amount: str | None,
    search: str | None,
    exclude: int | None,
    include_balanced: bool,
    page: int,
    limit: int,
) -> None:
    """Search individual entries.

    Only entries of unbalanced transactions are shown unless
    --include-balanced is given.
    """
    db = ctx.obj["db"]
    service = MatchSearchService(db)

    reference: date | None = None
    if date_str:
        reference = parse_or_exit(ctx, parse_date, date_str, "date format")
    low = parse_or_exit(ctx, parse_amount, min_amount, "minimum amount") if min_amount else None
    high = parse_or_exit(ctx, parse_amount, max_amount, "maximum amount") if max_amount else None
    account_id = None
    if account:
        account_id = resolve_account_or_exit(ctx, AccountService(db), account)

    try:
        result = service.search_entries(
            reference,
            business_days=business_days,
            account_id=account_id,
            side=side.lower() if side else None,
            min_amount=low,
            max_amount=high,
            search_text=search,
            exclude_transaction_id=exclude,
            include_balanced=include_balanced,
            page=page,
            limit=limit,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not result.items:
        click.echo("No entries found.")
        return

    click.echo(f"\nFound {result.pagination.total} entr{'y' if result.pagination.total == 1 else 'ies'}:")
    click.echo("-" * 100)
    click.echo(f"{'Entry':<7} {'Txn':<6} {'Date':<12} {'Side':<7} {'Amount':>14}  {'Account':<20} Description")
    click.echo("-" * 100)
    for match in result.items:
        entry = match.entry
        click.echo(
            f"{entry.id:<7} {match.transaction_id:<6} {str(match.transaction_date):<12} "
            f"{entry.side.value:<7} {format_amount(entry.amount, entry.unit):>14}  "
            f"{match.account_name[:20]:<20} {match.transaction_description[:30]}"
        )
    echo_pagination(result.pagination)


@reconcile_group.command("merge")
@click.argument("source_id", type=int)
@click.argument("target_id", type=int)
@click.pass_context
def merge(ctx, source_id: int, target_id: int) -> None:
    """Merge TARGET_ID into SOURCE_ID.

    Both transactions must be unbalanced and miss opposite sides. The
    target's entries move to the source and the target is deleted.

    Examples:
        tallybook reconcile merge 12 15
    """
    service = ReconciliationService(ctx.obj["db"])

    try:
        merged = service.merge(source_id, target_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Merged transaction {target_id} into {source_id}")
    click.echo(f"  Status: {balance_label(merged)}")


@reconcile_group.command("split")
@click.argument("transaction_id", type=int)
@click.argument("positions", type=int, nargs=-1, required=True)
@click.option("--description", help="Description of the new transaction")
@click.pass_context
def split(ctx, transaction_id: int, positions: tuple[int, ...], description: str | None) -> None:
    """Move the entries at POSITIONS into a new transaction.

    Positions are zero-based, as listed by 'transaction show'.

    Examples:
        tallybook reconcile split 12 2 3 --description "Refund"
    """
    service = ReconciliationService(ctx.obj["db"])

    try:
        result = service.split(transaction_id, list(positions), description=description)
    except DomainError as e:
        handle_domain_error(ctx, e)

    new_txn = result.new_transaction
    click.echo(f"Created transaction {new_txn.id} ({balance_label(new_txn)})")
    if result.original_removed:
        click.echo(f"Transaction {transaction_id} had no entries left and was deleted")
    else:
        click.echo(f"Transaction {transaction_id} is now {balance_label(result.original)}")


def register_commands(cli: click.Group) -> None:
    """Register reconciliation commands with main CLI."""
    cli.add_command(reconcile_group, name="reconcile")
