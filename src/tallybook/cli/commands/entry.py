"""Entry-level commands: add, delete and move single entries."""

import click

from tallybook.cli.account_resolution import resolve_account_or_exit
from tallybook.cli.error_handling import handle_domain_error, parse_or_exit
from tallybook.cli.formatting import balance_label
from tallybook.domain.account import AccountService
from tallybook.domain.entities import EntrySide
from tallybook.domain.errors import DomainError
from tallybook.domain.reconciliation import ReconciliationService
from tallybook.domain.transaction import TransactionService
from tallybook.utils.amount_parser import parse_amount


@click.group()
def entry_group():
    """Manage individual entries of transactions."""
    pass


@entry_group.command("add")
@click.argument("transaction_id", type=int)
@click.argument("account", metavar="ACCOUNT")
@click.argument("amount", metavar="AMOUNT")
@click.option(
    "--side",
    type=click.Choice([s.value for s in EntrySide], case_sensitive=False),
    required=True,
    help="Side of the new entry",
)
@click.option("--description", help="Entry description")
@click.pass_context
def add_entry(
    ctx, transaction_id: int, account: str, amount: str, side: str, description: str | None
) -> None:
    """Append an entry to a transaction.

    Examples:
        tallybook entry add 4 Checking 54.20 --side credit
    """
    db = ctx.obj["db"]
    service = TransactionService(db)

    account_id = resolve_account_or_exit(ctx, AccountService(db), account)
    value = parse_or_exit(ctx, parse_amount, amount, "amount")

    try:
        txn = service.add_entry(
            transaction_id=transaction_id,
            account_id=account_id,
            amount=value,
            side=side.lower(),
            description=description,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Added {side.lower()} entry to transaction {txn.id} ({balance_label(txn)})")


@entry_group.command("delete")
@click.argument("transaction_id", type=int)
@click.argument("entry_id", type=int)
@click.pass_context
def delete_entry(ctx, transaction_id: int, entry_id: int) -> None:
    """Delete an entry from a transaction.

    Deleting the last entry deletes the transaction too.
    """
    service = ReconciliationService(ctx.obj["db"])

    try:
        removal = service.delete_entry(transaction_id, entry_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Deleted entry {entry_id}")
    if removal.transaction_removed:
        click.echo(f"Transaction {transaction_id} had no entries left and was deleted")
    else:
        click.echo(f"Transaction {transaction_id} is now {balance_label(removal.transaction)}")


@entry_group.command("move")
@click.argument("entry_id", type=int)
@click.argument("destination_id", type=int, metavar="DESTINATION_TRANSACTION_ID")
@click.pass_context
def move_entry(ctx, entry_id: int, destination_id: int) -> None:
    """Move an entry into another transaction.

    Examples:
        tallybook entry move 12 7
    """
    service = ReconciliationService(ctx.obj["db"])

    try:
        result = service.move_entry(entry_id, destination_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Moved entry {entry_id} to transaction {destination_id}")
    click.echo(f"  Transaction {destination_id}: {balance_label(result.destination)}")
    if result.source_removed:
        click.echo(f"  Transaction {result.source_id} had no entries left and was deleted")
    else:
        click.echo(f"  Transaction {result.source_id}: {balance_label(result.source)}")


def register_commands(cli: click.Group) -> None:
    """Register entry commands with main CLI."""
    cli.add_command(entry_group, name="entry")
