"""Shared CLI output helpers."""

import click

from tallybook.domain.balance import evaluate
from tallybook.domain.entities import Pagination, Transaction
from tallybook.utils.amount_parser import format_amount


def balance_label(transaction: Transaction) -> str:
    """Return 'balanced' or a description of the missing side."""
    if transaction.is_balanced:
        return "balanced"
    imbalance = evaluate(transaction.entries).imbalance
    if imbalance is None:
        return "unbalanced"
    return f"missing {imbalance.side.value} {format_amount(imbalance.amount, imbalance.unit)}"


def echo_transaction_row(transaction: Transaction) -> None:
    """Print one transaction as a table row."""
    description = transaction.description[:40]
    click.echo(
        f"{transaction.id:<6} {str(transaction.date):<12} {description:<40} "
        f"{len(transaction.entries):>3}  {balance_label(transaction)}"
    )


def echo_transaction_table(transactions, title: str) -> None:
    """Print a header followed by one row per transaction."""
    click.echo(f"\n{title}")
    click.echo("-" * 100)
    click.echo(f"{'ID':<6} {'Date':<12} {'Description':<40} {'#':>3}  Balance")
    click.echo("-" * 100)
    for txn in transactions:
        echo_transaction_row(txn)


def echo_transaction_detail(transaction: Transaction, account_names: dict[int, str]) -> None:
    """Print a transaction with all of its entries."""
    click.echo(f"\nTransaction ID: {transaction.id}")
    click.echo(f"  Date: {transaction.date}")
    click.echo(f"  Description: {transaction.description}")
    if transaction.reference:
        click.echo(f"  Reference: {transaction.reference}")
    if transaction.notes:
        click.echo(f"  Notes: {transaction.notes}")
    click.echo(f"  Status: {balance_label(transaction)}")
    click.echo("  Entries:")
    for position, entry in enumerate(transaction.entries):
        account = account_names.get(entry.account_id, f"#{entry.account_id}")
        marker = " [generated]" if entry.generated else ""
        line = (
            f"    [{position}] #{entry.id} {entry.side.value:<6} "
            f"{format_amount(entry.amount, entry.unit):>14}  {account}{marker}"
        )
        if entry.description:
            line += f"  ({entry.description})"
        click.echo(line)


def echo_pagination(pagination: Pagination) -> None:
    """Print the paging footer of a list result."""
    click.echo(
        f"Page {pagination.page} of {max(pagination.pages, 1)} "
        f"({pagination.total} total, {pagination.limit} per page)"
    )
