"""CLI helpers for entries given as ACCOUNT=AMOUNT options."""

import click

from tallybook.cli.account_resolution import resolve_account_or_exit
from tallybook.cli.error_handling import handle_domain_error
from tallybook.domain.account import AccountService
from tallybook.domain.entities import Entry, EntrySide
from tallybook.domain.errors import DomainError
from tallybook.domain.guard import build_entry
from tallybook.utils.amount_parser import parse_assignment


def entry_options(command):
    """Add repeatable --debit and --credit options to a command."""
    command = click.option(
        "--credit",
        "credits",
        multiple=True,
        metavar="ACCOUNT=AMOUNT",
        help="Credit entry (repeatable)",
    )(command)
    command = click.option(
        "--debit",
        "debits",
        multiple=True,
        metavar="ACCOUNT=AMOUNT",
        help="Debit entry (repeatable)",
    )(command)
    return command


def build_entries_or_exit(
    ctx: click.Context,
    account_service: AccountService,
    debits: tuple[str, ...],
    credits: tuple[str, ...],
) -> list[Entry]:
    """Turn --debit/--credit assignments into entries, or exit with a CLI error."""
    entries = []
    for side, specs in ((EntrySide.DEBIT, debits), (EntrySide.CREDIT, credits)):
        for spec in specs:
            try:
                account, amount = parse_assignment(spec)
            except ValueError as e:
                click.echo(f"Error: {e}", err=True)
                ctx.exit(1)
            account_id = resolve_account_or_exit(ctx, account_service, account)
            try:
                entries.append(build_entry(account_id, amount, side))
            except DomainError as e:
                handle_domain_error(ctx, e)
    return entries
