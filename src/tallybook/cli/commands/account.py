"""Account management commands."""

import click

from tallybook.cli.account_resolution import resolve_account_or_exit
from tallybook.cli.error_handling import handle_domain_error
from tallybook.domain.account import AccountService
from tallybook.domain.entities import AccountType
from tallybook.domain.errors import DomainError


@click.group()
def account_group():
    """Manage accounts."""
    pass


@account_group.command("create")
@click.argument("name", metavar="ACCOUNT_NAME")
@click.option(
    "--type",
    "account_type",
    type=click.Choice([t.value for t in AccountType], case_sensitive=False),
    required=True,
    help="Account type",
)
@click.option("--unit", default="USD", show_default=True, help="Unit of value, e.g. USD or stock:AAPL")
@click.option("--parent", help="Parent account name or ID")
@click.option("--description", help="Account description")
@click.pass_context
def create_account(
    ctx, name: str, account_type: str, unit: str, parent: str | None, description: str | None
):
    """Create a new account.

    Examples:
        tallybook account create "Checking" --type asset
        tallybook account create "AAPL" --type asset --unit stock:AAPL --parent "Brokerage"
    """
    db = ctx.obj["db"]
    service = AccountService(db)

    parent_id = None
    if parent is not None:
        parent_id = resolve_account_or_exit(ctx, service, parent)

    try:
        account_id = service.create_account(
            name=name,
            account_type=account_type.lower(),
            unit=unit,
            parent_id=parent_id,
            description=description,
        )
        click.echo(f"Created account '{name}' (ID: {account_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@account_group.command("list")
@click.option("--active-only", is_flag=True, help="Hide deactivated accounts")
@click.pass_context
def list_accounts(ctx, active_only: bool):
    """List all accounts."""
    db = ctx.obj["db"]
    service = AccountService(db)

    accounts = service.list_accounts(include_inactive=not active_only)
    if not accounts:
        click.echo("No accounts found.")
        return

    names = {acc.id: acc.name for acc in accounts}
    click.echo("\nAccounts:")
    click.echo("-" * 80)
    for acc in accounts:
        parent = f" | Parent: {names.get(acc.parent_id, acc.parent_id)}" if acc.parent_id else ""
        status = "" if acc.is_active else " | inactive"
        click.echo(
            f"ID: {acc.id:3d} | {acc.name:20s} | {acc.account_type.value:9s} | {acc.unit}{parent}{status}"
        )


@account_group.command("rename")
@click.argument("account", metavar="ACCOUNT")
@click.argument("new_name", metavar="NEW_NAME")
@click.pass_context
def rename_account(ctx, account: str, new_name: str) -> None:
    """Rename an account.

    ACCOUNT can be an account name or ID.

    Examples:
        tallybook account rename "Checking" "Main Checking"
    """
    db = ctx.obj["db"]
    service = AccountService(db)
    account_id = resolve_account_or_exit(ctx, service, account)

    try:
        service.rename_account(account_id=account_id, name=new_name)
        click.echo(f"Renamed account to '{new_name}'")
    except DomainError as e:
        handle_domain_error(ctx, e)


@account_group.command("move")
@click.argument("account", metavar="ACCOUNT")
@click.option("--parent", help="New parent account name or ID")
@click.option("--top-level", is_flag=True, help="Remove the parent")
@click.pass_context
def move_account(ctx, account: str, parent: str | None, top_level: bool) -> None:
    """Move an account under another account.

    Examples:
        tallybook account move "Groceries" --parent "Food"
        tallybook account move "Groceries" --top-level
    """
    db = ctx.obj["db"]
    service = AccountService(db)

    if (parent is None) == (not top_level):
        click.echo("Error: Specify exactly one of --parent or --top-level.", err=True)
        ctx.exit(1)

    account_id = resolve_account_or_exit(ctx, service, account)
    parent_id = None if top_level else resolve_account_or_exit(ctx, service, parent)

    try:
        service.set_parent(account_id, parent_id)
        target = "the top level" if parent_id is None else f"account {parent_id}"
        click.echo(f"Moved account {account_id} to {target}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@account_group.command("deactivate")
@click.argument("account", metavar="ACCOUNT")
@click.option("--activate", is_flag=True, help="Reactivate instead")
@click.pass_context
def deactivate_account(ctx, account: str, activate: bool) -> None:
    """Deactivate (or reactivate) an account."""
    db = ctx.obj["db"]
    service = AccountService(db)
    account_id = resolve_account_or_exit(ctx, service, account)

    service.set_active(account_id, activate)
    click.echo(f"{'Activated' if activate else 'Deactivated'} account {account_id}")


@account_group.command("delete")
@click.argument("account", metavar="ACCOUNT")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete_account(ctx, account: str, yes: bool) -> None:
    """Delete an account.

    ACCOUNT can be an account name or ID.

    The account can only be deleted if it has no child accounts and no
    entries reference it.

    Examples:
        tallybook account delete "Old Savings"
        tallybook account delete 3 --yes
    """
    db = ctx.obj["db"]
    service = AccountService(db)
    account_id = resolve_account_or_exit(ctx, service, account)
    account_obj = service.get_account(account_id)

    if not yes and not click.confirm(
        f"Are you sure you want to delete account '{account_obj.name}' (ID: {account_id})?"
    ):
        click.echo("Deletion cancelled.")
        return

    try:
        service.delete_account(account_id)
        click.echo(f"Deleted account '{account_obj.name}'")
    except DomainError as e:
        handle_domain_error(ctx, e)


def register_commands(cli):
    """Register account commands with main CLI."""
    cli.add_command(account_group, name="account")
