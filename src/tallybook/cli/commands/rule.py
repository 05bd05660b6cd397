"""Rule management commands."""

import click

from tallybook.cli.account_resolution import resolve_account_or_exit, resolve_accounts_or_exit
from tallybook.cli.date_filters import period_option, resolve_cli_date_range
from tallybook.cli.error_handling import handle_domain_error
from tallybook.cli.formatting import balance_label, echo_pagination, echo_transaction_table
from tallybook.domain.account import AccountService
from tallybook.domain.entities import (
    ComplementaryAction,
    Destination,
    MergeAction,
    ProgressEvent,
    RenameAction,
    Rule,
    SideFilter,
)
from tallybook.domain.errors import DomainError
from tallybook.domain.rule import RuleService
from tallybook.domain.rule_engine import RuleEngine, RuleStatus
from tallybook.utils.amount_parser import format_amount, parse_assignment

PROGRESS_EVERY = 50


def rule_options(command):
    """Add the matching options shared by every add-* command."""
    command = click.option(
        "--manual", is_flag=True, help="Do not apply automatically on every transaction write"
    )(command)
    command = click.option(
        "--side",
        "entry_side",
        type=click.Choice([s.value for s in SideFilter], case_sensitive=False),
        default=SideFilter.BOTH.value,
        show_default=True,
        help="Only match transactions holding an entry on this side",
    )(command)
    command = click.option(
        "--source-account",
        "source_accounts",
        multiple=True,
        help="Only match transactions touching this account (repeatable)",
    )(command)
    return command


def _create_rule(ctx, name, pattern, action, source_accounts, entry_side, manual) -> None:
    db = ctx.obj["db"]
    source_ids = resolve_accounts_or_exit(ctx, AccountService(db), source_accounts)
    try:
        rule = RuleService(db).create_rule(
            name=name,
            pattern=pattern,
            action=action,
            source_account_ids=source_ids,
            entry_side=entry_side.lower(),
            auto_apply=not manual,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Created {rule.kind} rule '{rule.name}' (ID: {rule.id})")


def describe_action(rule: Rule, account_names: dict[int, str]) -> str:
    """Return a one-line summary of what a rule does."""
    action = rule.action
    if isinstance(action, RenameAction):
        return f"rename to '{action.replacement}'"
    if isinstance(action, ComplementaryAction):
        parts = []
        for dest in action.destinations:
            account = account_names.get(dest.account_id, f"#{dest.account_id}")
            if dest.ratio is not None:
                parts.append(f"{account} {dest.ratio * 100:g}%")
            elif dest.amount is not None:
                parts.append(f"{account} {format_amount(dest.amount)}")
            else:
                parts.append(f"{account} remainder")
        return "complete with " + ", ".join(parts)
    counterpart = action.counterpart_pattern or "same pattern"
    return f"merge with counterpart ({counterpart}) within {action.max_date_difference} days"


@click.group()
def rule_group():
    """Manage rules applied to transactions."""
    pass


@rule_group.command("add-rename")
@click.argument("name")
@click.argument("pattern")
@click.option("--replacement", required=True, help="New transaction description")
@rule_options
@click.pass_context
def add_rename(ctx, name, pattern, replacement, source_accounts, entry_side, manual) -> None:
    """Add a rule that renames matching transactions.

    PATTERN is a case-insensitive regular expression over descriptions.

    Examples:
        tallybook rule add-rename "Coffee" "STARBUCKS.*" --replacement "Coffee"
    """
    _create_rule(
        ctx, name, pattern, RenameAction(replacement=replacement), source_accounts, entry_side, manual
    )


@rule_group.command("add-complementary")
@click.argument("name")
@click.argument("pattern")
@click.option("--to", "ratios", multiple=True, metavar="ACCOUNT=RATIO", help="Destination by ratio (repeatable)")
@click.option(
    "--to-amount", "amounts", multiple=True, metavar="ACCOUNT=AMOUNT", help="Destination by fixed amount (repeatable)"
)
@click.option("--remainder", help="Destination taking what the fixed amounts leave")
@rule_options
@click.pass_context
def add_complementary(
    ctx, name, pattern, ratios, amounts, remainder, source_accounts, entry_side, manual
) -> None:
    """Add a rule that completes unbalanced transactions.

    The missing side is filled with generated entries on the destination
    accounts, split either by ratios summing to 1 or by fixed amounts.

    Examples:
        tallybook rule add-complementary "Groceries" "SAFEWAY" --to Groceries=1
        tallybook rule add-complementary "Rent" "RENT" --to-amount Rent=1500 --remainder Utilities
    """
    db = ctx.obj["db"]
    account_service = AccountService(db)

    if ratios and (amounts or remainder):
        click.echo("Error: --to cannot be combined with --to-amount or --remainder.", err=True)
        ctx.exit(1)
    if not ratios and not amounts and not remainder:
        click.echo("Error: At least one destination is required.", err=True)
        ctx.exit(1)

    destinations = []
    try:
        for spec in ratios:
            account, value = parse_assignment(spec)
            destinations.append(
                Destination(account_id=resolve_account_or_exit(ctx, account_service, account), ratio=value)
            )
        for spec in amounts:
            account, value = parse_assignment(spec)
            destinations.append(
                Destination(account_id=resolve_account_or_exit(ctx, account_service, account), amount=value)
            )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    if remainder:
        destinations.append(Destination(account_id=resolve_account_or_exit(ctx, account_service, remainder)))

    _create_rule(
        ctx,
        name,
        pattern,
        ComplementaryAction(destinations=tuple(destinations)),
        source_accounts,
        entry_side,
        manual,
    )


@rule_group.command("add-merge")
@click.argument("name")
@click.argument("pattern")
@click.option("--counterpart-pattern", help="Pattern the counterpart must match (defaults to PATTERN)")
@click.option("--counterpart-account", "counterpart_accounts", multiple=True, help="Counterpart account (repeatable)")
@click.option("--max-days", type=int, default=3, show_default=True, help="Maximum date difference")
@rule_options
@click.pass_context
def add_merge(
    ctx,
    name,
    pattern,
    counterpart_pattern,
    counterpart_accounts,
    max_days,
    source_accounts,
    entry_side,
    manual,
) -> None:
    """Add a rule that merges matching transactions with their counterpart.

    Examples:
        tallybook rule add-merge "Transfers" "TRANSFER" --max-days 5
    """
    counterpart_ids = resolve_accounts_or_exit(ctx, AccountService(ctx.obj["db"]), counterpart_accounts)
    action = MergeAction(
        counterpart_pattern=counterpart_pattern,
        counterpart_account_ids=counterpart_ids,
        max_date_difference=max_days,
    )
    _create_rule(ctx, name, pattern, action, source_accounts, entry_side, manual)


@rule_group.command("list")
@click.pass_context
def list_rules(ctx) -> None:
    """List all rules in the order they are applied."""
    db = ctx.obj["db"]
    rules = RuleService(db).list_rules()
    if not rules:
        click.echo("No rules found.")
        return

    names = {acc.id: acc.name for acc in AccountService(db).list_accounts()}
    click.echo("\nRules:")
    click.echo("-" * 100)
    for rule in rules:
        mode = "auto" if rule.auto_apply else "manual"
        click.echo(
            f"ID: {rule.id:3d} | {rule.name:20s} | {rule.kind:13s} | {mode:6s} | "
            f"/{rule.pattern}/ -> {describe_action(rule, names)}"
        )


@rule_group.command("show")
@click.argument("rule_id", type=int)
@click.pass_context
def show_rule(ctx, rule_id: int) -> None:
    """Show one rule."""
    db = ctx.obj["db"]
    try:
        rule = RuleService(db).require_rule(rule_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    names = {acc.id: acc.name for acc in AccountService(db).list_accounts()}
    click.echo(f"\nRule ID: {rule.id}")
    click.echo(f"  Name: {rule.name}")
    click.echo(f"  Type: {rule.kind}")
    click.echo(f"  Pattern: {rule.pattern}")
    click.echo(f"  Action: {describe_action(rule, names)}")
    click.echo(f"  Side: {rule.entry_side.value}")
    if rule.source_account_ids:
        accounts = ", ".join(names.get(i, f"#{i}") for i in rule.source_account_ids)
        click.echo(f"  Source accounts: {accounts}")
    click.echo(f"  Auto-apply: {'yes' if rule.auto_apply else 'no'}")


@rule_group.command("delete")
@click.argument("rule_id", type=int)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete_rule(ctx, rule_id: int, yes: bool) -> None:
    """Delete a rule."""
    service = RuleService(ctx.obj["db"])
    try:
        rule = service.require_rule(rule_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not yes and not click.confirm(f"Are you sure you want to delete rule '{rule.name}'?"):
        click.echo("Deletion cancelled.")
        return

    service.delete_rule(rule_id)
    click.echo(f"Deleted rule '{rule.name}'")


def _set_auto_apply(ctx, rule_id: int, auto_apply: bool) -> None:
    try:
        rule = RuleService(ctx.obj["db"]).set_auto_apply(rule_id, auto_apply)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"{'Enabled' if auto_apply else 'Disabled'} automatic application of rule '{rule.name}'")


@rule_group.command("enable")
@click.argument("rule_id", type=int)
@click.pass_context
def enable_rule(ctx, rule_id: int) -> None:
    """Apply a rule automatically on every transaction write."""
    _set_auto_apply(ctx, rule_id, True)


@rule_group.command("disable")
@click.argument("rule_id", type=int)
@click.pass_context
def disable_rule(ctx, rule_id: int) -> None:
    """Stop applying a rule automatically."""
    _set_auto_apply(ctx, rule_id, False)


@rule_group.command("preview")
@click.argument("pattern")
@click.option("--source-account", "source_accounts", multiple=True, help="Account filter (repeatable)")
@click.option(
    "--side",
    "entry_side",
    type=click.Choice([s.value for s in SideFilter], case_sensitive=False),
    default=SideFilter.BOTH.value,
    show_default=True,
)
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_context
def preview(ctx, pattern, source_accounts, entry_side, page, limit) -> None:
    """Show stored transactions a draft rule would match."""
    db = ctx.obj["db"]
    source_ids = resolve_accounts_or_exit(ctx, AccountService(db), source_accounts)
    try:
        result, unbalanced = RuleService(db).preview_matches(
            pattern,
            source_account_ids=source_ids,
            entry_side=entry_side.lower(),
            page=page,
            limit=limit,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not result.items:
        click.echo("No matching transactions.")
        return
    echo_transaction_table(
        result.items,
        f"{result.pagination.total} matching transaction(s), {unbalanced} unbalanced:",
    )
    echo_pagination(result.pagination)


@rule_group.command("test")
@click.argument("rule_id", type=int)
@click.argument("transaction_id", type=int)
@click.pass_context
def test_rule(ctx, rule_id: int, transaction_id: int) -> None:
    """Show what a rule would do to a transaction without changing it."""
    db = ctx.obj["db"]
    try:
        effect = RuleEngine(db).preview_effect(rule_id, transaction_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if effect.is_empty:
        click.echo(f"No change: {effect.reason}")
        return
    if effect.description is not None:
        click.echo(f"Would rename to '{effect.description}'")
    if effect.entries is not None:
        names = {acc.id: acc.name for acc in AccountService(db).list_accounts()}
        click.echo("Would add entries:")
        for entry in effect.entries:
            if entry.generated and entry.id is None:
                account = names.get(entry.account_id, f"#{entry.account_id}")
                click.echo(
                    f"  {entry.side.value:<6} {format_amount(entry.amount, entry.unit):>14}  {account}"
                )
    if effect.merge_with is not None:
        click.echo(f"Would merge with transaction {effect.merge_with}")


@rule_group.command("apply")
@click.argument("rule_id", type=int)
@click.argument("transaction_id", type=int)
@click.pass_context
def apply_rule(ctx, rule_id: int, transaction_id: int) -> None:
    """Apply one rule to one transaction."""
    try:
        outcome, txn = RuleEngine(ctx.obj["db"]).apply_rule(rule_id, transaction_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if outcome.status is RuleStatus.APPLIED:
        click.echo(f"Applied rule '{outcome.rule_name}' to transaction {txn.id} ({balance_label(txn)})")
    elif outcome.status is RuleStatus.SKIPPED:
        click.echo(f"Rule '{outcome.rule_name}' skipped: {outcome.message}")
    else:
        click.echo(f"Rule '{outcome.rule_name}' does not match transaction {transaction_id}")


class EchoProgress:
    """Progress sink printing a line every few transactions."""

    def __init__(self, every: int = PROGRESS_EVERY):
        self.every = every

    def emit(self, event: ProgressEvent) -> None:
        if event.done or event.processed % self.every == 0:
            click.echo(
                f"  {event.processed}/{event.total} processed, "
                f"{event.matched} matched, {event.modified} modified"
            )


@rule_group.command("apply-all")
@click.option("--start-date", help="Start date (YYYY-MM-DD or relative like 'last month')")
@click.option("--end-date", help="End date (YYYY-MM-DD or relative like 'today')")
@period_option
@click.option("--pattern", help="Only transactions whose description matches")
@click.option("--account", "accounts", multiple=True, help="Only transactions touching this account (repeatable)")
@click.option("--all", "include_balanced", is_flag=True, help="Include balanced transactions")
@click.pass_context
def apply_all(ctx, start_date, end_date, period, pattern, accounts, include_balanced) -> None:
    """Apply all auto-apply rules to stored transactions.

    By default only unbalanced transactions are processed. The date range
    may not exceed one year.

    Examples:
        tallybook rule apply-all
        tallybook rule apply-all --period last-month --all
    """
    db = ctx.obj["db"]
    start, end = resolve_cli_date_range(ctx, start_date=start_date, end_date=end_date, period=period)
    account_ids = resolve_accounts_or_exit(ctx, AccountService(db), accounts)

    try:
        result = RuleEngine(db).apply_all(
            start_date=start,
            end_date=end,
            pattern=pattern,
            account_ids=account_ids,
            unbalanced_only=not include_balanced,
            sink=EchoProgress(),
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(
        f"Processed {result.processed} transaction(s): "
        f"{result.matched} matched, {result.modified} modified"
    )
    for transaction_id, message in result.failures:
        click.echo(f"  Transaction {transaction_id} failed: {message}", err=True)


def register_commands(cli: click.Group) -> None:
    """Register rule commands with main CLI."""
    cli.add_command(rule_group, name="rule")
