"""Main CLI entry point."""

import logging

import click
from sqlalchemy.exc import SQLAlchemyError

from tallybook import __version__
from tallybook.database.factories import create_sqlite_database
from tallybook.logging_config import LOG_LEVEL_ENV, LOG_LEVELS, configure_logging

# Import and register all commands at module level
from tallybook.cli.commands import (
    account,
    entry,
    reconcile,
    rule,
    transaction,
)

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides TALLYBOOK_DB_PATH environment variable)",
    envvar="TALLYBOOK_DB_PATH",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    envvar=LOG_LEVEL_ENV,
    help="Console log level (default WARNING)",
)
@click.version_option(version=__version__, prog_name="tallybook")
@click.pass_context
def cli(ctx, db_path: str | None, log_level: str | None):
    """Tallybook - double-entry ledger with reconciliation.

    Record transactions as debit and credit entries, find the counterparts
    of unbalanced transactions and let rules complete them automatically.
    """
    ctx.ensure_object(dict)
    configure_logging(log_level)

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db


# Register all commands
account.register_commands(cli)
transaction.register_commands(cli)
entry.register_commands(cli)
reconcile.register_commands(cli)
rule.register_commands(cli)


def main():
    """Main entry point for CLI."""
    try:
        cli()
    except SQLAlchemyError:
        logger.exception("Database operation failed")
        click.echo("Error: internal database error", err=True)
        raise SystemExit(1)
    except Exception:
        logger.exception("Unexpected error")
        click.echo("Error: internal error", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
