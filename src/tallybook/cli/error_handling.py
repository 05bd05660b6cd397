"""CLI error handling helpers."""

import click

from tallybook.domain.errors import DomainError


def handle_domain_error(ctx: click.Context, error: DomainError | ValueError) -> None:
    """Render a domain error and exit with failure."""
    click.echo(f"Error: {error}", err=True)
    ctx.exit(1)


def parse_or_exit(ctx: click.Context, parser, value: str, label: str):
    """Run a parsing helper, turning its ValueError into a CLI error."""
    try:
        return parser(value)
    except ValueError as e:
        click.echo(f"Error: Invalid {label}: {e}", err=True)
        ctx.exit(1)
