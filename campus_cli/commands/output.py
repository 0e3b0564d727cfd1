import sys
from typing import Any, Dict

import click

from campus_cli.results import OperationResult


def report(result: OperationResult, show_details: bool = False) -> None:
    """Print an operation result and exit non-zero if it failed."""
    click.secho(result.message, fg="green" if result.success else "red")
    if show_details or not result.success:
        print_details(result.details)
    if not result.success:
        sys.exit(1)


def print_details(details: Dict[str, Any]) -> None:
    for key, value in details.items():
        if value in (None, [], {}):
            continue
        if isinstance(value, dict):
            click.echo(f"  {key}:")
            for inner_key, inner_value in value.items():
                click.echo(f"    {inner_key}: {inner_value}")
        elif isinstance(value, list) and value and isinstance(value[0], dict):
            click.echo(f"  {key}:")
            for item in value:
                click.echo(f"    - {item}")
        else:
            click.echo(f"  {key}: {value}")
