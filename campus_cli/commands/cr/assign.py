import sys
from typing import Optional

import click

from campus_cli.commands.output import print_details, report
from campus_cli.context import CampusContext
from campus_cli.exceptions import ValidationError
from campus_cli.reps.projections import resolve_cr_access
from campus_cli.reps.stores import PASSWORD_RESET_MARKER


def assign_class_rep(
    ctx: CampusContext,
    level: int,
    department: str,
    student_id: str,
    acting_identity: str,
    slot: Optional[str] = None,
) -> None:
    result = ctx.reps.assign(level, department, student_id, acting_identity, slot=slot)
    if not result.success:
        report(result)

    click.secho(f"{result.message} ({result.details['slot']})", fg="green")
    _print_credentials(result.details)


def replace_class_rep(
    ctx: CampusContext,
    level: int,
    department: str,
    slot: str,
    student_id: str,
    acting_identity: str,
) -> None:
    result = ctx.reps.replace(level, department, slot, student_id, acting_identity)
    if not result.success:
        report(result)

    click.secho(result.message, fg="green")
    _print_credentials(result.details)


def _print_credentials(details: dict) -> None:
    if details.get("credential") == PASSWORD_RESET_MARKER:
        status = "sent" if details.get("resetEmailSent") else "NOT sent, check SMTP settings"
        click.secho(
            f"Existing account: password reset email {status}",
            fg="green" if details.get("resetEmailSent") else "yellow",
        )
    elif details.get("password"):
        click.secho(f"Login password: {details['password']}", fg="cyan")
    if details.get("replaced"):
        click.echo(f"Replaced assignment(s): {', '.join(details['replaced'])}")


def list_class_reps(ctx: CampusContext, level: int, department: str) -> None:
    try:
        ctx.reps.validate_partition(level, department)
    except ValidationError as e:
        click.secho(str(e), fg="red")
        sys.exit(1)
    holders = ctx.reps.list_active(level, department)
    click.secho(f"{ctx.clock.year_display_label(level)} {department}", fg="green")
    for slot, holder in holders.items():
        if holder is None:
            click.echo(f"  {slot}: (vacant)")
        else:
            click.echo(
                f"  {slot}: {holder.get('name')} <{holder.get('email')}> "
                f"since {holder.get('assignedAt')}"
            )


def show_cr_status(ctx: CampusContext, email: str) -> None:
    status = ctx.reactivation.account_status(email)
    click.secho(
        f"Account: {'found' if status['exists'] else 'not found'}",
        fg="green" if status["exists"] else "yellow",
    )
    print_details(status)
    access = resolve_cr_access(ctx.store, ctx.settings, email)
    click.secho(access.message, fg="green" if access.success else "red")
    if access.success:
        print_details(access.details)
