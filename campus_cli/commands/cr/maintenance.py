from typing import List, Optional

import click

from campus_cli.commands.output import report
from campus_cli.context import CampusContext


def reactivate_class_rep(
    ctx: CampusContext, email: str, level: int, department: str, acting_identity: str
) -> None:
    report(ctx.reactivation.reactivate(email, level, department, acting_identity))


def list_inactive_reps(ctx: CampusContext, departments: Optional[List[str]] = None) -> None:
    inactive = ctx.reactivation.list_inactive(departments)
    if not inactive:
        click.secho("No inactive Class Representatives", fg="green")
        return
    for record in inactive:
        click.echo(
            f"year {record['yearLevel']} {record['department']:<6} {record['slot'] or '-':<7} "
            f"{record['status'] or 'inactive':<12} {record['name']} <{record['email']}>"
        )
    click.secho(f"{len(inactive)} inactive records", fg="yellow")


def repair_cr_projections(
    ctx: CampusContext,
    acting_identity: str,
    levels: Optional[List[int]] = None,
    departments: Optional[List[str]] = None,
) -> None:
    """Rewrite student and account CR flags from the assignment records."""
    report(ctx.repairer.repair(acting_identity, levels, departments), show_details=True)
