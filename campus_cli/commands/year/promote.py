import sys
from typing import List, Optional

import click

from campus_cli.commands.output import report
from campus_cli.context import CampusContext


def promote_academic_year(
    ctx: CampusContext,
    acting_identity: str,
    departments: Optional[List[str]] = None,
    max_workers: Optional[int] = None,
    assume_yes: bool = False,
) -> None:
    """
    Advance every student by one year level and archive the final-year cohort.

    Departments that fail are reported and left for the next run; the
    academic year only moves when every department has been promoted.

    Args:
        ctx: Wired services
        acting_identity: Recorded as the author of every write
        departments: Promote only these departments now; the year advances
            once every configured department has been promoted
        max_workers: Departments processed in parallel
        assume_yes: Skip the confirmation prompt
    """
    current = ctx.clock.load()
    unknown = sorted(set(departments or []) - set(ctx.settings.departments))
    if unknown:
        click.secho(f"Unknown departments: {', '.join(unknown)}", fg="red")
        sys.exit(1)

    if not assume_yes and not click.confirm(
        f"Promote all students from academic year {current} to {current + 1}? "
        f"Year 4 students will be archived as graduates.",
        default=False,
    ):
        click.secho("Promotion cancelled", fg="yellow")
        return

    click.echo(f"Promoting academic year {current} -> {current + 1}...")
    result = ctx.clock.promote(
        acting_identity, departments=departments, max_workers=max_workers
    )
    report(result)

    details = result.details
    click.echo(f"  Graduates archived: {details.get('archivedCount', 0)}")
    if details.get("alreadyArchived"):
        click.echo(f"  Already archived: {details['alreadyArchived']}")
    click.echo(f"  Students moved up: {details.get('migratedCount', 0)}")
    click.echo(f"  CR records moved up: {details.get('crMigratedCount', 0)}")

    if not details.get("yearAdvanced"):
        for partition in details.get("failedPartitions", []):
            click.secho(f"  failed  {partition}: {details['errors'][partition]}", fg="red")
        for partition in details.get("skippedPartitions", []):
            click.secho(f"  skipped {partition}", fg="yellow")
        pending = details.get("pendingPartitions", [])
        if pending:
            click.secho(f"  pending {len(pending)} department steps: {', '.join(pending)}", fg="yellow")
        sys.exit(2)
