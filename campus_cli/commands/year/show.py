import click

from campus_cli.academic_year import student_distribution
from campus_cli.config import YEAR_LEVELS
from campus_cli.context import CampusContext
from campus_cli.store.paths import SETTINGS_DOC_PATH


def show_academic_year(ctx: CampusContext) -> None:
    year = ctx.clock.load()
    settings_doc = ctx.store.get(SETTINGS_DOC_PATH) or {}

    click.secho(f"Current academic year: {year}", fg="green")
    for level in YEAR_LEVELS:
        click.echo(f"  {ctx.clock.year_display_label(level)}")

    if settings_doc.get("previousYear"):
        click.echo(
            f"Last promoted from {settings_doc['previousYear']} by "
            f"{settings_doc.get('updatedBy')} on {settings_doc.get('promotionDate')}"
        )
    lock = settings_doc.get("promotionLock")
    if lock:
        click.secho(
            f"Promotion in progress: started by {lock.get('holder')} at {lock.get('acquiredAt')}",
            fg="yellow",
        )


def load_academic_year(ctx: CampusContext) -> None:
    """Initialize or correct the stored academic year."""
    before = (ctx.store.get(SETTINGS_DOC_PATH) or {}).get("currentYear")
    year = ctx.clock.load()
    if before is None:
        click.secho(f"Academic year initialized to {year}", fg="green")
    elif before != year:
        click.secho(f"Academic year {before} was out of range, reset to {year}", fg="yellow")
    else:
        click.secho(f"Academic year is {year}", fg="green")


def show_distribution(ctx: CampusContext) -> None:
    ctx.clock.load()
    departments = ctx.settings.departments
    rows = student_distribution(ctx.store, ctx.clock, departments)

    header = f"{'Year':<16}" + "".join(f"{d:>7}" for d in departments) + f"{'Total':>8}"
    click.echo(header)
    click.echo("-" * len(header))
    for row in rows:
        counts = "".join(f"{row['byDepartment'][d]:>7}" for d in departments)
        click.echo(f"{row['label']:<16}{counts}{row['studentCount']:>8}")
    click.echo("-" * len(header))
    click.secho(
        f"{sum(row['studentCount'] for row in rows)} active students", fg="green"
    )
