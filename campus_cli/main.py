import os

import click

from campus_cli.commands.cr.assign import (
    assign_class_rep,
    list_class_reps,
    replace_class_rep,
    show_cr_status,
)
from campus_cli.commands.cr.maintenance import (
    list_inactive_reps,
    reactivate_class_rep,
    repair_cr_projections,
)
from campus_cli.commands.cr.revoke import (
    deactivate_class_rep,
    delete_class_rep,
    remove_student_as_rep,
)
from campus_cli.commands.year.promote import promote_academic_year
from campus_cli.commands.year.show import (
    load_academic_year,
    show_academic_year,
    show_distribution,
)
from campus_cli.config import YEAR_LEVELS
from campus_cli.context import CampusContext, build_context
from campus_cli.utils.logging_config import configure_from_env

LEVEL = click.IntRange(min(YEAR_LEVELS), max(YEAR_LEVELS))


def default_identity() -> str:
    return os.getenv("CAMPUS_ACTING_IDENTITY") or os.getenv("USER") or "cli"


acting_option = click.option(
    "--by",
    "acting_identity",
    default=default_identity,
    show_default="current user",
    help="Identity recorded on every write",
)


def get_context() -> CampusContext:
    return build_context()


@click.group()
def cli() -> None:
    configure_from_env()


@cli.group()
def db() -> None:
    pass


@db.command(name="init")
def db_init() -> None:
    """Create the database tables and the academic year record."""
    ctx = get_context()
    load_academic_year(ctx)


@cli.group()
def year() -> None:
    pass


@year.command(name="show")
def year_show() -> None:
    show_academic_year(get_context())


@year.command(name="load")
def year_load() -> None:
    """Initialize or correct the stored academic year."""
    load_academic_year(get_context())


@year.command(name="distribution")
def year_distribution() -> None:
    """Active students per year level and department."""
    show_distribution(get_context())


@year.command(name="promote")
@acting_option
@click.option(
    "--dept",
    "departments",
    multiple=True,
    help="Only promote these departments now (repeatable); the year advances once all are done",
)
@click.option("--workers", type=int, default=None, help="Departments processed in parallel")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not ask for confirmation")
def year_promote(
    acting_identity: str, departments: tuple[str, ...], workers: int, assume_yes: bool
) -> None:
    """Promote every student by one year and archive graduates."""
    promote_academic_year(
        get_context(),
        acting_identity,
        departments=[d.upper() for d in departments] or None,
        max_workers=workers,
        assume_yes=assume_yes,
    )


@cli.group()
def cr() -> None:
    pass


@cr.command(name="assign")
@click.argument("level", type=LEVEL)
@click.argument("department")
@click.argument("student_id")
@click.option("--slot", help="slot-1 or slot-2 (default: first free slot)")
@acting_option
def cr_assign(
    level: int, department: str, student_id: str, slot: str, acting_identity: str
) -> None:
    """Make a student Class Representative of their class."""
    assign_class_rep(
        get_context(), level, department.upper(), student_id, acting_identity, slot=slot
    )


@cr.command(name="replace")
@click.argument("level", type=LEVEL)
@click.argument("department")
@click.argument("slot")
@click.argument("student_id")
@acting_option
def cr_replace(
    level: int, department: str, slot: str, student_id: str, acting_identity: str
) -> None:
    """Hand a CR slot over to another student."""
    replace_class_rep(
        get_context(), level, department.upper(), slot, student_id, acting_identity
    )


@cr.command(name="deactivate")
@click.argument("level", type=LEVEL)
@click.argument("department")
@click.argument("slot")
@acting_option
def cr_deactivate(level: int, department: str, slot: str, acting_identity: str) -> None:
    deactivate_class_rep(get_context(), level, department.upper(), slot, acting_identity)


@cr.command(name="delete")
@click.argument("level", type=LEVEL)
@click.argument("department")
@click.argument("slot")
@acting_option
@click.confirmation_option(prompt="Delete the assignment record permanently?")
def cr_delete(level: int, department: str, slot: str, acting_identity: str) -> None:
    delete_class_rep(get_context(), level, department.upper(), slot, acting_identity)


@cr.command(name="remove")
@click.argument("level", type=LEVEL)
@click.argument("department")
@click.argument("student_id")
@acting_option
def cr_remove(level: int, department: str, student_id: str, acting_identity: str) -> None:
    """Revoke whichever slot the student holds."""
    remove_student_as_rep(
        get_context(), level, department.upper(), student_id, acting_identity
    )


@cr.command(name="list")
@click.argument("level", type=LEVEL, required=False)
@click.argument("department", required=False)
@click.option("--inactive", is_flag=True, help="List deactivated records instead")
def cr_list(level: int, department: str, inactive: bool) -> None:
    ctx = get_context()
    if inactive:
        list_inactive_reps(ctx, [department.upper()] if department else None)
        return
    ctx.clock.load()
    levels = [level] if level else YEAR_LEVELS
    departments = [department.upper()] if department else ctx.settings.departments
    for lvl in levels:
        for dept in departments:
            list_class_reps(ctx, lvl, dept)


@cr.command(name="reactivate")
@click.argument("email")
@click.argument("level", type=LEVEL)
@click.argument("department")
@acting_option
def cr_reactivate(email: str, level: int, department: str, acting_identity: str) -> None:
    reactivate_class_rep(get_context(), email, level, department.upper(), acting_identity)


@cr.command(name="repair")
@click.option("--year", "levels", type=LEVEL, multiple=True, help="Year level (repeatable)")
@click.option("--dept", "departments", multiple=True, help="Department (repeatable)")
@acting_option
def cr_repair(levels: tuple[int, ...], departments: tuple[str, ...], acting_identity: str) -> None:
    repair_cr_projections(
        get_context(),
        acting_identity,
        list(levels) or None,
        [d.upper() for d in departments] or None,
    )


@cr.command(name="status")
@click.argument("email")
def cr_status(email: str) -> None:
    """Show the account and CR access of an email address."""
    show_cr_status(get_context(), email)


if __name__ == "__main__":
    cli()
