from campus_cli.commands.output import report
from campus_cli.context import CampusContext


def deactivate_class_rep(
    ctx: CampusContext, level: int, department: str, slot: str, acting_identity: str
) -> None:
    report(ctx.reps.deactivate(level, department, slot, acting_identity))


def delete_class_rep(
    ctx: CampusContext, level: int, department: str, slot: str, acting_identity: str
) -> None:
    report(ctx.reps.delete(level, department, slot, acting_identity))


def remove_student_as_rep(
    ctx: CampusContext, level: int, department: str, student_id: str, acting_identity: str
) -> None:
    report(ctx.reps.remove(level, department, student_id, acting_identity))
