from campus_cli.promotion.class_reps import ClassRepMigrator
from campus_cli.promotion.concurrent import DepartmentRunner
from campus_cli.store.paths import (
    legacy_cr_collection,
    legacy_index_path,
    primary_cr_collection,
    user_path,
)


def test_promotion_moves_cr_with_their_class(ctx, clock, reps, seed_student):
    student = seed_student(3, "CSE", "C301", name="Ravi Kumar")
    assigned = reps.assign(3, "CSE", student, "admin", slot="slot-2")

    result = clock.promote("admin")

    assert result.details["crMigratedCount"] == 1
    assert reps.primary.all(3, "CSE") == []
    [moved] = reps.primary.all(4, "CSE")
    assert moved.id == assigned.details["assignmentId"]
    assert moved.data["year"] == "year_4"
    assert moved.data["currentYear"] == 4
    assert moved.data["lastPromotedFrom"] == "year_3"
    assert moved.data["slot"] == "slot-2"
    assert moved.data["active"] is True

    profile = ctx.store.get(user_path(assigned.details["accountId"]))
    assert profile["crYearLevel"] == 4
    assert profile["crYear"] == "year_4"
    assert profile["isCR"] is True

    index = ctx.store.get(legacy_index_path("c301@campus.edu"))
    assert index["yearLevel"] == 4
    assert index["year"] == "year4"


def test_inactive_records_stay_behind(ctx, reps, seed_student):
    student = seed_student(2, "ECE", "E201")
    reps.assign(2, "ECE", student, "admin")
    reps.deactivate(2, "ECE", "slot-1", "admin")

    report = ClassRepMigrator(ctx.store, DepartmentRunner(1)).migrate_crs_for_level(
        2, 3, "admin", ["ECE"]
    )

    assert report.count == 0
    assert len(reps.primary.all(2, "ECE")) == 1
    assert reps.primary.all(3, "ECE") == []


def test_graduation_and_cr_migration_do_not_collide(ctx, clock, reps, seed_student):
    senior = seed_student(4, "CSE", "C401", joiningYear=2022)
    junior = seed_student(3, "CSE", "C301", joiningYear=2023)
    reps.assign(4, "CSE", senior, "admin", slot="slot-1")
    reps.assign(3, "CSE", junior, "admin", slot="slot-1")

    clock.promote("admin")

    holders = reps.list_active(4, "CSE")
    assert holders["slot-1"]["studentId"] == junior
    assert holders["slot-2"] is None
    statuses = sorted(snap.data["status"] for snap in reps.primary.all(4, "CSE"))
    assert statuses == ["active", "graduated"]


def test_legacy_nested_records_follow_the_class(ctx, seed_student):
    ctx.store.set(
        f"{legacy_cr_collection(1, 'CSE')}/rep1",
        {"email": "c101@campus.edu", "name": "Old Style", "active": True},
    )
    ctx.store.set(f"{primary_cr_collection(1, 'CSE')}/keep", {"active": False})

    report = ClassRepMigrator(ctx.store, DepartmentRunner(1)).migrate_crs_for_level(
        1, 2, "admin", ["CSE"]
    )

    assert report.completed == ["CSE"]
    assert report.extra.get("legacyFailures", 0) == 0
    assert ctx.store.list(legacy_cr_collection(1, "CSE")) == []
    [moved] = ctx.store.list(legacy_cr_collection(2, "CSE"))
    assert moved.id == "rep1"
    assert moved.data["year"] == "year_2"
