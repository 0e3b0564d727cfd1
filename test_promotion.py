import pytest

from campus_cli.exceptions import ValidationError
from campus_cli.promotion.class_reps import ClassRepMigrator
from campus_cli.promotion.concurrent import DepartmentRunner
from campus_cli.promotion.graduates import GraduateArchiver
from campus_cli.promotion.pipeline import prerequisites, promotion_steps, step_key
from campus_cli.promotion.students import StudentMigrator
from campus_cli.store import DocumentStore
from campus_cli.store.paths import (
    SETTINGS_DOC_PATH,
    graduate_path,
    legacy_cr_collection,
    promotion_journal_path,
    student_path,
    students_collection,
    user_path,
)


def ids(store, level, dept):
    return sorted(s.id for s in store.list(students_collection(level, dept)))


def all_student_ids(store, departments):
    found = []
    for level in (1, 2, 3, 4):
        for dept in departments:
            found.extend(ids(store, level, dept))
    return found


def test_promotion_moves_students_and_archives_graduates(ctx, clock, seed_student):
    seed_student(4, "CSE", "C401", joiningYear=2022)
    seed_student(4, "CSE", "C402", joiningYear=2022)
    for roll in ("C301", "C302", "C303"):
        seed_student(3, "CSE", roll, joiningYear=2023)
    seed_student(1, "ECE", "E101", joiningYear=2025)

    result = clock.promote("admin")

    assert result.success, result.message
    assert result.details["yearAdvanced"] is True
    assert result.details["archivedCount"] == 2
    assert result.details["migratedCount"] == 4
    assert result.message.startswith("Academic year promoted to 2026")

    store = ctx.store
    archived = store.get(graduate_path("2022_student_c401"))
    assert archived["graduationYear"] == 2025
    assert archived["originalYear"] == 4
    assert archived["archivedBy"] == "admin"
    assert archived["department"] == "CSE"

    assert ids(store, 4, "CSE") == ["student_c301", "student_c302", "student_c303"]
    assert ids(store, 3, "CSE") == []
    assert ids(store, 2, "ECE") == ["student_e101"]

    moved = store.get(student_path(4, "CSE", "student_c301"))
    assert moved["joiningYear"] == 2023
    assert moved["currentYear"] == 4
    assert moved["previousLevel"] == "year3"
    assert moved["migratedBy"] == "admin"
    assert store.get(student_path(2, "ECE", "student_e101"))["joiningYear"] == 2025

    settings_doc = store.get(SETTINGS_DOC_PATH)
    assert settings_doc["currentYear"] == 2026
    assert settings_doc["previousYear"] == 2025
    assert "promotionLock" not in settings_doc
    assert store.get(promotion_journal_path(2026))["status"] == "completed"


def test_each_student_lives_in_exactly_one_partition(ctx, clock, seed_student):
    for level in (1, 2, 3, 4):
        for dept in ("CSE", "ECE"):
            seed_student(level, dept, f"{dept}{level}01")

    before = all_student_ids(ctx.store, ["CSE", "ECE"])
    clock.promote("admin")
    after = all_student_ids(ctx.store, ["CSE", "ECE"])

    assert len(after) == len(set(after))
    archived = {s.id.split("_", 1)[1] for s in ctx.store.list("graduatedStudents")}
    assert sorted(set(after) | archived) == sorted(before)
    assert not set(after) & archived


def test_joining_year_is_recomputed_for_new_level(ctx, clock, seed_student):
    seed_student(2, "ECE", "E201", joiningYear=2024)

    clock.promote("admin")

    moved = ctx.store.get(student_path(3, "ECE", "student_e201"))
    assert moved["joiningYear"] == 2026 - 3 + 1
    assert moved["academic_year"] == 2024
    assert moved["currentAcademicYear"] == 2026


def test_consecutive_promotions_advance_one_year_each(ctx, clock, seed_student):
    seed_student(1, "CSE", "C101")

    assert clock.promote("admin").details["newYear"] == 2026
    assert clock.promote("admin").details["newYear"] == 2027

    assert ctx.store.get(SETTINGS_DOC_PATH)["currentYear"] == 2027
    assert ids(ctx.store, 3, "CSE") == ["student_c101"]


def test_existing_archive_record_is_never_overwritten(ctx, clock, seed_student):
    seed_student(4, "CSE", "C401", joiningYear=2022)
    ctx.store.set(graduate_path("2022_student_c401"), {"name": "Original record"})

    result = clock.promote("admin")

    assert result.success
    assert result.details["alreadyArchived"] == 1
    assert result.details["archivedCount"] == 0
    assert ctx.store.get(graduate_path("2022_student_c401")) == {"name": "Original record"}
    assert ids(ctx.store, 4, "CSE") == []


def test_graduate_without_joining_year_uses_cohort(ctx, clock, seed_student):
    seed_student(4, "ECE", "E401")

    clock.promote("admin")

    assert ctx.store.exists(graduate_path("2022_student_e401"))


def test_graduating_class_rep_loses_role(ctx, clock, reps, seed_student):
    seed_student(4, "CSE", "C401", name="Grace Hopper", joiningYear=2022)
    assigned = reps.assign(4, "CSE", "student_c401", "admin")
    assert assigned.success

    clock.promote("admin")

    records = reps.primary.all(4, "CSE")
    assert len(records) == 1
    assert records[0].data["active"] is False
    assert records[0].data["status"] == "graduated"
    profile = ctx.store.get(user_path(assigned.details["accountId"]))
    assert profile["isCR"] is False
    assert profile["role"] == "student"
    assert "crYearLevel" not in profile


def test_department_subset_does_not_advance_year(ctx, clock, seed_student):
    seed_student(1, "CSE", "C101")
    seed_student(1, "ECE", "E101")

    first = clock.promote("admin", departments=["CSE"])

    assert first.success
    assert first.details["yearAdvanced"] is False
    assert "students:1:ECE" in first.details["pendingPartitions"]
    assert not any(p.endswith(":CSE") for p in first.details["pendingPartitions"])
    assert ctx.store.get(SETTINGS_DOC_PATH)["currentYear"] == 2025
    assert ctx.store.get(promotion_journal_path(2026))["status"] == "partial"
    assert ids(ctx.store, 2, "CSE") == ["student_c101"]
    assert ids(ctx.store, 1, "ECE") == ["student_e101"]

    second = clock.promote("admin")

    assert second.details["yearAdvanced"] is True
    assert second.details["migratedCount"] == 1
    assert ids(ctx.store, 2, "CSE") == ["student_c101"]
    assert ids(ctx.store, 2, "ECE") == ["student_e101"]
    assert ctx.store.get(SETTINGS_DOC_PATH)["currentYear"] == 2026


def test_partial_failure_keeps_year_and_resumes(ctx, clock, seed_student):
    seed_student(1, "CSE", "C101")
    seed_student(1, "ECE", "E101")
    seed_student(2, "ECE", "E201")

    original = StudentMigrator._migrate_department

    def flaky(self, dept, from_level, to_level, *args):
        if dept == "ECE" and from_level == 2:
            raise RuntimeError("network hiccup")
        return original(self, dept, from_level, to_level, *args)

    with pytest.MonkeyPatch.context() as patch:
        patch.setattr(StudentMigrator, "_migrate_department", flaky)
        first = clock.promote("admin")

    assert first.success
    assert first.details["yearAdvanced"] is False
    assert first.details["failedPartitions"] == ["students:2:ECE"]
    assert "students:1:ECE" in first.details["skippedPartitions"]
    assert "crs:2:ECE" in first.details["skippedPartitions"]
    assert ctx.store.get(SETTINGS_DOC_PATH)["currentYear"] == 2025
    assert "promotionLock" not in ctx.store.get(SETTINGS_DOC_PATH)
    assert ids(ctx.store, 2, "CSE") == ["student_c101"]
    assert ids(ctx.store, 1, "ECE") == ["student_e101"]

    second = clock.promote("admin")

    assert second.details["yearAdvanced"] is True
    assert second.details["newYear"] == 2026
    # committed CSE steps are not replayed
    assert ids(ctx.store, 2, "CSE") == ["student_c101"]
    assert ids(ctx.store, 3, "CSE") == []
    assert ids(ctx.store, 3, "ECE") == ["student_e201"]
    assert ids(ctx.store, 2, "ECE") == ["student_e101"]


def test_promotion_rejected_while_locked(ctx, clock, seed_student):
    seed_student(1, "CSE", "C101")
    ctx.store.set(
        SETTINGS_DOC_PATH, {"promotionLock": {"holder": "registrar"}}, merge=True
    )

    result = clock.promote("admin")

    assert not result.success
    assert result.details["locked"] is True
    assert ids(ctx.store, 1, "CSE") == ["student_c101"]
    assert ctx.store.get(SETTINGS_DOC_PATH)["promotionLock"] == {"holder": "registrar"}


def test_cancelled_promotion_releases_lock(ctx, clock, seed_student, monkeypatch):
    seed_student(4, "CSE", "C401")

    def interrupted(self, dept, acting_identity, current_year):
        raise KeyboardInterrupt()

    monkeypatch.setattr(GraduateArchiver, "_archive_department", interrupted)
    result = clock.promote("admin")

    assert not result.success
    assert result.details["cancelled"] is True
    settings_doc = ctx.store.get(SETTINGS_DOC_PATH)
    assert settings_doc["currentYear"] == 2025
    assert "promotionLock" not in settings_doc


def test_promotion_requires_acting_identity(clock):
    assert not clock.promote("").success


def test_migrate_level_is_idempotent(ctx, seed_student):
    seed_student(3, "CSE", "C301")
    migrator = StudentMigrator(ctx.store, DepartmentRunner(1))

    first = migrator.migrate_level(3, 4, 2026, "admin", ["CSE"])
    second = migrator.migrate_level(3, 4, 2026, "admin", ["CSE"])

    assert first.count == 1
    assert second.count == 0
    assert second.completed == ["CSE"]
    assert ids(ctx.store, 4, "CSE") == ["student_c301"]


@pytest.mark.parametrize("from_level,to_level", [(1, 3), (4, 5), (0, 1), (3, 2)])
def test_migrate_level_rejects_invalid_transitions(ctx, from_level, to_level):
    migrator = StudentMigrator(ctx.store, DepartmentRunner(1))

    with pytest.raises(ValidationError):
        migrator.migrate_level(from_level, to_level, 2026, "admin", ["CSE"])


def test_migration_spans_several_batches(ctx, seed_student):
    small = DocumentStore(ctx.store.engine, max_batch_operations=4)
    for n in range(7):
        seed_student(2, "CSE", f"C2{n:02d}")

    report = StudentMigrator(small, DepartmentRunner(1)).migrate_level(
        2, 3, 2026, "admin", ["CSE"]
    )

    assert report.count == 7
    assert len(ids(ctx.store, 3, "CSE")) == 7


def test_step_ordering():
    keys = [step_key(step, "CSE") for step in promotion_steps()]

    assert keys == [
        "archive:CSE",
        "students:3:CSE",
        "crs:3:CSE",
        "students:2:CSE",
        "crs:2:CSE",
        "students:1:CSE",
        "crs:1:CSE",
    ]
    assert prerequisites(("crs", 2, 3)) == [("students", 2, 3), ("crs", 3, 4)]
    assert prerequisites(("students", 3, 4)) == [("archive", None, None)]


def test_archival_spans_several_batches(ctx, seed_student, monkeypatch):
    small = DocumentStore(ctx.store.engine, max_batch_operations=4)
    for n in range(5):
        seed_student(4, "CSE", f"C4{n:02d}", joiningYear=2022)
    batch_sizes = []
    apply = small._apply

    def recording(operations):
        batch_sizes.append(len(operations))
        return apply(operations)

    monkeypatch.setattr(small, "_apply", recording)

    report = GraduateArchiver(small, DepartmentRunner(1)).archive_terminal_level(
        "admin", ["CSE"], 2025
    )

    assert report.count == 5
    assert report.completed == ["CSE"]
    assert len(batch_sizes) == 3
    assert max(batch_sizes) <= 4
    assert ids(ctx.store, 4, "CSE") == []
    assert len(ctx.store.list("graduatedStudents")) == 5


def test_cr_deactivation_failure_does_not_abort_archival(
    ctx, reps, seed_student, monkeypatch
):
    senior = seed_student(4, "CSE", "C401", joiningYear=2022)
    reps.assign(4, "CSE", senior, "admin")
    ctx.store.set(
        f"{legacy_cr_collection(4, 'CSE')}/rep1",
        {"email": "c401@campus.edu", "studentId": senior, "active": True},
    )
    original = GraduateArchiver._deactivate_in

    def primary_unavailable(self, assignment_store, *args):
        if assignment_store.name == "primary":
            raise RuntimeError("primary CR store unavailable")
        return original(self, assignment_store, *args)

    monkeypatch.setattr(GraduateArchiver, "_deactivate_in", primary_unavailable)

    report = GraduateArchiver(ctx.store, DepartmentRunner(1)).archive_terminal_level(
        "admin", ["CSE"], 2025
    )

    assert report.count == 1
    assert report.failed == {}
    assert ctx.store.exists(graduate_path("2022_student_c401"))
    assert ids(ctx.store, 4, "CSE") == []
    assert reps.primary.list_active(4, "CSE")[0].data["studentId"] == senior
    legacy = ctx.store.get(f"{legacy_cr_collection(4, 'CSE')}/rep1")
    assert legacy["active"] is False
    assert legacy["status"] == "graduated"


def test_cr_migration_failure_is_isolated_per_department(
    ctx, reps, seed_student, monkeypatch
):
    reps.assign(2, "CSE", seed_student(2, "CSE", "C201"), "admin")
    reps.assign(2, "ECE", seed_student(2, "ECE", "E201"), "admin")
    original = ClassRepMigrator._migrate_department

    def flaky(self, dept, *args):
        if dept == "ECE":
            raise RuntimeError("network hiccup")
        return original(self, dept, *args)

    monkeypatch.setattr(ClassRepMigrator, "_migrate_department", flaky)

    report = ClassRepMigrator(ctx.store, DepartmentRunner(1)).migrate_crs_for_level(
        2, 3, "admin", ["CSE", "ECE"]
    )

    assert report.completed == ["CSE"]
    assert list(report.failed) == ["ECE"]
    assert "network hiccup" in report.failed["ECE"]
    assert reps.primary.all(2, "CSE") == []
    assert len(reps.primary.list_active(3, "CSE")) == 1
    assert len(reps.primary.list_active(2, "ECE")) == 1
    assert reps.primary.all(3, "ECE") == []
