import pytest

from campus_cli.academic_year import AcademicYearClock, student_distribution
from campus_cli.exceptions import PromotionLockError
from campus_cli.store.paths import SETTINGS_DOC_PATH


def test_load_initializes_missing_year(ctx):
    assert ctx.clock.load() == 2025

    stored = ctx.store.get(SETTINGS_DOC_PATH)
    assert stored["currentYear"] == 2025
    assert stored["updatedBy"] == "system"


def test_load_resets_implausible_year(ctx):
    ctx.store.set(SETTINGS_DOC_PATH, {"currentYear": 2031})

    assert ctx.clock.load() == 2025
    stored = ctx.store.get(SETTINGS_DOC_PATH)
    assert stored["currentYear"] == 2025
    assert stored["correctedFrom"] == 2031


def test_load_keeps_year_at_ceiling(ctx):
    ctx.store.set(SETTINGS_DOC_PATH, {"currentYear": 2026})

    assert ctx.clock.load() == 2026


def test_load_falls_back_to_default_on_store_error(ctx, monkeypatch):
    def broken_get(path):
        raise RuntimeError("store offline")

    monkeypatch.setattr(ctx.store, "get", broken_get)

    assert ctx.clock.load() == 2025


def test_joining_year_and_label(clock):
    assert clock.joining_year_for_level(1) == 2025
    assert clock.joining_year_for_level(4) == 2022
    assert clock.year_display_label(2) == "Year 2 – 2024"


def test_cached_year_until_invalidated(ctx, clock):
    ctx.store.set(SETTINGS_DOC_PATH, {"currentYear": 2026}, merge=True)
    assert clock.current_year() == 2025

    clock.invalidate()
    assert clock.current_year() == 2026


def test_promotion_lock_is_exclusive(clock):
    clock.acquire_promotion_lock(2025, "admin")

    with pytest.raises(PromotionLockError, match="admin"):
        clock.acquire_promotion_lock(2025, "registrar")

    clock.release_promotion_lock()
    clock.acquire_promotion_lock(2025, "registrar")


def test_promotion_lock_requires_expected_year(clock):
    with pytest.raises(PromotionLockError):
        clock.acquire_promotion_lock(2024, "admin")


def test_commit_promotion_moves_exactly_one_year(ctx, clock):
    with pytest.raises(ValueError):
        clock.commit_promotion(2025, 2027, "admin")

    clock.acquire_promotion_lock(2025, "admin")
    clock.commit_promotion(2025, 2026, "admin")

    stored = ctx.store.get(SETTINGS_DOC_PATH)
    assert stored["currentYear"] == 2026
    assert stored["previousYear"] == 2025
    assert stored["updatedBy"] == "admin"
    assert "promotionLock" not in stored
    assert clock.current_year() == 2026


def test_commit_promotion_refuses_stale_year(ctx, clock):
    ctx.store.set(SETTINGS_DOC_PATH, {"currentYear": 2026}, merge=True)

    with pytest.raises(PromotionLockError):
        clock.commit_promotion(2025, 2026, "admin")


def test_student_distribution(ctx, clock, seed_student):
    seed_student(1, "CSE", "C101")
    seed_student(1, "ECE", "E101")
    seed_student(4, "CSE", "C401")

    rows = student_distribution(ctx.store, clock, ctx.settings.departments)

    by_level = {row["currentYear"]: row for row in rows}
    assert by_level[1]["studentCount"] == 2
    assert by_level[1]["byDepartment"] == {"CSE": 1, "ECE": 1}
    assert by_level[4]["joiningYear"] == 2022
    assert by_level[3]["studentCount"] == 0


def test_separate_clocks_share_the_stored_year(ctx):
    ctx.clock.load()
    other = AcademicYearClock(ctx.store, ctx.settings)

    assert other.load() == 2025
