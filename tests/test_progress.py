from __future__ import annotations

from datetime import date

from app.domain.progress import (
    bucket_stage_order,
    clamp_progress,
    compute_project_progress_from_tasks,
    is_task_done,
    project_deadline_flags,
)


def test_progress_for_empty_project() -> None:
    progress = compute_project_progress_from_tasks([])
    assert (progress.progress_percent, progress.done_tasks, progress.total_tasks) == (0, 0, 0)


def test_progress_rounds_half_up() -> None:
    tasks = [{"completed": True}, {"completed": True}, {"completed": False}]
    progress = compute_project_progress_from_tasks(tasks)
    assert progress.progress_percent == 67
    assert progress.done_tasks == 2
    assert progress.total_tasks == 3

    halves = [{"completed": True}] + [{"completed": False}] * 7
    assert compute_project_progress_from_tasks(halves).progress_percent == 13


def test_task_done_falls_back_to_legacy_fields() -> None:
    assert is_task_done({"completed": None, "progress": 100})
    assert not is_task_done({"completed": False, "progress": 100})
    assert is_task_done({"status": "PRODUCTION"})
    assert not is_task_done({"status": "IN_PROGRESS", "progress": "100"})


def test_bucket_stage_order_clamps() -> None:
    assert bucket_stage_order(None) == 1
    assert bucket_stage_order(0) == 1
    assert bucket_stage_order(float("nan")) == 1
    assert bucket_stage_order(2.5) == 3
    assert bucket_stage_order(6) == 5
    assert bucket_stage_order(bucket_stage_order(4)) == 4


def test_clamp_progress() -> None:
    assert clamp_progress(-5) == 0
    assert clamp_progress("120") == 100
    assert clamp_progress("abc", fallback=7) == 7
    assert clamp_progress(49.5) == 50


def test_deadline_flags_only_for_active_projects() -> None:
    today = date(2026, 3, 10)
    assert project_deadline_flags(date(2026, 3, 9), "ACTIVE", today).overdue
    assert project_deadline_flags(date(2026, 3, 13), "ACTIVE", today).due_soon
    assert not project_deadline_flags(date(2026, 3, 14), "ACTIVE", today).due_soon
    flags = project_deadline_flags(date(2026, 3, 9), "ARCHIVED", today)
    assert not flags.overdue
    assert not flags.due_soon
