from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

TERMINAL_TASK_STATUSES = frozenset({"PRODUCTION", "ARCHIVED"})
MIN_STAGE_BUCKET = 1
MAX_STAGE_BUCKET = 5
DUE_SOON_DAYS = 3


@dataclass(frozen=True)
class ProjectProgress:
    progress_percent: int
    done_tasks: int
    total_tasks: int


@dataclass(frozen=True)
class DeadlineFlags:
    overdue: bool = False
    due_soon: bool = False


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _task_field(task: Any, field: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(field)
    return getattr(task, field, None)


def is_task_done(task: Any) -> bool:
    completed = _task_field(task, "completed")
    if isinstance(completed, bool):
        return completed
    progress = _task_field(task, "progress")
    if _is_number(progress):
        return progress >= 100
    return _task_field(task, "status") in TERMINAL_TASK_STATUSES


def compute_project_progress_from_tasks(tasks: Iterable[Any]) -> ProjectProgress:
    items = list(tasks)
    total = len(items)
    if total == 0:
        return ProjectProgress(progress_percent=0, done_tasks=0, total_tasks=0)
    done = sum(1 for task in items if is_task_done(task))
    return ProjectProgress(
        progress_percent=_round_half_up(done / total * 100),
        done_tasks=done,
        total_tasks=total,
    )


def clamp_progress(value: Any, fallback: int = 0) -> int:
    if _is_number(value):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError:
            return fallback
    else:
        return fallback
    if not math.isfinite(numeric):
        return fallback
    if numeric < 0:
        return 0
    if numeric > 100:
        return 100
    return _round_half_up(numeric)


def bucket_stage_order(order: float | None) -> int:
    if not _is_number(order) or not order or not math.isfinite(order):
        return MIN_STAGE_BUCKET
    if order <= MIN_STAGE_BUCKET:
        return MIN_STAGE_BUCKET
    if order >= MAX_STAGE_BUCKET:
        return MAX_STAGE_BUCKET
    return _round_half_up(order)


def project_deadline_flags(due_date: date | None, status: str | None, today: date) -> DeadlineFlags:
    if due_date is None or status != "ACTIVE":
        return DeadlineFlags()
    if today > due_date:
        return DeadlineFlags(overdue=True)
    remaining = (due_date - today).days
    return DeadlineFlags(due_soon=0 <= remaining <= DUE_SOON_DAYS)
