from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlmodel import Session, col, select

from app.domain.models import (
    AnalyticsSummaryRead,
    AnalyticsTotals,
    Department,
    DepartmentBreakdown,
    PriorityBreakdown,
    PriorityLight,
    Project,
    ProjectStatus,
    WeeklyCount,
)
from app.domain.progress import project_deadline_flags
from app.infra.db import get_engine

WEEKS_TRACKED = 8
UNKNOWN_DEPARTMENT = "UNKNOWN"


def week_start(value: date | datetime) -> date:
    day = value.date() if isinstance(value, datetime) else value
    return day - timedelta(days=day.weekday())


def _count(totals: AnalyticsTotals, status: ProjectStatus, overdue: bool, due_soon: bool) -> None:
    totals.total += 1
    if status == ProjectStatus.ACTIVE:
        totals.active += 1
    elif status == ProjectStatus.ARCHIVED:
        totals.archived += 1
    if overdue:
        totals.overdue += 1
    if due_soon:
        totals.due_soon += 1


class AnalyticsService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def summary(self, *, department: str | None = None, today: date | None = None) -> AnalyticsSummaryRead:
        today = today or date.today()
        current_week = week_start(today)
        weeks = [current_week - timedelta(weeks=offset) for offset in range(WEEKS_TRACKED)]
        weekly_created = dict.fromkeys(weeks, 0)
        weekly_archived = dict.fromkeys(weeks, 0)

        totals = AnalyticsTotals()
        by_department: dict[str, DepartmentBreakdown] = {}
        by_priority = PriorityBreakdown()

        with self._session() as session:
            statement = (
                select(Project, Department)
                .join(Department, col(Project.department_id) == col(Department.id), isouter=True)
                .where(Project.status != ProjectStatus.DELETED)
            )
            if department:
                statement = statement.where(Department.key == department)
            rows = session.exec(statement.order_by(col(Project.id))).all()

        for project, project_department in rows:
            flags = project_deadline_flags(project.due_date, project.status, today)
            _count(totals, project.status, flags.overdue, flags.due_soon)

            if project.priority_light == PriorityLight.RED:
                by_priority.red += 1
            elif project.priority_light == PriorityLight.YELLOW:
                by_priority.yellow += 1
            else:
                by_priority.green += 1

            key = project_department.key if project_department is not None else UNKNOWN_DEPARTMENT
            breakdown = by_department.setdefault(key, DepartmentBreakdown(department_key=key))
            _count(breakdown, project.status, flags.overdue, flags.due_soon)

            created_week = week_start(project.created_at)
            if created_week in weekly_created:
                weekly_created[created_week] += 1
            if project.status == ProjectStatus.ARCHIVED:
                archived_week = week_start(project.updated_at)
                if archived_week in weekly_archived:
                    weekly_archived[archived_week] += 1

        return AnalyticsSummaryRead(
            totals=totals,
            by_department=list(by_department.values()),
            by_priority=by_priority,
            weekly_created=[WeeklyCount(week_start=week, count=weekly_created[week]) for week in sorted(weekly_created)],
            weekly_archived=[
                WeeklyCount(week_start=week, count=weekly_archived[week]) for week in sorted(weekly_archived)
            ],
            filtered_by_department=department or None,
        )
