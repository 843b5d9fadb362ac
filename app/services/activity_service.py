from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlmodel import Session, col, select

from app.domain.errors import ForbiddenError
from app.domain.models import ActivityAction, ActivityLog
from app.infra.db import get_engine
from app.services.assignment_service import Requester

logger = logging.getLogger("ops-portal.activity")


@dataclass(frozen=True)
class ActivityEntry:
    action: ActivityAction
    description: str
    project_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


class ActivityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def record(self, actor_id: int | None, entries: list[ActivityEntry]) -> None:
        """Persist activity entries after the main write; failures are logged, never raised."""
        if not entries:
            return
        try:
            with self._session() as session:
                for entry in entries:
                    session.add(
                        ActivityLog(
                            action=entry.action,
                            description=entry.description,
                            project_id=entry.project_id,
                            user_id=actor_id,
                            details=entry.details,
                        )
                    )
                session.commit()
        except Exception:
            logger.error(
                "failed to log activity actions=%s",
                [entry.action.value for entry in entries],
                exc_info=True,
            )

    def list_entries(
        self,
        requester: Requester,
        *,
        project_id: int | None = None,
        limit: int = 100,
    ) -> list[ActivityLog]:
        flags = requester.role_flags
        if flags.is_lead and not flags.is_admin:
            raise ForbiddenError("Доступ к журналу действий запрещён")
        with self._session() as session:
            statement = select(ActivityLog)
            if project_id is not None:
                statement = statement.where(ActivityLog.project_id == project_id)
            statement = statement.order_by(col(ActivityLog.created_at).desc(), col(ActivityLog.id).desc())
            return list(session.exec(statement.limit(limit)).all())
