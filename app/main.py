from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from app.api.routers import (
    activity,
    admin_users,
    analytics,
    auth,
    departments,
    meeting_notes,
    news,
    projects,
    surveys,
    tasks,
    tickets,
)
from app.domain.errors import PortalError
from app.infra.audit import AuditMiddleware
from app.infra.db import check_db_ready, init_db

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("ops-portal")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    init_db()
    logger.info("database schema ready")
    yield


app = FastAPI(
    title="ops-portal",
    description="Department project board, tasks and helpdesk with department-scoped assignment rules.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(AuditMiddleware)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "status": exc.status_code,
                "name": type(exc).__name__,
                "message": exc.message,
            }
        },
    )


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(departments.router, prefix="/api", tags=["reference"])
app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(meeting_notes.router, prefix="/api/meeting-notes", tags=["meetings"])
app.include_router(surveys.router, prefix="/api/project-surveys", tags=["surveys"])
app.include_router(tickets.router, prefix="/api/tickets", tags=["helpdesk"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])
app.include_router(activity.router, prefix="/api/activity-logs", tags=["activity"])
app.include_router(admin_users.router, prefix="/api/admin", tags=["admin"])
app.include_router(news.router, prefix="/api/news-posts", tags=["news"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        logger.warning("readiness check failed checks=%s", checks)
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
