from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.domain.permissions import DepartmentKey


def now_utc() -> datetime:
    return datetime.now(UTC)


def persisted_id(row: SQLModel) -> int:
    """Primary key of a row that has been flushed or loaded from the database."""
    row_id = getattr(row, "id", None)
    if row_id is None:
        raise RuntimeError(f"{type(row).__name__} has no primary key yet; flush the session first")
    return row_id


def new_document_id() -> str:
    return str(uuid4())


class ProjectStatus(StrEnum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    DELETED = "DELETED"


class PriorityLight(StrEnum):
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"


class TicketStatus(StrEnum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING = "WAITING"
    DONE = "DONE"
    CLOSED = "CLOSED"


class ActivityAction(StrEnum):
    CREATE_PROJECT = "CREATE_PROJECT"
    UPDATE_PROJECT = "UPDATE_PROJECT"
    MOVE_STAGE = "MOVE_STAGE"
    DELETE_PROJECT = "DELETE_PROJECT"
    ASSIGN_USER = "ASSIGN_USER"
    CREATE_TASK = "CREATE_TASK"
    MARK_TASK = "MARK_TASK"
    DELETE_TASK = "DELETE_TASK"
    CREATE_MEETING = "CREATE_MEETING"
    DELETE_MEETING = "DELETE_MEETING"


class SurveyStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class QuestionType(StrEnum):
    TEXT = "text"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    RATING = "rating"
    YES_NO = "yes_no"


class NewsCategory(StrEnum):
    NEWS = "NEWS"
    ANNOUNCEMENT = "ANNOUNCEMENT"
    EVENT = "EVENT"
    UPDATE = "UPDATE"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: int | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    key: DepartmentKey = Field(index=True, unique=True)
    name_ru: str
    name_kz: str | None = None


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    type: str = Field(index=True)
    description: str | None = None


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    username: str = Field(index=True, unique=True)
    email: str | None = Field(default=None, index=True)
    first_name: str | None = None
    last_name: str | None = None
    password_hash: str
    blocked: bool = Field(default=False, index=True)
    role_id: int | None = Field(default=None, foreign_key="roles.id", index=True)
    department_id: int | None = Field(default=None, foreign_key="departments.id", index=True)
    can_view_dashboard: bool | None = None
    can_view_board: bool | None = None
    can_view_table: bool | None = None
    can_view_helpdesk: bool | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class BoardStage(SQLModel, table=True):
    __tablename__ = "board_stages"

    id: int | None = Field(default=None, primary_key=True)
    name: str
    order: int = Field(default=1, index=True)


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    title: str
    description: str | None = None
    department_id: int = Field(foreign_key="departments.id", index=True)
    owner_id: int = Field(foreign_key="users.id", index=True)
    status: ProjectStatus = Field(default=ProjectStatus.ACTIVE, index=True)
    priority_light: PriorityLight = Field(default=PriorityLight.GREEN)
    start_date: date
    due_date: date
    manual_stage_override: int | None = Field(default=None, foreign_key="board_stages.id")
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ProjectSupportingSpecialist(SQLModel, table=True):
    __tablename__ = "project_supporting_specialists"
    __table_args__ = (
        ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    project_id: int = Field(primary_key=True)
    user_id: int = Field(primary_key=True)


class ProjectResponsibleUser(SQLModel, table=True):
    __tablename__ = "project_responsible_users"
    __table_args__ = (
        ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    project_id: int = Field(primary_key=True)
    user_id: int = Field(primary_key=True)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        Index("ix_tasks_project_assignee", "project_id", "assignee_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    title: str
    description: str | None = None
    project_id: int = Field(index=True)
    assignee_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    completed: bool | None = None
    progress: int | None = None
    status: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    due_date: date | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ServiceGroup(SQLModel, table=True):
    __tablename__ = "service_groups"

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    slug: str = Field(index=True, unique=True)
    name_ru: str
    name_kz: str | None = None
    department_id: int | None = Field(default=None, foreign_key="departments.id", index=True)


class TicketCategory(SQLModel, table=True):
    __tablename__ = "ticket_categories"
    __table_args__ = (UniqueConstraint("service_group_id", "slug", name="uq_ticket_categories_group_slug"),)

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    slug: str = Field(index=True)
    name_ru: str
    name_kz: str | None = None
    order: int = 0
    service_group_id: int = Field(foreign_key="service_groups.id", index=True)


class TicketCategoryDefaultAssignee(SQLModel, table=True):
    __tablename__ = "ticket_category_default_assignees"
    __table_args__ = (
        ForeignKeyConstraint(["category_id"], ["ticket_categories.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    category_id: int = Field(primary_key=True)
    user_id: int = Field(primary_key=True)


class Ticket(SQLModel, table=True):
    __tablename__ = "tickets"

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    ticket_number: str = Field(index=True)
    requester_name: str = Field(index=True)
    requester_phone: str | None = None
    requester_department: str = Field(index=True)
    comment: str
    status: TicketStatus = Field(default=TicketStatus.NEW, index=True)
    service_group_id: int = Field(foreign_key="service_groups.id", index=True)
    category_id: int | None = Field(default=None, foreign_key="ticket_categories.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class TicketAssignee(SQLModel, table=True):
    __tablename__ = "ticket_assignees"
    __table_args__ = (
        ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    ticket_id: int = Field(primary_key=True)
    user_id: int = Field(primary_key=True)


class ActivityLog(SQLModel, table=True):
    __tablename__ = "activity_logs"

    id: int | None = Field(default=None, primary_key=True)
    action: ActivityAction = Field(index=True)
    description: str
    project_id: int | None = Field(default=None, index=True)
    user_id: int | None = Field(default=None, index=True)
    details: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)


class MeetingNote(SQLModel, table=True):
    __tablename__ = "meeting_notes"
    __table_args__ = (ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),)

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    text: str
    project_id: int = Field(index=True)
    author_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ProjectSurvey(SQLModel, table=True):
    __tablename__ = "project_surveys"
    __table_args__ = (ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),)

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    title: str
    description: str | None = None
    project_id: int = Field(index=True)
    is_anonymous: bool = False
    status: SurveyStatus = Field(default=SurveyStatus.DRAFT, index=True)
    public_token: str = Field(index=True, unique=True)
    expires_at: datetime | None = None
    thank_you_message: str | None = None
    show_progress_bar: bool = True
    allow_multiple_responses: bool = False
    questions: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_by_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class SurveyResponse(SQLModel, table=True):
    __tablename__ = "survey_responses"
    __table_args__ = (ForeignKeyConstraint(["survey_id"], ["project_surveys.id"], ondelete="CASCADE"),)

    id: int | None = Field(default=None, primary_key=True)
    survey_id: int = Field(index=True)
    answers: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    respondent_name: str | None = None
    respondent_position: str | None = None
    respondent_department: str | None = None
    respondent_email: str | None = None
    is_anonymous: bool = False
    ip_address: str | None = Field(default=None, index=True)
    user_agent: str | None = None
    completion_time: int | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class NewsPost(SQLModel, table=True):
    __tablename__ = "news_posts"

    id: int | None = Field(default=None, primary_key=True)
    document_id: str = Field(default_factory=new_document_id, index=True, unique=True)
    title: str
    content: str
    excerpt: str | None = None
    category: NewsCategory = Field(default=NewsCategory.NEWS, index=True)
    pinned: bool = Field(default=False, index=True)
    published: bool = Field(default=True, index=True)
    author_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class MutationRequest(BaseModel):
    data: dict[str, Any] = PydanticField(default_factory=dict)


class LoginRequest(BaseModel):
    username: str
    password: str


class BootstrapRequest(BaseModel):
    username: str
    password: str
    email: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class DepartmentRead(ORMReadModel):
    id: int
    document_id: str
    key: DepartmentKey
    name_ru: str
    name_kz: str | None = None


class RoleRead(ORMReadModel):
    id: int
    name: str
    type: str
    description: str | None = None


class BoardStageRead(ORMReadModel):
    id: int
    name: str
    order: int


class UserCreate(BaseModel):
    username: str
    password: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role_id: int | None = None
    department_id: int | None = None
    blocked: bool = False
    can_view_dashboard: bool | None = None
    can_view_board: bool | None = None
    can_view_table: bool | None = None
    can_view_helpdesk: bool | None = None


class UserUpdate(BaseModel):
    password: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role_id: int | None = None
    department_id: int | None = None
    blocked: bool | None = None
    can_view_dashboard: bool | None = None
    can_view_board: bool | None = None
    can_view_table: bool | None = None
    can_view_helpdesk: bool | None = None


class UserRead(ORMReadModel):
    id: int
    document_id: str
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    blocked: bool
    role_id: int | None = None
    department_id: int | None = None
    can_view_dashboard: bool | None = None
    can_view_board: bool | None = None
    can_view_table: bool | None = None
    can_view_helpdesk: bool | None = None
    created_at: datetime


class ProfileRead(BaseModel):
    user: UserRead
    role: RoleRead | None = None
    department: DepartmentRead | None = None
    is_super_admin: bool
    is_admin: bool
    is_lead: bool


class AssignableUserRead(BaseModel):
    id: int
    username: str
    first_name: str | None = None
    last_name: str | None = None
    department: DepartmentRead | None = None


class ProjectRead(BaseModel):
    id: int
    document_id: str
    title: str
    description: str | None = None
    department_id: int
    department_key: DepartmentKey | None = None
    owner_id: int
    supporting_specialist_ids: list[int] = PydanticField(default_factory=list)
    responsible_user_ids: list[int] = PydanticField(default_factory=list)
    status: ProjectStatus
    priority_light: PriorityLight
    start_date: date
    due_date: date
    manual_stage_override: int | None = None
    stage_bucket: int
    progress_percent: int
    done_tasks: int
    total_tasks: int
    overdue: bool
    due_soon: bool
    created_at: datetime
    updated_at: datetime


class TaskRead(ORMReadModel):
    id: int
    document_id: str
    title: str
    description: str | None = None
    project_id: int
    assignee_id: int | None = None
    completed: bool | None = None
    start_date: date | None = None
    end_date: date | None = None
    due_date: date | None = None
    created_at: datetime
    updated_at: datetime


class TicketCategoryRead(ORMReadModel):
    id: int
    document_id: str
    slug: str
    name_ru: str
    name_kz: str | None = None
    order: int


class ServiceGroupRead(BaseModel):
    id: int
    document_id: str
    slug: str
    name_ru: str
    name_kz: str | None = None
    categories: list[TicketCategoryRead] = PydanticField(default_factory=list)


class TicketAssigneeRead(BaseModel):
    id: int
    username: str
    first_name: str | None = None
    last_name: str | None = None


class TicketRead(BaseModel):
    id: int
    document_id: str
    ticket_number: str
    requester_name: str
    requester_phone: str | None = None
    requester_department: str
    comment: str
    status: TicketStatus
    service_group_id: int
    category_id: int | None = None
    assignees: list[TicketAssigneeRead] = PydanticField(default_factory=list)
    created_at: datetime
    updated_at: datetime


class PaginationRead(BaseModel):
    total: int
    page: int
    page_size: int
    page_count: int


class TicketPageRead(BaseModel):
    data: list[TicketRead]
    pagination: PaginationRead


class TicketPublicSubmitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requester_name: str | None = PydanticField(default=None, alias="requesterName")
    requester_phone: str | None = PydanticField(default=None, alias="requesterPhone")
    requester_department: str | None = PydanticField(default=None, alias="requesterDepartment")
    comment: str | None = None
    category_id: int | None = PydanticField(default=None, alias="categoryId")
    service_group_id: int | None = PydanticField(default=None, alias="serviceGroupId")


class TicketPublicSubmitRead(BaseModel):
    id: int
    ticket_number: str


class TicketReassignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assignee_ids: list[Any] | None = PydanticField(default=None, alias="assigneeIds")
    assignee_id: Any | None = PydanticField(default=None, alias="assigneeId")


class TicketStatusUpdateRequest(BaseModel):
    status: TicketStatus


class ActivityLogRead(ORMReadModel):
    id: int
    action: ActivityAction
    description: str
    project_id: int | None = None
    user_id: int | None = None
    details: dict[str, Any]
    created_at: datetime


class MeetingNoteRead(ORMReadModel):
    id: int
    document_id: str
    text: str
    project_id: int
    author_id: int | None = None
    created_at: datetime
    updated_at: datetime


class ProjectSurveyRead(ORMReadModel):
    id: int
    document_id: str
    title: str
    description: str | None = None
    project_id: int
    is_anonymous: bool
    status: SurveyStatus
    public_token: str
    expires_at: datetime | None = None
    thank_you_message: str | None = None
    show_progress_bar: bool
    allow_multiple_responses: bool
    questions: list[dict[str, Any]]
    created_by_id: int | None = None
    created_at: datetime
    updated_at: datetime


class PublicSurveyRead(BaseModel):
    id: int
    title: str
    description: str | None = None
    project_title: str | None = None
    is_anonymous: bool
    questions: list[dict[str, Any]]
    thank_you_message: str | None = None
    show_progress_bar: bool


class SurveySubmitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answers: dict[str, Any] = PydanticField(default_factory=dict)
    respondent_name: str | None = PydanticField(default=None, alias="respondentName")
    respondent_position: str | None = PydanticField(default=None, alias="respondentPosition")
    respondent_department: str | None = PydanticField(default=None, alias="respondentDepartment")
    respondent_email: str | None = PydanticField(default=None, alias="respondentEmail")
    completion_time: int | None = PydanticField(default=None, alias="completionTime")


class SurveySubmitRead(BaseModel):
    success: bool
    message: str


class SurveyResponseRead(ORMReadModel):
    id: int
    answers: dict[str, Any]
    respondent_name: str | None = None
    respondent_position: str | None = None
    respondent_department: str | None = None
    respondent_email: str | None = None
    is_anonymous: bool
    completion_time: int | None = None
    created_at: datetime


class QuestionStatistics(BaseModel):
    question_id: str
    question_text: str
    question_type: QuestionType
    total_answers: int
    option_counts: dict[str, int] | None = None
    options: list[str] | None = None
    average: float | None = None
    distribution: dict[str, int] | None = None
    yes_count: int | None = None
    no_count: int | None = None
    yes_percent: float | None = None
    text_answers: list[str] | None = None


class SurveyResultsRead(BaseModel):
    survey: ProjectSurveyRead
    total_responses: int
    responses: list[SurveyResponseRead]
    statistics: list[QuestionStatistics]


class SurveyStatusUpdateRequest(BaseModel):
    status: SurveyStatus


class NewsPostRead(ORMReadModel):
    id: int
    document_id: str
    title: str
    content: str
    excerpt: str | None = None
    category: NewsCategory
    pinned: bool
    published: bool
    author_id: int | None = None
    created_at: datetime
    updated_at: datetime


class NewsPageRead(BaseModel):
    data: list[NewsPostRead]
    pagination: PaginationRead


class AnalyticsTotals(BaseModel):
    total: int = 0
    active: int = 0
    archived: int = 0
    overdue: int = 0
    due_soon: int = 0


class DepartmentBreakdown(AnalyticsTotals):
    department_key: str


class PriorityBreakdown(BaseModel):
    red: int = 0
    yellow: int = 0
    green: int = 0


class WeeklyCount(BaseModel):
    week_start: date
    count: int


class AnalyticsSummaryRead(BaseModel):
    totals: AnalyticsTotals
    by_department: list[DepartmentBreakdown]
    by_priority: PriorityBreakdown
    weekly_created: list[WeeklyCount]
    weekly_archived: list[WeeklyCount]
    filtered_by_department: str | None = None
