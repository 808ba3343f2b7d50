import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import DateTime, Index
from sqlmodel import Column, Field, SQLModel

from taskstats.analytics.records import TaskPriority, TaskStatus


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return str(uuid.uuid4())


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: datetime | None = None


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_user_id_status", "user_id", "status"),
        Index("ix_tasks_user_id_priority", "user_id", "priority"),
    )

    id: str = Field(default_factory=new_task_id, primary_key=True)
    user_id: str = Field(index=True, nullable=False)
    due_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    pass


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None

    @field_validator("title", "status", "priority")
    @classmethod
    def not_null(cls, value):
        # omitted is fine, an explicit null would clear a NOT NULL column
        if value is None:
            raise ValueError("must not be null")
        return value


class TaskResponse(TaskBase):
    """Schema for task responses"""

    id: str
    user_id: str
    created_at: datetime
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class TaskSortField(str, Enum):
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"
    DUE_DATE = "dueDate"
    TITLE = "title"
    PRIORITY = "priority"
    STATUS = "status"


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class PageMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    page: int
    limit: int
    total_pages: int


class TaskPage(BaseModel):
    """One page of a user's tasks plus paging totals"""

    data: list[TaskResponse]
    meta: PageMeta
