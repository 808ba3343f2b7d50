from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class TaskRecord:
    """Read-only view of one task, as seen by the aggregators."""

    id: str
    status: TaskStatus
    priority: TaskPriority
    created_at: datetime
    completed_at: datetime | None = None
    due_date: datetime | None = None

    @classmethod
    def from_task(cls, task) -> "TaskRecord":
        """Snapshot any object exposing the task columns (e.g. the ORM row)."""
        return cls(
            id=str(task.id),
            status=TaskStatus(task.status),
            priority=TaskPriority(task.priority),
            created_at=task.created_at,
            completed_at=task.completed_at,
            due_date=task.due_date,
        )
