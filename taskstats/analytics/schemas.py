from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from taskstats.analytics.records import TaskPriority, TaskStatus


class AnalyticsModel(BaseModel):
    """Base for aggregate outputs: camelCase on the wire, frozen in memory."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class OverviewMetrics(AnalyticsModel):
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    completion_rate: float
    overdue_tasks: int
    due_soon: int


class StatusCount(AnalyticsModel):
    status: TaskStatus
    count: int


class PriorityCount(AnalyticsModel):
    priority: TaskPriority
    count: int


class TrendPoint(AnalyticsModel):
    date: str  # YYYY-MM-DD
    created: int
    completed: int


class ProductivityMetrics(AnalyticsModel):
    average_completion_time_hours: float
    tasks_completed_this_week: int
    tasks_completed_last_week: int
    week_over_week_change_percent: float
    streak_days: int
    most_productive_day_name: str
