from datetime import datetime
from zoneinfo import ZoneInfo

from sqlmodel.ext.asyncio.session import AsyncSession

from taskstats.analytics import aggregators
from taskstats.analytics.schemas import (
    OverviewMetrics,
    PriorityCount,
    ProductivityMetrics,
    StatusCount,
    TrendPoint,
)
from taskstats.cache.decorators import async_cached
from taskstats.core.config import get_settings
from taskstats.services.task_service import TaskService


def current_time() -> datetime:
    """Now, in the zone that defines analytics day boundaries."""
    return datetime.now(ZoneInfo(get_settings().analytics_timezone))


def analytics_ttl() -> int:
    return get_settings().analytics_cache_ttl_seconds


def analytics_key(metric: str):
    return lambda user_id, *_, **__: f"analytics:{user_id}:{metric}"


def trend_key(user_id, db=None, days=aggregators.DEFAULT_TREND_DAYS):
    return f"analytics:{user_id}:trend:{days}"


class AnalyticsService:
    """Cache-wrapped aggregations over one user's task snapshot."""

    @staticmethod
    @async_cached(
        analytics_key("overview"), l2_ttl=analytics_ttl, response_type=OverviewMetrics
    )
    async def get_overview(user_id: str, db: AsyncSession):
        tasks = await TaskService.get_task_records(user_id, db)
        return aggregators.compute_overview(tasks, current_time())

    @staticmethod
    @async_cached(
        analytics_key("by-status"),
        l2_ttl=analytics_ttl,
        response_type=list[StatusCount],
    )
    async def get_by_status(user_id: str, db: AsyncSession):
        tasks = await TaskService.get_task_records(user_id, db)
        return aggregators.compute_status_distribution(tasks)

    @staticmethod
    @async_cached(
        analytics_key("by-priority"),
        l2_ttl=analytics_ttl,
        response_type=list[PriorityCount],
    )
    async def get_by_priority(user_id: str, db: AsyncSession):
        tasks = await TaskService.get_task_records(user_id, db)
        return aggregators.compute_priority_distribution(tasks)

    @staticmethod
    @async_cached(trend_key, l2_ttl=analytics_ttl, response_type=list[TrendPoint])
    async def get_completion_trend(
        user_id: str, db: AsyncSession, days: int = aggregators.DEFAULT_TREND_DAYS
    ):
        aggregators.validate_window(days)
        tasks = await TaskService.get_task_records(user_id, db)
        return aggregators.compute_completion_trend(tasks, current_time(), days)

    @staticmethod
    @async_cached(
        analytics_key("productivity"),
        l2_ttl=analytics_ttl,
        response_type=ProductivityMetrics,
    )
    async def get_productivity(user_id: str, db: AsyncSession):
        tasks = await TaskService.get_task_records(user_id, db)
        return aggregators.compute_productivity(tasks, current_time())
