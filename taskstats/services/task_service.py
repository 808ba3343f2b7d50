import json
import logging
import math
from datetime import datetime

from sqlalchemy import func, or_
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskstats.analytics.records import TaskPriority, TaskRecord, TaskStatus
from taskstats.cache.decorators import async_cached, async_cached_expire
from taskstats.models import (
    PageMeta,
    SortOrder,
    Task,
    TaskCreate,
    TaskPage,
    TaskResponse,
    TaskSortField,
    TaskUpdate,
    get_utc_now,
)

logger = logging.getLogger(__name__)

TASKS_CACHE_TTL = 300
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50

SORT_COLUMNS = {
    TaskSortField.CREATED_AT: Task.created_at,
    TaskSortField.UPDATED_AT: Task.updated_at,
    TaskSortField.DUE_DATE: Task.due_date,
    TaskSortField.TITLE: Task.title,
    TaskSortField.PRIORITY: Task.priority,
    TaskSortField.STATUS: Task.status,
}


def user_cache_patterns():
    """Patterns covering every cached view derived from a user's tasks."""
    return (
        lambda user_id, *_, **__: f"tasks:{user_id}:*",
        lambda user_id, *_, **__: f"analytics:{user_id}:*",
    )


def list_cache_key(
    user_id,
    db=None,
    page=1,
    limit=DEFAULT_PAGE_SIZE,
    status=None,
    priority=None,
    search=None,
    sort_by=TaskSortField.CREATED_AT,
    sort_order=SortOrder.DESC,
):
    filters = {
        "limit": limit,
        "page": page,
        "priority": TaskPriority(priority).value if priority else None,
        "search": search,
        "sort_by": TaskSortField(sort_by).value,
        "sort_order": SortOrder(sort_order).value,
        "status": TaskStatus(status).value if status else None,
    }
    return f"tasks:{user_id}:list:{json.dumps(filters, sort_keys=True)}"


def task_filters(user_id, status=None, priority=None, search=None) -> list:
    """WHERE clauses shared by the page query and its count."""
    conditions = [Task.user_id == user_id]
    if status is not None:
        conditions.append(Task.status == status)
    if priority is not None:
        conditions.append(Task.priority == priority)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(col(Task.title).ilike(pattern), col(Task.description).ilike(pattern))
        )
    return conditions


def apply_status_transition(task: Task, new_status: TaskStatus, now: datetime) -> None:
    """Keep completed_at in step with status: set on entry, cleared on exit."""
    if new_status == TaskStatus.COMPLETED and task.status != TaskStatus.COMPLETED:
        task.completed_at = now
    elif new_status != TaskStatus.COMPLETED and task.status == TaskStatus.COMPLETED:
        task.completed_at = None
    task.status = new_status


class TaskService:
    @staticmethod
    @async_cached_expire(*user_cache_patterns())
    async def create_task(user_id: str, task_data: TaskCreate, db: AsyncSession):
        task = Task.model_validate(task_data, update={"user_id": user_id})
        if task.status == TaskStatus.COMPLETED:
            task.completed_at = task.created_at
        db.add(task)
        await db.commit()
        await db.refresh(task)
        logger.info("Created task %s for user %s", task.id, user_id)
        return task

    @staticmethod
    @async_cached(list_cache_key, l2_ttl=TASKS_CACHE_TTL, response_type=TaskPage)
    async def list_tasks(
        user_id: str,
        db: AsyncSession,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        search: str | None = None,
        sort_by: TaskSortField = TaskSortField.CREATED_AT,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> TaskPage:
        """
        One page of the user's tasks.

        ``search`` matches title or description case-insensitively. Ties in
        the sort column are broken by id so pages never overlap.
        """
        conditions = task_filters(user_id, status, priority, search)

        count_query = select(func.count()).select_from(Task).where(*conditions)
        total = (await db.exec(count_query)).one()

        column = col(SORT_COLUMNS[TaskSortField(sort_by)])
        if SortOrder(sort_order) == SortOrder.ASC:
            order = column.asc()
        else:
            order = column.desc()
        query = (
            select(Task)
            .where(*conditions)
            .order_by(order, col(Task.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await db.exec(query)

        return TaskPage(
            data=[TaskResponse.model_validate(task) for task in result.all()],
            meta=PageMeta(
                total=total,
                page=page,
                limit=limit,
                total_pages=math.ceil(total / limit),
            ),
        )

    @staticmethod
    @async_cached(
        lambda user_id, task_id, *_, **__: f"tasks:{user_id}:task:{task_id}",
        l2_ttl=TASKS_CACHE_TTL,
        response_type=TaskResponse,
    )
    async def get_task(user_id: str, task_id: str, db: AsyncSession):
        task = await TaskService._get_owned(user_id, task_id, db)
        if task is None:
            return None
        return TaskResponse.model_validate(task)

    @staticmethod
    async def _get_owned(user_id: str, task_id: str, db: AsyncSession) -> Task | None:
        task = await db.get(Task, task_id)
        if task is None or task.user_id != user_id:
            return None
        return task

    @staticmethod
    @async_cached_expire(*user_cache_patterns())
    async def update_task(
        user_id: str, task_id: str, task_data: TaskUpdate, db: AsyncSession
    ):
        task = await TaskService._get_owned(user_id, task_id, db)
        if not task:
            return None

        now = get_utc_now()
        update_data = task_data.model_dump(exclude_unset=True)
        new_status = update_data.pop("status", None)
        if new_status is not None:
            apply_status_transition(task, TaskStatus(new_status), now)

        task.sqlmodel_update(update_data)
        task.updated_at = now
        await db.commit()
        await db.refresh(task)
        return task

    @staticmethod
    @async_cached_expire(*user_cache_patterns())
    async def delete_task(user_id: str, task_id: str, db: AsyncSession):
        task = await TaskService._get_owned(user_id, task_id, db)
        if not task:
            return False
        await db.delete(task)
        await db.commit()
        logger.info("Deleted task %s for user %s", task_id, user_id)
        return True

    @staticmethod
    async def get_task_records(user_id: str, db: AsyncSession) -> list[TaskRecord]:
        """Snapshot of the user's tasks in the shape the aggregators read."""
        query = select(
            Task.id,
            Task.status,
            Task.priority,
            Task.created_at,
            Task.completed_at,
            Task.due_date,
        ).where(Task.user_id == user_id)
        result = await db.exec(query)
        return [TaskRecord.from_task(row) for row in result.all()]
