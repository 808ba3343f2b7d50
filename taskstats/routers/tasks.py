from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from taskstats.analytics.records import TaskPriority, TaskStatus
from taskstats.core.auth import CurrentUserId
from taskstats.database import get_db
from taskstats.models import (
    SortOrder,
    TaskCreate,
    TaskPage,
    TaskResponse,
    TaskSortField,
    TaskUpdate,
)
from taskstats.services.task_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    TaskService,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _not_found(task_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Task with id {task_id} not found",
    )


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate, user_id: CurrentUserId, db: AsyncSession = Depends(get_db)
):
    """Create a new task"""
    return await TaskService.create_task(user_id, task_data, db)


@router.get("/", response_model=TaskPage)
async def get_tasks(
    user_id: CurrentUserId,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    task_status: TaskStatus | None = Query(default=None, alias="status"),
    priority: TaskPriority | None = None,
    search: str | None = Query(default=None, max_length=255),
    sort_by: TaskSortField = Query(default=TaskSortField.CREATED_AT, alias="sortBy"),
    sort_order: SortOrder = Query(default=SortOrder.DESC, alias="sortOrder"),
    db: AsyncSession = Depends(get_db),
):
    """List tasks with filters, text search, sorting and pagination"""
    return await TaskService.list_tasks(
        user_id,
        db,
        page=page,
        limit=limit,
        status=task_status,
        priority=priority,
        search=search or None,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str, user_id: CurrentUserId, db: AsyncSession = Depends(get_db)
):
    """Get a specific task by ID"""
    task = await TaskService.get_task(user_id, task_id, db)
    if not task:
        raise _not_found(task_id)
    return task


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    task_data: TaskUpdate,
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService.update_task(user_id, task_id, task_data, db)
    if not task:
        raise _not_found(task_id)
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str, user_id: CurrentUserId, db: AsyncSession = Depends(get_db)
):
    """Delete a task"""
    if not await TaskService.delete_task(user_id, task_id, db):
        raise _not_found(task_id)


@router.post("/{task_id}/complete", response_model=TaskResponse)
async def mark_task_complete(
    task_id: str, user_id: CurrentUserId, db: AsyncSession = Depends(get_db)
):
    """Mark a task as completed"""
    task = await TaskService.update_task(
        user_id, task_id, TaskUpdate(status=TaskStatus.COMPLETED), db
    )
    if not task:
        raise _not_found(task_id)
    return task
