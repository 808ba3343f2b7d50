"""Pytest configuration and shared fixtures."""

import asyncio
import inspect
from datetime import datetime
from fnmatch import fnmatchcase

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from taskstats.analytics.records import TaskPriority, TaskRecord, TaskStatus
from taskstats.cache.layer import CacheLayer
from taskstats.core.config import Settings
from taskstats.models import Task


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Execute async tests without external plugins."""
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            sig = inspect.signature(testfunction)
            call_kwargs = {name: pyfuncitem.funcargs[name] for name in sig.parameters}
            loop.run_until_complete(testfunction(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the cache makes."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan(self, cursor, match=None, count=None):
        keys = [k for k in self.data if match is None or fnmatchcase(k, match)]
        return 0, keys

    async def aclose(self):
        pass


class FakeSession:
    """Just enough of AsyncSession for the single-row write paths."""

    def __init__(self, *tasks):
        self.tasks = {task.id: task for task in tasks}
        self.commits = 0

    def add(self, task):
        self.tasks[task.id] = task

    async def get(self, model, key):
        return self.tasks.get(key)

    async def delete(self, task):
        self.tasks.pop(task.id, None)

    async def commit(self):
        self.commits += 1

    async def refresh(self, task):
        pass


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(settings, fake_redis, monkeypatch):
    """Fresh cache layer wired into the caching decorators and the app."""
    layer = CacheLayer(settings=settings, redis=fake_redis)
    monkeypatch.setattr("taskstats.cache.decorators.cache_layer", layer)
    monkeypatch.setattr("taskstats.main.cache_layer", layer)
    return layer


@pytest.fixture
def sqlite_engine(tmp_path):
    """File-backed SQLite with the task schema; a fresh connection per session."""
    path = tmp_path / "tasks.db"
    setup = create_engine(f"sqlite:///{path}")
    SQLModel.metadata.create_all(setup)
    setup.dispose()
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


def open_session(engine) -> AsyncSession:
    return AsyncSession(engine, expire_on_commit=False)


async def seed_tasks(engine, *tasks: Task) -> None:
    async with open_session(engine) as session:
        session.add_all(tasks)
        await session.commit()


def make_record(
    task_id: str = "1",
    *,
    status: TaskStatus = TaskStatus.PENDING,
    priority: TaskPriority = TaskPriority.MEDIUM,
    created_at: datetime,
    completed_at: datetime | None = None,
    due_date: datetime | None = None,
) -> TaskRecord:
    if completed_at is not None and status != TaskStatus.COMPLETED:
        status = TaskStatus.COMPLETED
    return TaskRecord(
        id=task_id,
        status=status,
        priority=priority,
        created_at=created_at,
        completed_at=completed_at,
        due_date=due_date,
    )
