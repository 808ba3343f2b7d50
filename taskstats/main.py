from contextlib import asynccontextmanager
from fastapi import FastAPI

from taskstats.cache.layer import cache_layer
from taskstats.core.config import get_settings
from taskstats.core.logging_config import configure_logging
from taskstats.database import create_db_and_tables
from taskstats.routers import analytics, tasks


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    if settings.create_tables:
        await create_db_and_tables()
    await cache_layer.init_cache()
    yield
    await cache_layer.close()


app = FastAPI(
    title="Task Analytics API",
    description="Async task management and productivity analytics API",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(tasks.router)
app.include_router(analytics.router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to Task Analytics API",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "cache": cache_layer.get_stats()}
