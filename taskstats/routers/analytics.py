from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from taskstats.analytics.aggregators import DEFAULT_TREND_DAYS, InvalidParameterError
from taskstats.analytics.schemas import (
    OverviewMetrics,
    PriorityCount,
    ProductivityMetrics,
    StatusCount,
    TrendPoint,
)
from taskstats.core.auth import CurrentUserId
from taskstats.database import get_db
from taskstats.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/overview", response_model=OverviewMetrics)
async def get_overview(user_id: CurrentUserId, db: AsyncSession = Depends(get_db)):
    """Totals, completion rate, overdue and due-soon counts"""
    return await AnalyticsService.get_overview(user_id, db)


@router.get("/by-status", response_model=list[StatusCount])
async def get_by_status(user_id: CurrentUserId, db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.get_by_status(user_id, db)


@router.get("/by-priority", response_model=list[PriorityCount])
async def get_by_priority(user_id: CurrentUserId, db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.get_by_priority(user_id, db)


@router.get("/completion-trend", response_model=list[TrendPoint])
async def get_completion_trend(
    user_id: CurrentUserId,
    days: int = DEFAULT_TREND_DAYS,
    db: AsyncSession = Depends(get_db),
):
    """Tasks created and completed per day over the last N days"""
    try:
        return await AnalyticsService.get_completion_trend(user_id, db, days)
    except InvalidParameterError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/productivity", response_model=ProductivityMetrics)
async def get_productivity(user_id: CurrentUserId, db: AsyncSession = Depends(get_db)):
    """Completion time, weekly comparison, streak and most productive day"""
    return await AnalyticsService.get_productivity(user_id, db)
