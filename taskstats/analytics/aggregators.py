"""
Pure productivity aggregations over a user's task records.

Nothing here touches the database, the cache or the clock: callers pass the
task snapshot and the reference time ``now``.

Day boundary policy:
- The reference zone is ``now.tzinfo``; a naive ``now`` is taken as UTC.
- Aware task timestamps are converted to the reference zone before their
  calendar date is read. Naive task timestamps are assumed to already be
  in the reference zone.
- "Today" starts at local midnight of ``now``'s date. Windows are built
  from calendar dates, so DST transitions never shift a day boundary.
"""

from collections import Counter
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Sequence

from taskstats.analytics.records import TaskPriority, TaskRecord, TaskStatus
from taskstats.analytics.schemas import (
    OverviewMetrics,
    PriorityCount,
    ProductivityMetrics,
    StatusCount,
    TrendPoint,
)

DUE_SOON_DAYS = 3
DEFAULT_TREND_DAYS = 7
# Ten years of daily points; larger windows are rejected
MAX_TREND_DAYS = 3650

# Sunday first, matching the 0=Sunday..6=Saturday weekday numbering
WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
NO_COMPLETIONS = "N/A"


class InvalidParameterError(ValueError):
    """Raised when an aggregator is called with an unusable parameter."""


# Time helpers
# ━━━━━━━━━━━━


def reference_zone(now: datetime) -> tzinfo:
    return now.tzinfo or timezone.utc


def to_reference(ts: datetime, tz: tzinfo) -> datetime:
    """Express ``ts`` in the reference zone."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=tz)
    return ts.astimezone(tz)


def local_date(ts: datetime, tz: tzinfo) -> date:
    return to_reference(ts, tz).date()


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def sunday_index(day: date) -> int:
    """Weekday number with Sunday=0 .. Saturday=6."""
    return (day.weekday() + 1) % 7


def week_start(today: date) -> date:
    """Most recent Sunday on or before ``today``."""
    return today - timedelta(days=sunday_index(today))


def round2(value: float) -> float:
    """Round to 2 decimals, halves upward: 3.125 -> 3.13, -3.125 -> -3.12."""
    rounding = ROUND_HALF_UP if value >= 0 else ROUND_HALF_DOWN
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=rounding))


def _percent(part: float, whole: float) -> float:
    return round2(part / whole * 100)


# Overview
# ━━━━━━━━


def compute_overview(tasks: Sequence[TaskRecord], now: datetime) -> OverviewMetrics:
    tz = reference_zone(now)
    today = to_reference(now, tz).date()
    today_start = start_of_day(today, tz)
    due_soon_end = start_of_day(today + timedelta(days=DUE_SOON_DAYS), tz)

    by_status = Counter(task.status for task in tasks)
    total = len(tasks)
    completed = by_status[TaskStatus.COMPLETED]

    overdue = 0
    due_soon = 0
    for task in tasks:
        if task.due_date is None or task.status == TaskStatus.COMPLETED:
            continue
        due = to_reference(task.due_date, tz)
        if due < today_start:
            overdue += 1
        elif due < due_soon_end:
            due_soon += 1

    return OverviewMetrics(
        total_tasks=total,
        completed_tasks=completed,
        pending_tasks=by_status[TaskStatus.PENDING],
        in_progress_tasks=by_status[TaskStatus.IN_PROGRESS],
        completion_rate=_percent(completed, total) if total > 0 else 0.0,
        overdue_tasks=overdue,
        due_soon=due_soon,
    )


# Distributions
# ━━━━━━━━━━━━━


def compute_status_distribution(tasks: Iterable[TaskRecord]) -> list[StatusCount]:
    counts = Counter(task.status for task in tasks)
    return [StatusCount(status=status, count=counts[status]) for status in TaskStatus]


def compute_priority_distribution(
    tasks: Iterable[TaskRecord],
) -> list[PriorityCount]:
    counts = Counter(task.priority for task in tasks)
    return [
        PriorityCount(priority=priority, count=counts[priority])
        for priority in TaskPriority
    ]


# Trend
# ━━━━━


def validate_window(days: int) -> int:
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        raise InvalidParameterError(f"days must be a positive integer, got {days!r}")
    if days > MAX_TREND_DAYS:
        raise InvalidParameterError(
            f"days must be at most {MAX_TREND_DAYS}, got {days!r}"
        )
    return days


def compute_completion_trend(
    tasks: Iterable[TaskRecord], now: datetime, days: int = DEFAULT_TREND_DAYS
) -> list[TrendPoint]:
    """Created/completed counts for each of the last ``days`` days, oldest first."""
    validate_window(days)

    tz = reference_zone(now)
    today = to_reference(now, tz).date()
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]

    created = Counter()
    completed = Counter()
    for task in tasks:
        created[local_date(task.created_at, tz)] += 1
        if task.completed_at is not None:
            completed[local_date(task.completed_at, tz)] += 1

    return [
        TrendPoint(date=day.isoformat(), created=created[day], completed=completed[day])
        for day in window
    ]


# Productivity
# ━━━━━━━━━━━━


def compute_streak(completion_dates: Iterable[date], today: date) -> int:
    """
    Count consecutive days with at least one completion.

    The streak must end today or yesterday; otherwise it is broken and
    the result is 0. Counting starts at the most recent completion date
    and stops at the first missing day.
    """
    dates = sorted(set(completion_dates), reverse=True)
    if not dates:
        return 0

    most_recent = dates[0]
    if (today - most_recent).days > 1:
        return 0

    present = set(dates)
    streak = 0
    expected = most_recent
    while expected in present:
        streak += 1
        expected -= timedelta(days=1)
    return streak


def most_productive_day(completion_dates: Iterable[date]) -> str:
    """Weekday name with the most completions; earliest weekday wins a tie."""
    counts = Counter(sunday_index(day) for day in completion_dates)
    if not counts:
        return NO_COMPLETIONS

    best = max(counts.values())
    for index, name in enumerate(WEEKDAY_NAMES):
        if counts[index] == best:
            return name
    return NO_COMPLETIONS


def week_over_week_change(this_week: int, last_week: int) -> float:
    if last_week == 0:
        return 100.0 if this_week > 0 else 0.0
    return _percent(this_week - last_week, last_week)


def average_completion_hours(tasks: Iterable[TaskRecord], tz: tzinfo) -> float:
    durations = [
        (
            to_reference(task.completed_at, tz) - to_reference(task.created_at, tz)
        ).total_seconds()
        / 3600
        for task in tasks
        if task.completed_at is not None
    ]
    if not durations:
        return 0.0
    return round2(sum(durations) / len(durations))


def compute_productivity(
    tasks: Sequence[TaskRecord], now: datetime
) -> ProductivityMetrics:
    tz = reference_zone(now)
    today = to_reference(now, tz).date()
    current_week_start = start_of_day(week_start(today), tz)
    last_week_start = start_of_day(week_start(today) - timedelta(days=7), tz)

    completions = [
        to_reference(task.completed_at, tz)
        for task in tasks
        if task.completed_at is not None
    ]
    this_week = sum(1 for done in completions if done >= current_week_start)
    last_week = sum(
        1 for done in completions if last_week_start <= done < current_week_start
    )
    completion_dates = [done.date() for done in completions]

    return ProductivityMetrics(
        average_completion_time_hours=average_completion_hours(tasks, tz),
        tasks_completed_this_week=this_week,
        tasks_completed_last_week=last_week,
        week_over_week_change_percent=week_over_week_change(this_week, last_week),
        streak_days=compute_streak(completion_dates, today),
        most_productive_day_name=most_productive_day(completion_dates),
    )
