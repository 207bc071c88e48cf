"""Activity heatmap, streaks and progress chart data.

Pure functions over sprints and tasks; the dashboard recomputes them on every
render.
"""
from __future__ import annotations

from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence

from sprintify.data import (
    Sprint,
    SprintDifficulty,
    SprintStatus,
    SprintTemplate,
    SprintType,
    Task,
    TaskStatus,
    utcnow,
)

HEATMAP_DAYS = 365
CREATED_WEIGHT = 1
COMPLETED_WEIGHT = 2

LEVEL_DESCRIPTIONS = {
    0: "No activity",
    1: "A little activity",
    2: "Some activity",
    3: "Active",
    4: "Very active",
}

# (label, first hour, last hour exclusive); anything else counts as evening
DAY_PERIODS = [
    ("Early morning", 5, 9),
    ("Morning", 9, 12),
    ("Afternoon", 12, 18),
]
EVENING = "Evening"


@dataclass
class DayActivity:
    date: date
    level: int
    count: int
    tasks: int

    @property
    def description(self) -> str:
        return LEVEL_DESCRIPTIONS[self.level]


def activity_level(count: int) -> int:
    if count <= 0:
        return 0
    if count <= 2:
        return 1
    if count <= 4:
        return 2
    if count <= 6:
        return 3
    return 4


def _local_day(value: Optional[datetime], tz: tzinfo) -> Optional[date]:
    if value is None:
        return None
    return value.astimezone(tz).date()


def build_activity_heatmap(sprints: Iterable[Sprint], tasks: Iterable[Task] = (),
                           today: Optional[date] = None, tz: tzinfo = timezone.utc,
                           days: int = HEATMAP_DAYS) -> List[DayActivity]:
    """One entry per day for the trailing window ending ``today``, oldest first.

    A sprint created that day counts once, a sprint completed that day counts
    twice. ``tasks`` on each day is the number of tasks completed then.
    """
    today = today or utcnow().astimezone(tz).date()
    counts: Counter = Counter()
    task_counts: Counter = Counter()
    for sprint in sprints:
        created = _local_day(sprint.created_at, tz)
        if created:
            counts[created] += CREATED_WEIGHT
        completed = _local_day(sprint.completed_at, tz)
        if completed:
            counts[completed] += COMPLETED_WEIGHT
    for task in tasks:
        if task.status == TaskStatus.COMPLETED:
            done = _local_day(task.completed_at, tz)
            if done:
                task_counts[done] += 1

    heatmap = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        count = counts[day]
        heatmap.append(DayActivity(date=day, level=activity_level(count), count=count, tasks=task_counts[day]))
    return heatmap


def calculate_max_streak(days: Sequence[DayActivity]) -> int:
    best = current = 0
    for day in days:
        if day.level > 0:
            current += 1
            best = max(best, current)
        else:
            current = 0
    return best


def calculate_current_streak(days: Sequence[DayActivity]) -> int:
    streak = 0
    for day in reversed(days):
        if day.level == 0:
            break
        streak += 1
    return streak


def heatmap_summary(days: Sequence[DayActivity]) -> Dict[str, int]:
    return {
        "total_activity": sum(d.count for d in days),
        "active_days": sum(1 for d in days if d.level > 0),
        "tasks_completed": sum(d.tasks for d in days),
        "max_streak": calculate_max_streak(days),
        "current_streak": calculate_current_streak(days),
    }


def group_by_weeks(days: Sequence[DayActivity]) -> List[List[Optional[DayActivity]]]:
    """Split into Sunday-first weeks; the first week is padded with None."""
    weeks: List[List[Optional[DayActivity]]] = []
    week: List[Optional[DayActivity]] = []
    for day in days:
        weekday = (day.date.weekday() + 1) % 7  # Sunday == 0
        if not week:
            week = [None] * weekday
        week.append(day)
        if weekday == 6:
            weeks.append(week)
            week = []
    if week:
        weeks.append(week)
    return weeks


def daily_progress(sprints: Iterable[Sprint], tasks: Iterable[Task], today: Optional[date] = None,
                   days: int = 7, tz: tzinfo = timezone.utc) -> List[Dict[str, object]]:
    """Per day: tasks completed, tasks due, and a productivity score.

    Productivity is completed tasks plus two per sprint completed that day.
    """
    today = today or utcnow().astimezone(tz).date()
    sprints, tasks = list(sprints), list(tasks)
    rows = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        completed = sum(1 for t in tasks if t.is_done and _local_day(t.completed_at, tz) == day)
        due = sum(1 for t in tasks if _local_day(t.due_date, tz) == day)
        sprints_done = sum(1 for s in sprints if _local_day(s.completed_at, tz) == day)
        rows.append({
            "date": day,
            "completed": completed,
            "total": max(due, completed),
            "productivity": completed + sprints_done * 2,
        })
    return rows


def category_breakdown(sprints: Iterable[Sprint]) -> List[Dict[str, object]]:
    sprints = list(sprints)
    counts = Counter(s.type.value for s in sprints)
    total = len(sprints)
    return [
        {"category": category, "count": count, "percentage": round(count / total * 100) if total else 0}
        for category, count in counts.items()
    ]


def _period_for(hour: int) -> str:
    for label, first, last in DAY_PERIODS:
        if first <= hour < last:
            return label
    return EVENING


def time_distribution(tasks: Iterable[Task], tz: tzinfo = timezone.utc) -> List[Dict[str, object]]:
    """Hours of recorded work per part of the day, keyed on completion time."""
    minutes: "OrderedDict[str, int]" = OrderedDict((label, 0) for label, _, _ in DAY_PERIODS)
    minutes[EVENING] = 0
    for task in tasks:
        if task.is_done and task.completed_at and task.actual_time:
            minutes[_period_for(task.completed_at.astimezone(tz).hour)] += task.actual_time
    return [{"period": period, "hours": round(total / 60, 1)} for period, total in minutes.items()]


def completion_trend(tasks: Iterable[Task], today: Optional[date] = None, days: int = 30,
                     tz: tzinfo = timezone.utc) -> List[Dict[str, object]]:
    """Daily completion rate of the tasks that existed by each day."""
    today = today or utcnow().astimezone(tz).date()
    tasks = list(tasks)
    trend = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        existing = [t for t in tasks if t.created_at is None or _local_day(t.created_at, tz) <= day]
        done = [t for t in existing if t.is_done and t.completed_at and _local_day(t.completed_at, tz) <= day]
        rate = round(len(done) / len(existing) * 100) if existing else 0
        trend.append({"date": day, "rate": rate})
    return trend


def sprint_statistics(sprints: Iterable[Sprint]) -> Dict[str, object]:
    sprints = list(sprints)
    total = len(sprints)
    rates = [s.stats.completion_rate or s.progress for s in sprints]
    total_tasks = sum(s.stats.total_tasks for s in sprints)

    monthly: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
    for sprint in sorted(sprints, key=lambda s: s.start_date):
        month = sprint.start_date.strftime("%Y-%m")
        monthly.setdefault(month, {"started": 0, "completed": 0})["started"] += 1
        if sprint.completed_at:
            done_month = sprint.completed_at.strftime("%Y-%m")
            monthly.setdefault(done_month, {"started": 0, "completed": 0})["completed"] += 1

    return {
        "total_sprints": total,
        "active_sprints": sum(1 for s in sprints if s.status == SprintStatus.ACTIVE),
        "completed_sprints": sum(1 for s in sprints if s.status == SprintStatus.COMPLETED),
        "average_completion_rate": round(sum(rates) / total) if total else 0,
        "best_completion_rate": max(rates) if rates else 0,
        "total_time_spent": sum(s.stats.actual_time for s in sprints),
        "average_sprint_duration": round(sum(s.duration for s in sprints) / total) if total else 0,
        "total_tasks": total_tasks,
        "completed_tasks": sum(s.stats.completed_tasks for s in sprints),
        "average_tasks_per_sprint": round(total_tasks / total, 1) if total else 0,
        "sprints_by_type": {t.value: sum(1 for s in sprints if s.type == t) for t in SprintType},
        "sprints_by_template": {t.value: sum(1 for s in sprints if s.template == t) for t in SprintTemplate},
        "sprints_by_difficulty": {d.value: sum(1 for s in sprints if s.difficulty == d) for d in SprintDifficulty},
        "monthly_progress": [{"month": m, **counts} for m, counts in sorted(monthly.items())],
    }


def achievements(stats: Dict[str, object], summary: Dict[str, int]) -> List[Dict[str, object]]:
    """Badges shown on the profile page, unlocked from the numbers above."""
    badges = [
        ("first_sprint", "First steps", "Create your first sprint", stats["total_sprints"] >= 1),
        ("finisher", "Finisher", "Complete a sprint", stats["completed_sprints"] >= 1),
        ("week_streak", "On a roll", "Stay active 7 days in a row", summary["max_streak"] >= 7),
        ("month_streak", "Habit formed", "Stay active 30 days in a row", summary["max_streak"] >= 30),
        ("task_master", "Task master", "Complete 100 tasks", stats["completed_tasks"] >= 100),
        ("perfectionist", "Perfectionist", "Finish a sprint with every task done", stats["best_completion_rate"] >= 100),
    ]
    return [
        {"id": key, "title": title, "description": description, "unlocked": bool(unlocked)}
        for key, title, description, unlocked in badges
    ]
