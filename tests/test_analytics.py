from datetime import date, datetime, timedelta, timezone

from sprintify.analytics import (achievements, activity_level, build_activity_heatmap, calculate_current_streak,
                                 calculate_max_streak, category_breakdown, completion_trend, daily_progress,
                                 group_by_weeks, heatmap_summary, sprint_statistics, time_distribution)
from sprintify.data import Sprint, SprintStats, SprintStatus, SprintType, Task, TaskStatus

TODAY = date(2024, 1, 10)


def at(day, hour=10):
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


def make_sprint(sprint_id, created=None, completed=None, **kwargs):
    start = kwargs.pop('start', at(TODAY - timedelta(days=9)))
    return Sprint(id=sprint_id, user_id='u1', title=sprint_id, start_date=start,
                  end_date=start + timedelta(days=7), created_at=created, completed_at=completed, **kwargs)


def make_task(task_id, completed=None, actual=0, created=None, due=None):
    return Task(id=task_id, sprint_id='s1', title=task_id,
                status=TaskStatus.COMPLETED if completed else TaskStatus.TODO,
                completed_at=completed, actual_time=actual, created_at=created, due_date=due)


def test_activity_levels():
    counts = [0, 1, 2, 3, 4, 5, 6, 7, 10]
    assert [activity_level(c) for c in counts] == [0, 1, 1, 2, 2, 3, 3, 4, 4]


def test_heatmap_weights_and_window():
    sprints = [
        make_sprint('a', created=at(TODAY), completed=at(TODAY, 15)),
        make_sprint('b', created=at(TODAY - timedelta(days=1))),
        make_sprint('old', created=at(TODAY - timedelta(days=400))),
    ]
    tasks = [make_task('t1', completed=at(TODAY)), make_task('t2')]
    heatmap = build_activity_heatmap(sprints, tasks, TODAY)
    assert len(heatmap) == 365
    assert heatmap[0].date == TODAY - timedelta(days=364)
    assert heatmap[-1].date == TODAY
    assert heatmap[-1].count == 3
    assert heatmap[-1].level == 2
    assert heatmap[-1].tasks == 1
    assert heatmap[-2].count == 1
    assert heatmap[-1].description == 'Some activity'
    assert sum(d.count for d in heatmap) == 4


def test_heatmap_uses_local_days():
    from zoneinfo import ZoneInfo
    late = datetime(2024, 1, 9, 20, tzinfo=timezone.utc)  # already Jan 10 in Shanghai
    heatmap = build_activity_heatmap([make_sprint('a', created=late)], today=TODAY, tz=ZoneInfo('Asia/Shanghai'))
    assert heatmap[-1].count == 1


def test_streaks():
    heatmap = build_activity_heatmap(
        [make_sprint(str(i), created=at(TODAY - timedelta(days=i))) for i in (0, 1, 2, 5, 6, 7, 8)], today=TODAY)
    assert calculate_current_streak(heatmap) == 3
    assert calculate_max_streak(heatmap) == 4
    summary = heatmap_summary(heatmap)
    assert summary == {'total_activity': 7, 'active_days': 7, 'tasks_completed': 0,
                       'max_streak': 4, 'current_streak': 3}


def test_current_streak_is_zero_without_activity_today():
    heatmap = build_activity_heatmap([make_sprint('a', created=at(TODAY - timedelta(days=1)))], today=TODAY)
    assert calculate_current_streak(heatmap) == 0


def test_weeks_start_on_sunday():
    heatmap = build_activity_heatmap([], today=TODAY, days=10)
    # 2024-01-01 is a Monday
    weeks = group_by_weeks(heatmap)
    assert weeks[0][0] is None
    assert weeks[0][1].date == date(2024, 1, 1)
    assert len(weeks[0]) == 7
    assert weeks[1][0].date == date(2024, 1, 7)
    assert len(weeks) == 2


def test_daily_progress():
    tasks = [make_task('t1', completed=at(TODAY)), make_task('t2', due=at(TODAY)), make_task('t3', due=at(TODAY))]
    sprints = [make_sprint('a', completed=at(TODAY))]
    rows = daily_progress(sprints, tasks, TODAY)
    assert len(rows) == 7
    assert rows[-1] == {'date': TODAY, 'completed': 1, 'total': 2, 'productivity': 3}
    assert rows[0]['completed'] == 0


def test_category_breakdown():
    sprints = [make_sprint('a'), make_sprint('b', type=SprintType.PROJECT), make_sprint('c')]
    breakdown = {row['category']: row for row in category_breakdown(sprints)}
    assert breakdown['learning']['count'] == 2
    assert breakdown['learning']['percentage'] == 67
    assert breakdown['project']['percentage'] == 33
    assert category_breakdown([]) == []


def test_time_distribution_by_completion_hour():
    tasks = [
        make_task('a', completed=at(TODAY, 6), actual=60),
        make_task('b', completed=at(TODAY, 14), actual=90),
        make_task('c', completed=at(TODAY, 23), actual=30),
        make_task('d', actual=120),
    ]
    assert time_distribution(tasks) == [
        {'period': 'Early morning', 'hours': 1.0},
        {'period': 'Morning', 'hours': 0.0},
        {'period': 'Afternoon', 'hours': 1.5},
        {'period': 'Evening', 'hours': 0.5},
    ]


def test_completion_trend():
    tasks = [
        make_task('a', completed=at(TODAY - timedelta(days=1)), created=at(TODAY - timedelta(days=5))),
        make_task('b', created=at(TODAY - timedelta(days=5))),
    ]
    trend = completion_trend(tasks, TODAY, days=3)
    assert [row['rate'] for row in trend] == [0, 50, 50]


def test_sprint_statistics():
    sprints = [
        make_sprint('a', status=SprintStatus.COMPLETED, completed=at(TODAY),
                    stats=SprintStats(total_tasks=4, completed_tasks=4, actual_time=120, completion_rate=100)),
        make_sprint('b', status=SprintStatus.ACTIVE,
                    stats=SprintStats(total_tasks=2, completed_tasks=1, actual_time=30, completion_rate=50)),
    ]
    stats = sprint_statistics(sprints)
    assert stats['total_sprints'] == 2
    assert stats['active_sprints'] == 1
    assert stats['completed_sprints'] == 1
    assert stats['average_completion_rate'] == 75
    assert stats['best_completion_rate'] == 100
    assert stats['total_time_spent'] == 150
    assert stats['average_tasks_per_sprint'] == 3.0
    assert stats['sprints_by_type'] == {'learning': 2, 'project': 0}
    assert stats['monthly_progress'] == [{'month': '2024-01', 'started': 2, 'completed': 1}]


def test_empty_statistics():
    stats = sprint_statistics([])
    assert stats['average_completion_rate'] == 0
    assert stats['monthly_progress'] == []


def test_achievements_unlock_from_numbers():
    stats = sprint_statistics([make_sprint('a', status=SprintStatus.COMPLETED, completed=at(TODAY),
                                           stats=SprintStats(total_tasks=1, completed_tasks=1, completion_rate=100))])
    badges = {badge['id']: badge['unlocked'] for badge in achievements(stats, {'max_streak': 8})}
    assert badges == {'first_sprint': True, 'finisher': True, 'week_streak': True, 'month_streak': False,
                      'task_master': False, 'perfectionist': True}
