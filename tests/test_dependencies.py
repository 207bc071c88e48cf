import pytest

from sprintify.data import Task, TaskStatus
from sprintify.dependencies import (add_dependency, available_dependencies, blocked_tasks, can_start_task, find_cycle,
                                    remove_dependency, task_dependencies, task_dependents, topological_order,
                                    would_create_cycle)
from sprintify.errors import DependencyError


def task(task_id, deps=(), status=TaskStatus.TODO):
    return Task(id=task_id, sprint_id='s1', title=task_id, dependencies=list(deps), status=status)


@pytest.fixture
def chain():
    # c depends on b, b depends on a
    return [task('a'), task('b', ['a']), task('c', ['b'])]


def test_cycle_detection(chain):
    assert would_create_cycle(chain, 'a', 'c')
    assert would_create_cycle(chain, 'a', 'a')
    assert not would_create_cycle(chain, 'c', 'a')


def test_add_dependency_returns_new_list(chain):
    assert add_dependency(chain, 'c', 'a') == ['b', 'a']
    assert chain[2].dependencies == ['b']


@pytest.mark.parametrize('task_id, dep_id, message', [
    ('a', 'c', 'circular dependency'),
    ('a', 'a', 'cannot depend on itself'),
    ('b', 'a', 'already exists'),
    ('a', 'elsewhere', 'same sprint'),
    ('missing', 'a', 'Unknown task'),
])
def test_add_dependency_rejections(chain, task_id, dep_id, message):
    with pytest.raises(DependencyError) as excinfo:
        add_dependency(chain, task_id, dep_id)
    assert message in excinfo.value.message


def test_remove_dependency(chain):
    assert remove_dependency(chain, 'c', 'b') == []
    assert remove_dependency(chain, 'c', 'a') == ['b']


def test_find_cycle():
    assert find_cycle([task('a'), task('b', ['a'])]) is None
    cycle = find_cycle([task('a', ['b']), task('b', ['a'])])
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {'a', 'b'}


def test_blocking(chain):
    assert can_start_task(chain, chain[0])
    assert not can_start_task(chain, chain[1])
    assert [t.id for t in blocked_tasks(chain)] == ['b', 'c']
    chain[0].status = TaskStatus.COMPLETED
    assert [t.id for t in blocked_tasks(chain)] == ['c']


def test_neighbours(chain):
    assert [t.id for t in task_dependencies(chain, chain[2])] == ['b']
    assert [t.id for t in task_dependents(chain, 'a')] == ['b']


def test_available_dependencies_exclude_cycles(chain):
    assert [t.id for t in available_dependencies(chain, 'a')] == []
    assert [t.id for t in available_dependencies(chain, 'c')] == ['a']


def test_topological_order():
    tasks = [task('c', ['b']), task('b', ['a']), task('a')]
    assert [t.id for t in topological_order(tasks)] == ['a', 'b', 'c']
    with pytest.raises(DependencyError):
        topological_order([task('a', ['b']), task('b', ['a'])])
