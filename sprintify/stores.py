"""Sprint and settings state for one signed-in user.

Each mutation goes to the backend first and is written to the local cache
only once the backend accepted it. The last error message is kept on the
store for the page to show; the exception still propagates.
"""
from __future__ import annotations

import logging
import math
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sprintify import dependencies
from sprintify.data import (
    Milestone,
    MilestoneStatus,
    Sprint,
    SprintStatus,
    SprintTemplate,
    Task,
    TaskStatus,
    format_datetime,
    parse_datetime,
    utcnow,
)
from sprintify.db import NOTIFICATION_FIELDS, PREFERENCE_FIELDS, LocalCache
from sprintify.errors import ApiError, DependencyError, InvalidTransitionError, SprintifyError, ValidationError
from sprintify.services import MilestoneService, SprintService, TaskService
from sprintify.sprint_templates import default_end_date
from sprintify.validators import (
    is_valid_date,
    is_valid_date_range,
    is_valid_description,
    is_valid_sprint_title,
    is_valid_task_title,
    is_valid_time_estimate,
    parse_tags,
    validate_tags,
)

log = logging.getLogger(__name__)

REMINDER_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
THEMES = ("light", "dark", "system")
LANGUAGES = ("en-US", "zh-CN")
TIME_FORMATS = ("12h", "24h")
PAGE_SIZE = 20


class SprintStore:
    def __init__(self, sprints: SprintService, tasks: TaskService, milestones: MilestoneService,
                 cache: LocalCache, user_id: str, clock: Callable[[], datetime] = utcnow):
        self.sprints = sprints
        self.tasks = tasks
        self.milestones = milestones
        self.cache = cache
        self.user_id = user_id
        self.clock = clock
        self._error: Optional[str] = None
        self._current_id: Optional[str] = None

    @contextmanager
    def _tracking(self, action: str):
        self._error = None
        try:
            yield
        except SprintifyError as exc:
            self._error = exc.message
            log.warning("%s failed: %s", action, exc.message)
            raise

    @property
    def error(self) -> Optional[str]:
        return self._error

    def clear_error(self) -> None:
        self._error = None

    # sprints

    def _list_all(self, status=None, type=None) -> List[Sprint]:
        """Read every page of the sprint list; the backend caps a page at PAGE_SIZE."""
        remote, seen = [], set()
        offset = 0
        while True:
            page = self.sprints.list(status=status, type=type, limit=PAGE_SIZE, offset=offset)
            fresh = [s for s in page if s.id not in seen]
            remote.extend(fresh)
            seen.update(s.id for s in fresh)
            if len(page) < PAGE_SIZE or not fresh:
                return remote
            offset += PAGE_SIZE

    def load_sprints(self, status=None, type=None) -> List[Sprint]:
        with self._tracking("Loading sprints"):
            remote = self._list_all(status=status, type=type)
            kept = [self.cache.store_sprint(self.user_id, sprint, partial=True) for sprint in remote]
            if status is None and type is None:
                self.cache.prune_sprints(self.user_id, [s.id for s in remote])
        return kept

    def load_sprint(self, sprint_id: str) -> Sprint:
        with self._tracking("Loading sprint"):
            sprint = self.sprints.get(sprint_id)
            if sprint is None:
                raise ApiError("Sprint not found", 404)
            sprint = self.cache.store_sprint(self.user_id, sprint)
        self._current_id = sprint.id
        return sprint

    def get_sprint(self, sprint_id: str) -> Sprint:
        """The cached sprint, fetched from the backend on a cache miss."""
        sprint = self.cache.fetch_sprint(self.user_id, sprint_id)
        if sprint is None:
            sprint = self.load_sprint(sprint_id)
        return sprint

    def all_sprints(self) -> List[Sprint]:
        return self.cache.fetch_sprints(self.user_id)

    def active_sprints(self) -> List[Sprint]:
        return [s for s in self.all_sprints() if s.status == SprintStatus.ACTIVE]

    def completed_sprints(self) -> List[Sprint]:
        return [s for s in self.all_sprints() if s.status == SprintStatus.COMPLETED]

    @property
    def current_sprint(self) -> Optional[Sprint]:
        if self._current_id is None:
            return None
        return self.cache.fetch_sprint(self.user_id, self._current_id)

    def set_current_sprint(self, sprint_id: Optional[str]) -> None:
        self._current_id = sprint_id

    def _sprint_fields(self, form: Dict[str, Any]) -> Dict[str, Any]:
        """Validate a create form and turn it into the create request body."""
        errors = []
        title = (form.get("title") or "").strip()
        errors.extend(is_valid_sprint_title(title).errors)
        errors.extend(is_valid_description(form.get("description")).errors)

        tags = form.get("tags") or []
        if isinstance(tags, str):
            tags = parse_tags(tags)
        errors.extend(validate_tags(tags).errors)

        template = SprintTemplate(form.get("template") or SprintTemplate.SEVEN_DAYS)
        start = parse_datetime(form.get("start_date")) or self.clock()
        end = parse_datetime(form.get("end_date"))
        if end is None:
            try:
                duration = form.get("duration")
                end = default_end_date(template, start, int(duration) if duration else None)
            except ValueError as exc:
                errors.append(str(exc))
        if end is not None:
            errors.extend(is_valid_date_range(start, end).errors)
        if errors:
            raise ValidationError(errors)

        return {
            "title": title,
            "description": form.get("description") or "",
            "type": form.get("type") or "learning",
            "template": template.value,
            "difficulty": form.get("difficulty") or "intermediate",
            "status": SprintStatus.DRAFT.value,
            "startDate": start,
            "endDate": end,
            "duration": math.ceil((end - start).total_seconds() / 86400),
            "tags": tags,
            "category": form.get("category") or None,
        }

    def create_sprint(self, form: Dict[str, Any]) -> Sprint:
        with self._tracking("Creating sprint"):
            fields = self._sprint_fields(form)
            sprint = self.sprints.create(fields)
            sprint = self.cache.store_sprint(self.user_id, sprint)
        self._current_id = sprint.id
        log.info("Created sprint %s (%s)", sprint.id, sprint.template.value)
        return sprint

    def _patch(self, sprint: Sprint, fields: Dict[str, Any]) -> Sprint:
        doc = sprint.to_dict(include_children=True)
        doc.update({k: format_datetime(v) if isinstance(v, datetime) else v for k, v in fields.items()})
        return Sprint.from_dict(doc)

    def update_sprint(self, sprint_id: str, fields: Dict[str, Any]) -> Sprint:
        """Apply camelCase ``fields`` to a sprint."""
        with self._tracking("Updating sprint"):
            sprint = self.get_sprint(sprint_id)
            errors = []
            if "title" in fields:
                errors.extend(is_valid_sprint_title(fields["title"]).errors)
            if "description" in fields:
                errors.extend(is_valid_description(fields["description"]).errors)
            if "tags" in fields:
                errors.extend(validate_tags(fields["tags"]).errors)
            if "startDate" in fields or "endDate" in fields:
                start = fields.get("startDate", sprint.start_date)
                end = fields.get("endDate", sprint.end_date)
                errors.extend(is_valid_date_range(start, end).errors)
            if errors:
                raise ValidationError(errors)
            if "startDate" in fields or "endDate" in fields:
                start = parse_datetime(fields.get("startDate", sprint.start_date))
                end = parse_datetime(fields.get("endDate", sprint.end_date))
                fields = dict(fields, duration=math.ceil((end - start).total_seconds() / 86400))

            self.sprints.update(sprint_id, fields)
            sprint = self.cache.store_sprint(self.user_id, self._patch(sprint, fields), local=True)
        return sprint

    def delete_sprint(self, sprint_id: str) -> None:
        with self._tracking("Deleting sprint"):
            self.sprints.delete(sprint_id)
            self.cache.remove_sprint(self.user_id, sprint_id)
        if self._current_id == sprint_id:
            self._current_id = None

    def delete_sprints(self, sprint_ids: List[str]) -> None:
        if not sprint_ids:
            return
        with self._tracking("Deleting sprints"):
            self.sprints.batch_delete(sprint_ids)
            for sprint_id in sprint_ids:
                self.cache.remove_sprint(self.user_id, sprint_id)
        if self._current_id in sprint_ids:
            self._current_id = None

    def _transition(self, sprint_id: str, target: SprintStatus, call: Callable[[str], None]) -> Sprint:
        with self._tracking("Changing sprint status"):
            sprint = self.get_sprint(sprint_id)
            if not sprint.can_transition(target):
                raise InvalidTransitionError(sprint.status.value, target.value)
            call(sprint_id)
            sprint.transition(target, self.clock())
            if target == SprintStatus.COMPLETED:
                sprint.recalculate_progress()
            sprint = self.cache.store_sprint(self.user_id, sprint, local=True)
        log.info("Sprint %s is now %s", sprint_id, target.value)
        return sprint

    def start_sprint(self, sprint_id: str) -> Sprint:
        return self._transition(sprint_id, SprintStatus.ACTIVE, self.sprints.start)

    def pause_sprint(self, sprint_id: str) -> Sprint:
        return self._transition(sprint_id, SprintStatus.PAUSED, self.sprints.pause)

    def complete_sprint(self, sprint_id: str) -> Sprint:
        return self._transition(sprint_id, SprintStatus.COMPLETED, self.sprints.complete)

    def cancel_sprint(self, sprint_id: str) -> Sprint:
        return self._transition(
            sprint_id, SprintStatus.CANCELLED,
            lambda sid: self.sprints.update(sid, {"status": SprintStatus.CANCELLED.value}),
        )

    # tasks

    def _store_tasks(self, sprint: Sprint, tasks: List[Task]) -> Sprint:
        sprint.tasks = tasks
        sprint.recalculate_progress()
        return self.cache.store_sprint(self.user_id, sprint, local=True)

    def load_tasks(self, sprint_id: str) -> List[Task]:
        with self._tracking("Loading tasks"):
            sprint = self.get_sprint(sprint_id)
            tasks = self.tasks.list(sprint_id)
            self._store_tasks(sprint, tasks)
        return tasks

    def refresh_tasks(self, sprints: Iterable[Sprint]) -> List[Task]:
        """Reload the task lists of cached ``sprints``; list documents carry none."""
        loaded = []
        with self._tracking("Loading tasks"):
            for sprint in sprints:
                tasks = self.tasks.list(sprint.id)
                self._store_tasks(sprint, tasks)
                loaded.extend(tasks)
        return loaded

    def _find_task(self, sprint: Sprint, task_id: str) -> Task:
        for task in sprint.tasks:
            if task.id == task_id:
                return task
        raise ApiError("Task not found", 404)

    def add_task(self, sprint_id: str, fields: Dict[str, Any]) -> Task:
        with self._tracking("Adding task"):
            sprint = self.get_sprint(sprint_id)
            errors = list(is_valid_task_title(fields.get("title") or "").errors)
            if fields.get("estimatedTime") is not None:
                errors.extend(is_valid_time_estimate(fields["estimatedTime"]).errors)
            if errors:
                raise ValidationError(errors)
            sibling_ids = {t.id for t in sprint.tasks}
            for dep in fields.get("dependencies") or []:
                if dep not in sibling_ids:
                    raise DependencyError("A task can only depend on tasks in the same sprint")

            fields = dict(fields, status=fields.get("status") or TaskStatus.TODO.value)
            task = self.tasks.create(sprint_id, fields)
            self._store_tasks(sprint, sprint.tasks + [task])
        return task

    def update_task(self, sprint_id: str, task_id: str, fields: Dict[str, Any]) -> Task:
        with self._tracking("Updating task"):
            sprint = self.get_sprint(sprint_id)
            task = self._find_task(sprint, task_id)
            if "title" in fields:
                result = is_valid_task_title(fields["title"])
                if not result:
                    raise ValidationError(result.errors)

            self.tasks.update(sprint_id, task_id, fields)
            doc = task.to_dict()
            doc.update({k: format_datetime(v) if isinstance(v, datetime) else v for k, v in fields.items()})
            updated = Task.from_dict(doc, sprint_id)
            self._store_tasks(sprint, [updated if t.id == task_id else t for t in sprint.tasks])
        return updated

    def toggle_task_status(self, sprint_id: str, task_id: str) -> Task:
        """Flip a task between todo and completed."""
        sprint = self.get_sprint(sprint_id)
        task = self._find_task(sprint, task_id)
        if task.status == TaskStatus.COMPLETED:
            return self.update_task(sprint_id, task_id, {"status": TaskStatus.TODO.value, "completedAt": None})
        if not dependencies.can_start_task(sprint.tasks, task):
            self._error = "Finish the tasks this one depends on first"
            raise DependencyError(self._error)
        return self.update_task(sprint_id, task_id, {"status": TaskStatus.COMPLETED.value,
                                                     "completedAt": self.clock()})

    def delete_task(self, sprint_id: str, task_id: str) -> None:
        with self._tracking("Deleting task"):
            sprint = self.get_sprint(sprint_id)
            self.tasks.delete(sprint_id, task_id)
            remaining = []
            for task in sprint.tasks:
                if task.id == task_id:
                    continue
                task.dependencies = [dep for dep in task.dependencies if dep != task_id]
                remaining.append(task)
            self._store_tasks(sprint, remaining)

    def add_dependency(self, sprint_id: str, task_id: str, dependency_id: str) -> Task:
        with self._tracking("Adding dependency"):
            sprint = self.get_sprint(sprint_id)
            new = dependencies.add_dependency(sprint.tasks, task_id, dependency_id)
        return self.update_task(sprint_id, task_id, {"dependencies": new})

    def remove_dependency(self, sprint_id: str, task_id: str, dependency_id: str) -> Task:
        with self._tracking("Removing dependency"):
            sprint = self.get_sprint(sprint_id)
            remaining = dependencies.remove_dependency(sprint.tasks, task_id, dependency_id)
        return self.update_task(sprint_id, task_id, {"dependencies": remaining})

    # milestones

    def _store_milestones(self, sprint: Sprint, milestones: List[Milestone]) -> Sprint:
        sprint.milestones = milestones
        return self.cache.store_sprint(self.user_id, sprint, local=True)

    def load_milestones(self, sprint_id: str) -> List[Milestone]:
        with self._tracking("Loading milestones"):
            sprint = self.get_sprint(sprint_id)
            milestones = self.milestones.list(sprint_id)
            self._store_milestones(sprint, milestones)
        return milestones

    def add_milestone(self, sprint_id: str, fields: Dict[str, Any]) -> Milestone:
        with self._tracking("Adding milestone"):
            sprint = self.get_sprint(sprint_id)
            errors = []
            if not (fields.get("title") or "").strip():
                errors.append("Milestone title cannot be empty")
            if not is_valid_date(fields.get("targetDate")):
                errors.append("Please choose a valid target date")
            if errors:
                raise ValidationError(errors)
            fields = dict(fields, status=MilestoneStatus.PENDING.value)
            milestone = self.milestones.create(sprint_id, fields)
            self._store_milestones(sprint, sprint.milestones + [milestone])
        return milestone

    def update_milestone(self, sprint_id: str, milestone_id: str, fields: Dict[str, Any]) -> Milestone:
        with self._tracking("Updating milestone"):
            sprint = self.get_sprint(sprint_id)
            current = next((m for m in sprint.milestones if m.id == milestone_id), None)
            if current is None:
                raise ApiError("Milestone not found", 404)
            self.milestones.update(sprint_id, milestone_id, fields)
            doc = current.to_dict()
            doc.update({k: format_datetime(v) if isinstance(v, datetime) else v for k, v in fields.items()})
            updated = Milestone.from_dict(doc, sprint_id)
            self._store_milestones(sprint, [updated if m.id == milestone_id else m for m in sprint.milestones])
        return updated

    def achieve_milestone(self, sprint_id: str, milestone_id: str) -> Milestone:
        return self.update_milestone(sprint_id, milestone_id, {
            "status": MilestoneStatus.ACHIEVED.value,
            "achievedDate": self.clock(),
        })

    def delete_milestone(self, sprint_id: str, milestone_id: str) -> None:
        with self._tracking("Deleting milestone"):
            sprint = self.get_sprint(sprint_id)
            self.milestones.delete(sprint_id, milestone_id)
            self._store_milestones(sprint, [m for m in sprint.milestones if m.id != milestone_id])


class SettingsStore:
    """Notification settings and display preferences, kept locally."""

    def __init__(self, cache: LocalCache, user_id: str):
        self.cache = cache
        self.user_id = user_id
        self._error: Optional[str] = None

    @property
    def error(self) -> Optional[str]:
        return self._error

    def clear_error(self) -> None:
        self._error = None

    def load_settings(self) -> Dict[str, Dict[str, Any]]:
        row = self.cache.get_settings(self.user_id)
        return {
            "notifications": {key: getattr(row, column) for key, column in NOTIFICATION_FIELDS.items()},
            "preferences": {key: getattr(row, column) for key, column in PREFERENCE_FIELDS.items()},
        }

    def _save(self, fields: Dict[str, Any], mapping: Dict[str, str], errors: List[str]) -> Dict[str, Dict[str, Any]]:
        unknown = [key for key in fields if key not in mapping]
        errors.extend(f"Unknown setting: {key}" for key in unknown)
        if errors:
            self._error = "; ".join(errors)
            raise ValidationError(errors)
        self._error = None
        self.cache.save_settings(self.user_id, {mapping[key]: value for key, value in fields.items()})
        return self.load_settings()

    def update_notification_settings(self, fields: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        errors = []
        reminder = fields.get("reminderTime")
        if reminder is not None and not REMINDER_TIME_RE.match(reminder):
            errors.append("Reminder time must use the HH:MM format")
        return self._save(fields, NOTIFICATION_FIELDS, errors)

    def update_preferences(self, fields: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        errors = []
        if "theme" in fields and fields["theme"] not in THEMES:
            errors.append("Theme must be light, dark or system")
        if "language" in fields and fields["language"] not in LANGUAGES:
            errors.append("Unsupported language")
        if "timeFormat" in fields and fields["timeFormat"] not in TIME_FORMATS:
            errors.append("Time format must be 12h or 24h")
        return self._save(fields, PREFERENCE_FIELDS, errors)

    def reset_settings(self) -> Dict[str, Dict[str, Any]]:
        self._error = None
        self.cache.reset_settings(self.user_id)
        return self.load_settings()
