# data.py
"""Domain model for sprints, tasks, milestones and upgrade requests.

Documents arrive from the backend as camelCase JSON. ``from_dict`` accepts that
shape (ISO strings or Firestore timestamp objects for dates) and ``to_dict``
produces it again.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sprintify.errors import InvalidTransitionError


class SprintType(str, Enum):
    LEARNING = "learning"
    PROJECT = "project"


class SprintStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SprintTemplate(str, Enum):
    SEVEN_DAYS = "7days"
    TWENTY_ONE_DAYS = "21days"
    THIRTY_DAYS = "30days"
    SIXTY_DAYS = "60days"
    NINETY_DAYS = "90days"
    CUSTOM = "custom"


class SprintDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    ACHIEVED = "achieved"
    MISSED = "missed"


class UpgradeRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Caller-driven lifecycle; nothing expires a sprint automatically.
SPRINT_TRANSITIONS = {
    SprintStatus.DRAFT: {SprintStatus.ACTIVE, SprintStatus.CANCELLED},
    SprintStatus.ACTIVE: {SprintStatus.PAUSED, SprintStatus.COMPLETED, SprintStatus.CANCELLED},
    SprintStatus.PAUSED: {SprintStatus.ACTIVE, SprintStatus.COMPLETED, SprintStatus.CANCELLED},
    SprintStatus.COMPLETED: set(),
    SprintStatus.CANCELLED: set(),
}


def parse_datetime(value: Any) -> Optional[datetime]:
    """Coerce a wire value into an aware UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (a trailing ``Z`` included) and
    Firestore timestamps serialized as ``{"_seconds": .., "_nanoseconds": ..}``.
    Naive values are taken to be UTC. Returns None for empty input and raises
    ValueError for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, dict):
        if "_methodName" in value:
            # an unresolved serverTimestamp() sentinel echoed back on create
            return None
        seconds = value.get("_seconds", value.get("seconds"))
        if seconds is None:
            raise ValueError(f"Unrecognised timestamp object: {value!r}")
        nanos = value.get("_nanoseconds", value.get("nanoseconds", 0)) or 0
        return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
    elif isinstance(value, (int, float)):
        # epoch milliseconds, as Date.getTime() produces
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Cannot parse {value!r} as a datetime")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, value, default):
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        return default


@dataclass
class User:
    id: str
    email: str
    user_type: str = "normal"
    display_name: Optional[str] = None
    disabled: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data.get("id") or data.get("uid") or "",
            email=data.get("email", ""),
            user_type=data.get("userType", "normal"),
            display_name=data.get("displayName"),
            disabled=bool(data.get("disabled", False)),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
            last_login_at=parse_datetime(data.get("lastLoginAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "displayName": self.display_name,
            "userType": self.user_type,
            "disabled": self.disabled,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
            "lastLoginAt": format_datetime(self.last_login_at),
        }


@dataclass
class SprintStats:
    total_tasks: int = 0
    completed_tasks: int = 0
    total_time: int = 0
    actual_time: int = 0
    completion_rate: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SprintStats":
        data = data or {}
        return cls(
            total_tasks=int(data.get("totalTasks", 0) or 0),
            completed_tasks=int(data.get("completedTasks", 0) or 0),
            total_time=int(data.get("totalTime", 0) or 0),
            actual_time=int(data.get("actualTime", 0) or 0),
            completion_rate=int(data.get("completionRate", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTasks": self.total_tasks,
            "completedTasks": self.completed_tasks,
            "totalTime": self.total_time,
            "actualTime": self.actual_time,
            "completionRate": self.completion_rate,
        }


@dataclass
class Task:
    id: str
    sprint_id: str
    title: str
    user_id: str = ""
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_time: int = 0
    actual_time: int = 0
    due_date: Optional[datetime] = None
    dependencies: List[str] = field(default_factory=list)
    progress: int = 0
    tags: List[str] = field(default_factory=list)
    category: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def is_overdue(self, now: datetime) -> bool:
        return (
            self.due_date is not None
            and self.due_date < now
            and self.status not in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], sprint_id: Optional[str] = None) -> "Task":
        return cls(
            id=data.get("id", ""),
            sprint_id=data.get("sprintId") or sprint_id or "",
            user_id=data.get("userId", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            status=_enum(TaskStatus, data.get("status"), TaskStatus.TODO),
            priority=_enum(TaskPriority, data.get("priority"), TaskPriority.MEDIUM),
            estimated_time=int(data.get("estimatedTime", 0) or 0),
            actual_time=int(data.get("actualTime", 0) or 0),
            due_date=parse_datetime(data.get("dueDate")),
            dependencies=list(data.get("dependencies") or []),
            progress=int(data.get("progress", 0) or 0),
            tags=list(data.get("tags") or []),
            category=data.get("category"),
            notes=data.get("notes"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
            completed_at=parse_datetime(data.get("completedAt")),
            started_at=parse_datetime(data.get("startedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sprintId": self.sprint_id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "estimatedTime": self.estimated_time,
            "actualTime": self.actual_time,
            "dueDate": format_datetime(self.due_date),
            "dependencies": list(self.dependencies),
            "progress": self.progress,
            "tags": list(self.tags),
            "category": self.category,
            "notes": self.notes,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
            "completedAt": format_datetime(self.completed_at),
            "startedAt": format_datetime(self.started_at),
        }


@dataclass
class Milestone:
    id: str
    sprint_id: str
    title: str
    target_date: datetime
    user_id: str = ""
    description: Optional[str] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    achieved_date: Optional[datetime] = None
    criteria: List[str] = field(default_factory=list)
    related_tasks: List[str] = field(default_factory=list)
    reward: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def effective_status(self, now: datetime) -> MilestoneStatus:
        """Pending milestones past their target date read as missed."""
        if self.status == MilestoneStatus.PENDING and self.target_date < now:
            return MilestoneStatus.MISSED
        return self.status

    @classmethod
    def from_dict(cls, data: Dict[str, Any], sprint_id: Optional[str] = None) -> "Milestone":
        return cls(
            id=data.get("id", ""),
            sprint_id=data.get("sprintId") or sprint_id or "",
            user_id=data.get("userId", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            status=_enum(MilestoneStatus, data.get("status"), MilestoneStatus.PENDING),
            target_date=parse_datetime(data.get("targetDate")),
            achieved_date=parse_datetime(data.get("achievedDate")),
            criteria=list(data.get("criteria") or []),
            related_tasks=list(data.get("relatedTasks") or []),
            reward=data.get("reward"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sprintId": self.sprint_id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "targetDate": format_datetime(self.target_date),
            "achievedDate": format_datetime(self.achieved_date),
            "criteria": list(self.criteria),
            "relatedTasks": list(self.related_tasks),
            "reward": self.reward,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
        }


@dataclass
class Sprint:
    id: str
    user_id: str
    title: str
    start_date: datetime
    end_date: datetime
    description: str = ""
    type: SprintType = SprintType.LEARNING
    template: SprintTemplate = SprintTemplate.SEVEN_DAYS
    difficulty: SprintDifficulty = SprintDifficulty.INTERMEDIATE
    status: SprintStatus = SprintStatus.DRAFT
    duration: int = 0
    progress: int = 0
    stats: SprintStats = field(default_factory=SprintStats)
    tags: List[str] = field(default_factory=list)
    category: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    tasks: List[Task] = field(default_factory=list)
    milestones: List[Milestone] = field(default_factory=list)

    def __post_init__(self):
        if self.start_date is None or self.end_date is None:
            raise ValueError("Sprint requires both a start and an end date")
        if self.end_date <= self.start_date:
            raise ValueError("Sprint end date must be after its start date")
        if not self.duration:
            self.duration = math.ceil((self.end_date - self.start_date).total_seconds() / 86400)

    @property
    def is_active(self) -> bool:
        return self.status == SprintStatus.ACTIVE

    def can_transition(self, target: SprintStatus) -> bool:
        return SprintStatus(target) in SPRINT_TRANSITIONS[self.status]

    def transition(self, target: SprintStatus, now: Optional[datetime] = None) -> None:
        target = SprintStatus(target)
        if not self.can_transition(target):
            raise InvalidTransitionError(self.status.value, target.value)
        self.status = target
        self.updated_at = now or utcnow()
        if target == SprintStatus.COMPLETED:
            self.completed_at = self.updated_at

    def recalculate_progress(self, tasks: Optional[List[Task]] = None) -> int:
        """Refresh stats and progress from the task list.

        While the sprint is active the progress figure only moves forward.
        """
        tasks = self.tasks if tasks is None else tasks
        total = len(tasks)
        completed = sum(1 for t in tasks if t.is_done)
        rate = round(completed / total * 100) if total else 0
        self.stats = SprintStats(
            total_tasks=total,
            completed_tasks=completed,
            total_time=sum(t.estimated_time for t in tasks),
            actual_time=sum(t.actual_time for t in tasks),
            completion_rate=rate,
        )
        if self.is_active and rate < self.progress:
            return self.progress
        self.progress = rate
        return self.progress

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sprint":
        sprint_id = data.get("id", "")
        return cls(
            id=sprint_id,
            user_id=data.get("userId", ""),
            title=data.get("title", ""),
            description=data.get("description") or "",
            type=_enum(SprintType, data.get("type"), SprintType.LEARNING),
            template=_enum(SprintTemplate, data.get("template"), SprintTemplate.CUSTOM),
            difficulty=_enum(SprintDifficulty, data.get("difficulty"), SprintDifficulty.INTERMEDIATE),
            status=_enum(SprintStatus, data.get("status"), SprintStatus.DRAFT),
            start_date=parse_datetime(data.get("startDate")),
            end_date=parse_datetime(data.get("endDate")),
            duration=int(data.get("duration", 0) or 0),
            progress=int(data.get("progress", 0) or 0),
            stats=SprintStats.from_dict(data.get("stats")),
            tags=list(data.get("tags") or []),
            category=data.get("category"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
            completed_at=parse_datetime(data.get("completedAt")),
            tasks=[Task.from_dict(t, sprint_id) for t in data.get("tasks") or []],
            milestones=[Milestone.from_dict(m, sprint_id) for m in data.get("milestones") or []],
        )

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        doc = {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "template": self.template.value,
            "difficulty": self.difficulty.value,
            "status": self.status.value,
            "startDate": format_datetime(self.start_date),
            "endDate": format_datetime(self.end_date),
            "duration": self.duration,
            "progress": self.progress,
            "stats": self.stats.to_dict(),
            "tags": list(self.tags),
            "category": self.category,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
            "completedAt": format_datetime(self.completed_at),
        }
        if include_children:
            doc["tasks"] = [t.to_dict() for t in self.tasks]
            doc["milestones"] = [m.to_dict() for m in self.milestones]
        return doc


@dataclass
class UpgradeRequest:
    id: str
    user_id: str
    user_email: str
    reason: str
    status: UpgradeRequestStatus = UpgradeRequestStatus.PENDING
    user_name: Optional[str] = None
    admin_comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    @property
    def is_reviewable(self) -> bool:
        return self.status == UpgradeRequestStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpgradeRequest":
        return cls(
            id=data.get("id", ""),
            user_id=data.get("userId", ""),
            user_email=data.get("userEmail", ""),
            user_name=data.get("userName"),
            reason=data.get("reason", ""),
            status=_enum(UpgradeRequestStatus, data.get("status"), UpgradeRequestStatus.PENDING),
            # the review endpoint stores the note as reviewerComment
            admin_comment=data.get("adminComment") or data.get("reviewerComment"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
            reviewed_at=parse_datetime(data.get("reviewedAt")),
            reviewed_by=data.get("reviewedBy"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userEmail": self.user_email,
            "userName": self.user_name,
            "reason": self.reason,
            "status": self.status.value,
            "adminComment": self.admin_comment,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
            "reviewedAt": format_datetime(self.reviewed_at),
            "reviewedBy": self.reviewed_by,
        }
