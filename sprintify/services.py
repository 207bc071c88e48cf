"""Typed wrappers around the backend endpoints."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sprintify.api import ApiClient
from sprintify.data import Milestone, Sprint, Task, UpgradeRequest, User, format_datetime, parse_datetime, utcnow


def _payload(fields: Dict[str, Any], keep_none: bool = False) -> Dict[str, Any]:
    """Serialise datetimes for the wire and drop unset fields.

    With ``keep_none`` a None is sent as JSON null, which clears the field on
    an update.
    """
    doc = {}
    for key, value in fields.items():
        if value is None and not keep_none:
            continue
        if isinstance(value, datetime):
            value = format_datetime(value)
        elif isinstance(value, Enum):
            value = value.value
        doc[key] = value
    return doc


class SprintService:
    def __init__(self, client: ApiClient):
        self.client = client

    def list(self, status=None, type=None, limit=None, offset=None, page=None) -> List[Sprint]:
        params = _payload({"status": status, "type": type, "limit": limit, "offset": offset})
        if page:
            params["offset"] = (page - 1) * (limit or 10)
        payload = self.client.get("/sprints", params=params, fallback="Failed to load sprints")
        return [Sprint.from_dict(doc) for doc in payload.get("data") or []]

    def get(self, sprint_id: str) -> Optional[Sprint]:
        payload = self.client.get(f"/sprints/{sprint_id}", fallback="Failed to load sprint")
        data = payload.get("data")
        return Sprint.from_dict(data) if data else None

    def create(self, fields: Dict[str, Any]) -> Sprint:
        payload = self.client.post("/sprints", json=_payload(fields), fallback="Failed to create sprint")
        return Sprint.from_dict(payload["data"])

    def update(self, sprint_id: str, fields: Dict[str, Any]) -> None:
        self.client.put(f"/sprints/{sprint_id}", json=_payload(fields, keep_none=True),
                        fallback="Failed to update sprint")

    def delete(self, sprint_id: str) -> None:
        self.client.delete(f"/sprints/{sprint_id}", fallback="Failed to delete sprint")

    def batch_delete(self, sprint_ids: Iterable[str]) -> None:
        self.client.delete("/sprints", json={"sprintIds": list(sprint_ids)}, fallback="Failed to delete sprints")

    def start(self, sprint_id: str) -> None:
        self.client.post(f"/sprints/{sprint_id}/start", fallback="Failed to start sprint")

    def pause(self, sprint_id: str) -> None:
        self.client.post(f"/sprints/{sprint_id}/pause", fallback="Failed to pause sprint")

    def complete(self, sprint_id: str) -> None:
        self.client.post(f"/sprints/{sprint_id}/complete", fallback="Failed to complete sprint")


class TaskService:
    def __init__(self, client: ApiClient):
        self.client = client

    def list(self, sprint_id: str) -> List[Task]:
        payload = self.client.get(f"/sprints/{sprint_id}/tasks", fallback="Failed to load tasks")
        return [Task.from_dict(doc, sprint_id) for doc in payload.get("data") or []]

    def create(self, sprint_id: str, fields: Dict[str, Any]) -> Task:
        payload = self.client.post(f"/sprints/{sprint_id}/tasks", json=_payload(fields),
                                   fallback="Failed to create task")
        return Task.from_dict(payload["data"], sprint_id)

    def update(self, sprint_id: str, task_id: str, fields: Dict[str, Any]) -> None:
        self.client.put(f"/sprints/{sprint_id}/tasks/{task_id}", json=_payload(fields, keep_none=True),
                        fallback="Failed to update task")

    def delete(self, sprint_id: str, task_id: str) -> None:
        self.client.delete(f"/sprints/{sprint_id}/tasks/{task_id}", fallback="Failed to delete task")


class MilestoneService:
    def __init__(self, client: ApiClient):
        self.client = client

    def list(self, sprint_id: str) -> List[Milestone]:
        payload = self.client.get(f"/sprints/{sprint_id}/milestones", fallback="Failed to load milestones")
        return [Milestone.from_dict(doc, sprint_id) for doc in payload.get("data") or []]

    def create(self, sprint_id: str, fields: Dict[str, Any]) -> Milestone:
        payload = self.client.post(f"/sprints/{sprint_id}/milestones", json=_payload(fields),
                                   fallback="Failed to create milestone")
        return Milestone.from_dict(payload["data"], sprint_id)

    def update(self, sprint_id: str, milestone_id: str, fields: Dict[str, Any]) -> None:
        self.client.put(f"/sprints/{sprint_id}/milestones/{milestone_id}", json=_payload(fields, keep_none=True),
                        fallback="Failed to update milestone")

    def delete(self, sprint_id: str, milestone_id: str) -> None:
        self.client.delete(f"/sprints/{sprint_id}/milestones/{milestone_id}", fallback="Failed to delete milestone")


@dataclass
class UpgradeRequestStats:
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0


@dataclass
class UpgradeStatus:
    latest_request: Optional[UpgradeRequest]
    can_apply: bool


class UpgradeRequestService:
    REVIEW_STATUS = {"approve": "approved", "reject": "rejected"}

    def __init__(self, client: ApiClient):
        self.client = client

    def list(self, status=None, limit=None, offset=None) -> Tuple[List[UpgradeRequest], UpgradeRequestStats]:
        if status == "all":
            status = None
        payload = self.client.get(
            "/upgrade-requests",
            params={"status": status, "limit": limit, "offset": offset},
            fallback="Failed to load upgrade requests",
        )
        data = payload.get("data") or {}
        stats = data.get("stats") or {}
        return (
            [UpgradeRequest.from_dict(doc) for doc in data.get("requests") or []],
            UpgradeRequestStats(
                total=stats.get("total", 0),
                pending=stats.get("pending", 0),
                approved=stats.get("approved", 0),
                rejected=stats.get("rejected", 0),
            ),
        )

    def create(self, reason: str) -> UpgradeRequest:
        payload = self.client.post("/upgrade-requests", json={"reason": reason},
                                   fallback="Failed to submit upgrade request")
        return UpgradeRequest.from_dict(payload["data"])

    def my_status(self) -> UpgradeStatus:
        payload = self.client.get("/upgrade-requests/my-status", fallback="Failed to load upgrade request status")
        data = payload.get("data") or {}
        latest = data.get("latestRequest")
        request = UpgradeRequest.from_dict(latest) if latest else None
        can_apply = data.get("canApply")
        if can_apply is None:
            can_apply = request is None or not request.is_reviewable
        return UpgradeStatus(latest_request=request, can_apply=bool(can_apply))

    def review(self, request_id: str, action: str, comment: Optional[str] = None) -> None:
        if action not in self.REVIEW_STATUS:
            raise ValueError(f"Unknown review action: {action}")
        self.client.post(
            f"/upgrade-requests/{request_id}/review",
            # older deployments read ``status`` instead of ``action``
            json=_payload({"action": action, "status": self.REVIEW_STATUS[action], "comment": comment}),
            fallback="Failed to review upgrade request",
        )

    def cancel(self, request_id: str) -> None:
        self.client.delete(f"/upgrade-requests/{request_id}", fallback="Failed to cancel upgrade request")


@dataclass
class UserStats:
    total_users: int = 0
    normal_users: int = 0
    premium_users: int = 0
    admin_users: int = 0
    disabled_users: int = 0
    recent_registrations: int = 0


@dataclass
class UserPage:
    users: List[User] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 0


class UserService:
    def __init__(self, client: ApiClient):
        self.client = client

    def list(self, user_type=None, limit=None, page=None, search=None) -> UserPage:
        payload = self.client.get(
            "/users",
            params={"userType": user_type, "limit": limit, "page": page, "search": search},
            fallback="Failed to load users",
        )
        data = payload.get("data") or {}
        pagination = data.get("pagination") or {}
        users = [User.from_dict(doc) for doc in data.get("users") or []]
        return UserPage(
            users=users,
            page=pagination.get("page", page or 1),
            limit=pagination.get("limit", limit or 20),
            total=pagination.get("total", len(users)),
            total_pages=pagination.get("totalPages", 1 if users else 0),
        )

    def get(self, user_id: str) -> User:
        payload = self.client.get(f"/users/{user_id}", fallback="Failed to load user")
        return User.from_dict(payload["data"])

    def update(self, user_id: str, user_type=None, display_name=None, disabled=None) -> None:
        self.client.put(
            f"/users/{user_id}",
            json=_payload({"userType": user_type, "displayName": display_name, "disabled": disabled}),
            fallback="Failed to update user",
        )

    def delete(self, user_id: str) -> None:
        self.client.delete(f"/users/{user_id}", fallback="Failed to delete user")

    def stats(self, now: Optional[datetime] = None) -> UserStats:
        users = self.list(limit=1000).users
        week_ago = (now or utcnow()) - timedelta(days=7)
        return UserStats(
            total_users=len(users),
            normal_users=sum(1 for u in users if u.user_type == "normal"),
            premium_users=sum(1 for u in users if u.user_type == "premium"),
            admin_users=sum(1 for u in users if u.user_type == "admin"),
            disabled_users=sum(1 for u in users if u.disabled),
            recent_registrations=sum(1 for u in users if u.created_at and u.created_at >= week_ago),
        )

    def profile(self) -> User:
        payload = self.client.get("/auth/profile", fallback="Failed to load profile")
        return User.from_dict(payload["data"])

    def setup_first_admin(self) -> Dict[str, Any]:
        payload = self.client.post("/auth/setup-first-admin", fallback="Failed to set up the administrator")
        return payload.get("data") or {}


AI_DAILY_LIMITS = {"normal": 5, "premium": 10, "admin": -1}


@dataclass
class AiUsage:
    """Today's plan generations against the daily limit; a negative limit means unlimited."""

    count: int = 0
    limit: int = AI_DAILY_LIMITS["normal"]
    reset_at: Optional[datetime] = None
    user_type: str = "normal"

    @property
    def unlimited(self) -> bool:
        return self.limit < 0

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited:
            return None
        return max(0, self.limit - self.count)


@dataclass
class PlanPhase:
    title: str
    description: str = ""
    duration: int = 0
    tasks: List[str] = field(default_factory=list)


@dataclass
class PlanMilestone:
    title: str
    day: int = 0
    criteria: List[str] = field(default_factory=list)


@dataclass
class AiPlan:
    title: str
    duration: int
    type: str
    description: str = ""
    difficulty: str = "intermediate"
    phases: List[PlanPhase] = field(default_factory=list)
    milestones: List[PlanMilestone] = field(default_factory=list)
    tips: List[str] = field(default_factory=list)
    conversation_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], conversation_id: Optional[str] = None) -> "AiPlan":
        info = data.get("sprintInfo") or {}
        return cls(
            title=info.get("title") or "Generated plan",
            duration=int(info.get("duration") or 0),
            type=info.get("type") or "learning",
            description=info.get("description") or "",
            difficulty=info.get("difficulty") or "intermediate",
            phases=[
                PlanPhase(
                    title=phase.get("title", ""),
                    description=phase.get("description", ""),
                    duration=int(phase.get("duration") or 0),
                    tasks=list(phase.get("tasks") or []),
                )
                for phase in data.get("phases") or []
            ],
            # targetDate is a day offset from the sprint start
            milestones=[
                PlanMilestone(title=m.get("title", ""), day=int(m.get("targetDate") or 0),
                              criteria=list(m.get("criteria") or []))
                for m in data.get("milestones") or []
            ],
            tips=list(data.get("tips") or []),
            conversation_id=conversation_id,
        )


class AiService:
    def __init__(self, client: ApiClient):
        self.client = client

    def generate_plan(self, prompt: str, type: str, template: str,
                      preferences: Optional[Dict[str, Any]] = None) -> AiPlan:
        payload = self.client.post(
            "/ai/generate-plan",
            json=_payload({"prompt": prompt, "type": type, "template": template, "preferences": preferences}),
            fallback="Failed to generate plan",
        )
        data = payload.get("data") or {}
        return AiPlan.from_dict(data.get("plan") or {}, data.get("conversationId"))

    def usage(self) -> AiUsage:
        payload = self.client.get("/ai/usage", fallback="Failed to load AI usage")
        data = payload.get("data") or {}
        today = data.get("today") or {}
        user_type = data.get("userType") or "normal"
        limit = today.get("limit")
        if limit is None:
            limit = AI_DAILY_LIMITS.get(user_type, AI_DAILY_LIMITS["normal"])
        return AiUsage(
            count=today.get("count") or 0,
            limit=limit,
            reset_at=parse_datetime(today.get("resetAt")),
            user_type=user_type,
        )


class NotificationService:
    def __init__(self, client: ApiClient):
        self.client = client

    def subscribe(self, token: str) -> None:
        self.client.post("/notifications/subscribe", json={"token": token},
                         fallback="Failed to enable push notifications")

    def unsubscribe(self, token: str) -> None:
        self.client.post("/notifications/unsubscribe", json={"token": token},
                         fallback="Failed to disable push notifications")

    def update_settings(self, settings: Dict[str, Any]) -> None:
        self.client.put("/notifications/settings", json=settings, fallback="Failed to save notification settings")

    def send_test(self) -> None:
        self.client.post("/notifications/test", fallback="Failed to send test notification")


@dataclass
class Backend:
    """The set of services one request works with."""

    sprints: SprintService
    tasks: TaskService
    milestones: MilestoneService
    upgrade_requests: UpgradeRequestService
    users: UserService
    notifications: NotificationService
    ai: AiService

    @classmethod
    def from_client(cls, client: ApiClient) -> "Backend":
        return cls(
            sprints=SprintService(client),
            tasks=TaskService(client),
            milestones=MilestoneService(client),
            upgrade_requests=UpgradeRequestService(client),
            users=UserService(client),
            notifications=NotificationService(client),
            ai=AiService(client),
        )
