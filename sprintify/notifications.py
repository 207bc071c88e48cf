"""Push notification routing and reminder scheduling."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from sprintify.data import Sprint, SprintStatus, Task, format_datetime, utcnow

log = logging.getLogger(__name__)

DEFAULT_TITLE = "Sprintify"
DEFAULT_ICON = "/icons/icon-192x192.png"
DEFAULT_BADGE = "/icons/badge-72x72.png"
SNOOZE_SECONDS = 15 * 60
DEADLINE_WINDOW = timedelta(days=3)


class NotificationType(str, Enum):
    DAILY_REMINDER = "daily_reminder"
    DEADLINE_WARNING = "deadline_warning"
    TASK_OVERDUE = "task_overdue"
    MILESTONE_ACHIEVED = "milestone_achieved"
    SPRINT_COMPLETED = "sprint_completed"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


@dataclass
class PushMessage:
    title: str = DEFAULT_TITLE
    body: str = ""
    icon: str = DEFAULT_ICON
    image: Optional[str] = None
    type: Optional[str] = None
    sprint_id: Optional[str] = None
    task_id: Optional[str] = None
    require_interaction: bool = False
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationAction:
    action: str
    title: str


def parse_push_payload(payload: Dict[str, Any]) -> PushMessage:
    """Read an FCM payload (``notification`` + ``data`` blocks) into a message."""
    notification = payload.get("notification") or {}
    data = payload.get("data") or {}
    require = data.get("requireInteraction", False)
    if isinstance(require, str):
        require = require.lower() == "true"
    return PushMessage(
        title=notification.get("title") or DEFAULT_TITLE,
        body=notification.get("body") or "",
        icon=notification.get("icon") or DEFAULT_ICON,
        image=notification.get("image"),
        type=data.get("type"),
        sprint_id=data.get("sprintId"),
        task_id=data.get("taskId"),
        require_interaction=bool(require),
        data=dict(data),
    )


def target_url(message: PushMessage, base_url: str = "/") -> str:
    """Where clicking the notification should take the user."""
    base = base_url.rstrip("/")
    kind = message.type
    if kind == NotificationType.DAILY_REMINDER:
        return f"{base}/today"
    if message.sprint_id:
        if kind in (NotificationType.DEADLINE_WARNING, NotificationType.TASK_OVERDUE):
            return f"{base}/sprints/{message.sprint_id}"
        if kind == NotificationType.MILESTONE_ACHIEVED:
            return f"{base}/sprints/{message.sprint_id}#milestones"
        if kind == NotificationType.SPRINT_COMPLETED:
            return f"{base}/sprints/{message.sprint_id}/summary"
    if kind == NotificationType.ACHIEVEMENT_UNLOCKED:
        return f"{base}/profile/achievements"
    return base_url


def notification_actions(kind: Optional[str]) -> List[NotificationAction]:
    if kind == NotificationType.DAILY_REMINDER:
        return [
            NotificationAction("view", "Start sprint"),
            NotificationAction("snooze", "Remind me later"),
            NotificationAction("dismiss", "Dismiss"),
        ]
    if kind in (NotificationType.DEADLINE_WARNING, NotificationType.TASK_OVERDUE):
        return [
            NotificationAction("view", "View"),
            NotificationAction("complete", "Mark complete"),
            NotificationAction("dismiss", "Dismiss"),
        ]
    if kind in (NotificationType.MILESTONE_ACHIEVED, NotificationType.SPRINT_COMPLETED,
                NotificationType.ACHIEVEMENT_UNLOCKED):
        return [
            NotificationAction("view", "View details"),
            NotificationAction("dismiss", "Got it"),
        ]
    return [NotificationAction("view", "View"), NotificationAction("dismiss", "Dismiss")]


def build_notification_options(message: PushMessage, base_url: str = "/",
                               now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "title": message.title,
        "body": message.body,
        "icon": message.icon,
        "badge": DEFAULT_BADGE,
        "image": message.image,
        "tag": message.type or "general",
        "requireInteraction": message.require_interaction,
        "actions": [{"action": a.action, "title": a.title} for a in notification_actions(message.type)],
        "url": target_url(message, base_url),
        "timestamp": format_datetime(now or utcnow()),
    }


class SnoozeScheduler:
    """Re-deliver snoozed notifications after a delay.

    Each snooze is a daemon ``threading.Timer``; ``cancel_all`` must run on
    teardown so no timer outlives its owner.
    """

    def __init__(self, deliver: Callable[[PushMessage], None], delay: float = SNOOZE_SECONDS):
        self.deliver = deliver
        self.delay = delay
        self._timers: Dict[int, threading.Timer] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    def snooze(self, message: PushMessage) -> int:
        with self._lock:
            self._next_id += 1
            timer_id = self._next_id
            timer = threading.Timer(self.delay, self._fire, args=(timer_id, message))
            timer.daemon = True
            self._timers[timer_id] = timer
        timer.start()
        return timer_id

    def _fire(self, timer_id: int, message: PushMessage) -> None:
        with self._lock:
            self._timers.pop(timer_id, None)
        try:
            self.deliver(message)
        except Exception:
            log.exception("Failed to re-deliver snoozed notification")

    def cancel(self, timer_id: int) -> bool:
        with self._lock:
            timer = self._timers.pop(timer_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    @property
    def pending(self) -> int:
        return len(self._timers)


def deadline_reminders(sprints: Iterable[Sprint], now: Optional[datetime] = None) -> List[PushMessage]:
    now = now or utcnow()
    reminders = []
    for sprint in sprints:
        if sprint.status != SprintStatus.ACTIVE:
            continue
        left = sprint.end_date - now
        if timedelta(0) < left <= DEADLINE_WINDOW:
            days = max(1, left.days + (1 if left.seconds else 0))
            reminders.append(PushMessage(
                title="Sprint deadline approaching",
                body=f'"{sprint.title}" ends in {days} day{"s" if days != 1 else ""}',
                type=NotificationType.DEADLINE_WARNING.value,
                sprint_id=sprint.id,
                require_interaction=True,
            ))
    return reminders


def overdue_tasks(tasks: Iterable[Task], now: Optional[datetime] = None) -> List[PushMessage]:
    now = now or utcnow()
    return [
        PushMessage(
            title="Task overdue",
            body=f'"{task.title}" is past its due date',
            type=NotificationType.TASK_OVERDUE.value,
            sprint_id=task.sprint_id,
            task_id=task.id,
        )
        for task in tasks
        if task.is_overdue(now)
    ]
