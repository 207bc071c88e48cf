"""SQLite helpers for the local copy of sprints and user settings."""
from __future__ import annotations

import json
import logging
from datetime import timezone
from typing import Any, Dict, Iterable, List, Optional

from sprintify.data import Sprint
from sprintify.models import CachedSprint, User, UserSettings, db

log = logging.getLogger(__name__)

# camelCase settings key -> UserSettings column
NOTIFICATION_FIELDS = {
    "email": "email_notifications",
    "push": "push_notifications",
    "dailyReminder": "daily_reminder",
    "deadlineReminder": "deadline_reminder",
    "milestoneReminder": "milestone_reminder",
    "reminderTime": "reminder_time",
}
PREFERENCE_FIELDS = {
    "theme": "theme",
    "language": "language",
    "timezone": "timezone",
    "dateFormat": "date_format",
    "timeFormat": "time_format",
}
DEFAULT_SETTINGS = {
    "email_notifications": True,
    "push_notifications": False,
    "daily_reminder": True,
    "deadline_reminder": True,
    "milestone_reminder": True,
    "reminder_time": "09:00",
    "theme": "system",
    "language": "en-US",
    "timezone": "UTC",
    "date_format": "YYYY-MM-DD",
    "time_format": "24h",
}


def ensure_db(app) -> None:
    """Create tables if they do not exist yet."""
    with app.app_context():
        db.create_all()
    app.logger.info("Local database ready at %s", app.config["SQLALCHEMY_DATABASE_URI"])


def _naive_utc(value):
    if value is None:
        return None
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _aware(value):
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class LocalCache:
    """Reads and writes the local mirror through a SQLAlchemy session."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # users

    def upsert_user(self, uid: str, email: str, display_name: Optional[str] = None,
                    refresh_token: Optional[str] = None, user_type: Optional[str] = None) -> User:
        user = self.session.get(User, uid)
        if user is None:
            user = User(id=uid, email=email)
            self.session.add(user)
        user.email = email
        if display_name:
            user.display_name = display_name
        if refresh_token:
            user.refresh_token = refresh_token
        if user_type:
            user.user_type = user_type
        self.session.commit()
        return user

    def get_user(self, uid: str) -> Optional[User]:
        return self.session.get(User, uid)

    def forget_session(self, uid: str) -> None:
        user = self.session.get(User, uid)
        if user is not None:
            user.refresh_token = None
            self.session.commit()

    # sprints

    def fetch_sprints(self, user_id: str) -> List[Sprint]:
        rows = self.session.query(CachedSprint).filter_by(user_id=user_id).all()
        sprints = [Sprint.from_dict(json.loads(row.payload)) for row in rows]
        return sorted(sprints, key=lambda s: s.start_date, reverse=True)

    def fetch_sprint(self, user_id: str, sprint_id: str) -> Optional[Sprint]:
        row = self.session.query(CachedSprint).filter_by(id=sprint_id, user_id=user_id).first()
        if not row:
            return None
        return Sprint.from_dict(json.loads(row.payload))

    def store_sprint(self, user_id: str, sprint: Sprint, partial: bool = False, local: bool = False) -> Sprint:
        """Write ``sprint`` unless the cached copy is newer; return the copy kept.

        ``partial`` marks documents from list endpoints, which omit tasks and
        milestones; the cached children are kept for those. ``local`` marks an
        edit applied after a successful backend call: it is always written and
        the last server timestamp is left as it was.
        """
        row = self.session.query(CachedSprint).filter_by(id=sprint.id, user_id=user_id).first()
        if row is not None:
            cached = Sprint.from_dict(json.loads(row.payload))
            cached_at = _aware(row.server_updated_at)
            if not local and sprint.updated_at and cached_at and sprint.updated_at < cached_at:
                log.warning(
                    "StaleWriteWarning: sprint %s from server (updated %s) is older than cached copy (updated %s)",
                    sprint.id, sprint.updated_at.isoformat(), cached_at.isoformat(),
                )
                return cached
            if partial and not sprint.tasks and not sprint.milestones:
                sprint.tasks = cached.tasks
                sprint.milestones = cached.milestones
        else:
            row = CachedSprint(id=sprint.id, user_id=user_id)
            self.session.add(row)
        row.payload = json.dumps(sprint.to_dict(include_children=True))
        if not local or row.server_updated_at is None:
            row.server_updated_at = _naive_utc(sprint.updated_at)
        self.session.commit()
        return sprint

    def remove_sprint(self, user_id: str, sprint_id: str) -> bool:
        """Drop a cached sprint. Returns True if a row was deleted."""
        count = self.session.query(CachedSprint).filter_by(id=sprint_id, user_id=user_id).delete()
        self.session.commit()
        return count > 0

    def prune_sprints(self, user_id: str, keep_ids: Iterable[str]) -> int:
        keep = set(keep_ids)
        rows = self.session.query(CachedSprint).filter_by(user_id=user_id).all()
        removed = 0
        for row in rows:
            if row.id not in keep:
                self.session.delete(row)
                removed += 1
        self.session.commit()
        return removed

    # settings

    def get_settings(self, user_id: str) -> UserSettings:
        settings = self.session.get(UserSettings, user_id)
        if settings is None:
            settings = UserSettings(user_id=user_id, **DEFAULT_SETTINGS)
            self.session.add(settings)
            self.session.commit()
        return settings

    def save_settings(self, user_id: str, columns: Dict[str, Any]) -> UserSettings:
        settings = self.get_settings(user_id)
        for column, value in columns.items():
            setattr(settings, column, value)
        self.session.commit()
        return settings

    def reset_settings(self, user_id: str) -> UserSettings:
        return self.save_settings(user_id, DEFAULT_SETTINGS)
