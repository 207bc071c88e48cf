"""Form validation helpers.

Each helper returns a ValidationResult instead of raising, so the caller decides
how to show the errors (flash messages, WTForms field errors, JSON).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from sprintify.data import parse_datetime, utcnow

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

MAX_SPRINT_TITLE = 100
MAX_TASK_TITLE = 200
MAX_DESCRIPTION = 1000
MAX_TAG_LENGTH = 20
MAX_TAGS = 10
MAX_ESTIMATE_MINUTES = 24 * 60


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def __bool__(self) -> bool:
        return self.is_valid


@dataclass
class FormValidation:
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def is_valid_password(password: str) -> ValidationResult:
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one digit")
    return ValidationResult(errors)


def is_valid_username(username: str) -> ValidationResult:
    errors = []
    if len(username) < 3:
        errors.append("Username must be at least 3 characters long")
    if len(username) > 20:
        errors.append("Username cannot be longer than 20 characters")
    if not USERNAME_RE.match(username):
        errors.append("Username may only contain letters, digits, underscores and hyphens")
    return ValidationResult(errors)


def _valid_title(title: str, label: str, limit: int) -> ValidationResult:
    errors = []
    if not (title or "").strip():
        errors.append(f"{label} cannot be empty")
    if len(title or "") > limit:
        errors.append(f"{label} cannot be longer than {limit} characters")
    return ValidationResult(errors)


def is_valid_sprint_title(title: str) -> ValidationResult:
    return _valid_title(title, "Sprint title", MAX_SPRINT_TITLE)


def is_valid_task_title(title: str) -> ValidationResult:
    return _valid_title(title, "Task title", MAX_TASK_TITLE)


def is_valid_description(description: Optional[str]) -> ValidationResult:
    if len(description or "") > MAX_DESCRIPTION:
        return ValidationResult([f"Description cannot be longer than {MAX_DESCRIPTION} characters"])
    return ValidationResult([])


def _to_datetime(value: Any) -> Optional[datetime]:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        return None


def is_valid_date(value: Any) -> bool:
    return _to_datetime(value) is not None


def is_future_date(value: Any, now: Optional[datetime] = None) -> bool:
    dt = _to_datetime(value)
    return dt is not None and dt > (now or utcnow())


def is_valid_date_range(start: Any, end: Any) -> ValidationResult:
    errors = []
    start_dt, end_dt = _to_datetime(start), _to_datetime(end)
    if start_dt is None:
        errors.append("Start date is not a valid date")
    if end_dt is None:
        errors.append("End date is not a valid date")
    if start_dt is not None and end_dt is not None and start_dt >= end_dt:
        errors.append("End date must be after the start date")
    return ValidationResult(errors)


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except (TypeError, ValueError):
        return False
    return bool(parsed.scheme and parsed.netloc)


def is_valid_time_estimate(minutes: int) -> ValidationResult:
    errors = []
    if minutes < 0:
        errors.append("Time estimate cannot be negative")
    if minutes > MAX_ESTIMATE_MINUTES:
        errors.append("Time estimate cannot exceed 24 hours")
    return ValidationResult(errors)


def is_valid_tag(tag: str) -> ValidationResult:
    errors = []
    if not (tag or "").strip():
        errors.append("Tag cannot be empty")
    if len(tag or "") > MAX_TAG_LENGTH:
        errors.append(f"Tag cannot be longer than {MAX_TAG_LENGTH} characters")
    # letters of any script are allowed
    if tag and not all(ch.isalnum() or ch in "_-" for ch in tag):
        errors.append("Tags may only contain letters, digits, underscores and hyphens")
    return ValidationResult(errors)


def validate_tags(tags: Iterable[str]) -> ValidationResult:
    tags = list(tags)
    errors = []
    if len(tags) > MAX_TAGS:
        errors.append(f"No more than {MAX_TAGS} tags are allowed")
    if len(set(tags)) != len(tags):
        errors.append("Tags must be unique")
    for tag in tags:
        errors.extend(is_valid_tag(tag).errors)
    return ValidationResult(errors)


def parse_tags(raw: Optional[str]) -> List[str]:
    """Split a comma separated tag field, dropping blanks."""
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]


def validate_form(data: Dict[str, Any], rules: Dict[str, Callable[[Any], ValidationResult]]) -> FormValidation:
    result = FormValidation()
    for name, rule in rules.items():
        outcome = rule(data.get(name))
        if not outcome.is_valid:
            result.errors[name] = outcome.errors
    return result
