"""Role hierarchy and feature checks.

Roles form a strict total order: normal < premium < admin. Every check is a
pure function over an already-loaded user; a missing or anonymous user fails
every check rather than raising.
"""
from __future__ import annotations

from enum import Enum
from functools import wraps
from typing import Any, Optional, Union

from flask import current_app, redirect, render_template, request, url_for
from flask_login import current_user


class UserType(str, Enum):
    NORMAL = "normal"
    PREMIUM = "premium"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    # str comparison would order these alphabetically, so all four are explicit
    def __lt__(self, other):
        if not isinstance(other, UserType):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, UserType):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, UserType):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, UserType):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def coerce(cls, value: Union["UserType", str, None]) -> Optional["UserType"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


_RANKS = {UserType.NORMAL: 1, UserType.PREMIUM: 2, UserType.ADMIN: 3}
_DISPLAY_NAMES = {UserType.NORMAL: "Normal user", UserType.PREMIUM: "Premium user", UserType.ADMIN: "Administrator"}

FEATURE_PERMISSIONS = {
    "basic_sprint": UserType.NORMAL,
    "ai_generation": UserType.NORMAL,
    "advanced_stats": UserType.PREMIUM,
    "unlimited_ai": UserType.ADMIN,
    "user_management": UserType.ADMIN,
    "system_settings": UserType.ADMIN,
}


def rank(user_type: Union[UserType, str, None]) -> int:
    """Rank of a role; unknown roles rank 0."""
    coerced = UserType.coerce(user_type)
    return coerced.rank if coerced else 0


def check_user_permission(user_type, required_type) -> bool:
    return rank(user_type) >= rank(required_type)


def user_type_display_name(user_type) -> str:
    coerced = UserType.coerce(user_type)
    return coerced.display_name if coerced else "Unknown"


def _user_type_of(user: Any) -> Optional[str]:
    if user is None or not getattr(user, "is_authenticated", True):
        return None
    return getattr(user, "user_type", None)


def has_permission(user: Any, required_type=UserType.NORMAL) -> bool:
    user_type = _user_type_of(user)
    if user_type is None:
        return False
    return check_user_permission(user_type, required_type)


def is_admin(user: Any) -> bool:
    return has_permission(user, UserType.ADMIN)


def is_premium(user: Any) -> bool:
    return has_permission(user, UserType.PREMIUM)


def required_type_for(feature: str) -> UserType:
    return FEATURE_PERMISSIONS.get(feature, UserType.NORMAL)


def can_use_feature(user: Any, feature: str) -> bool:
    return has_permission(user, required_type_for(feature))


def can_generate_plan(user: Any, usage: Any) -> bool:
    """Whether ``user`` may run another AI plan generation today."""
    if not can_use_feature(user, "ai_generation"):
        return False
    if can_use_feature(user, "unlimited_ai") or usage.limit < 0:
        return True
    return usage.count < usage.limit


def _guard(required: UserType, feature: Optional[str] = None):
    return render_template(
        "guard.html",
        required=required,
        feature=feature,
        show_upgrade=getattr(current_user, "user_type", None) != UserType.ADMIN.value,
    ), 403


def permission_required(required_type=UserType.NORMAL):
    """View decorator: anonymous users go to login, others see a guard page."""
    required = UserType(required_type)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return redirect(url_for(current_app.login_manager.login_view, next=request.path))
            if not has_permission(current_user, required):
                return _guard(required)
            return view(*args, **kwargs)
        return wrapped
    return decorator


def feature_required(feature: str):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return redirect(url_for(current_app.login_manager.login_view, next=request.path))
            if not can_use_feature(current_user, feature):
                return _guard(required_type_for(feature), feature)
            return view(*args, **kwargs)
        return wrapped
    return decorator
