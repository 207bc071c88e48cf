"""Firebase Authentication over its REST endpoints.

Identity (sign-in, sign-up, token issuance) belongs to Firebase; this module only
holds the signed-in user for one browser session and hands out ID tokens.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests

from sprintify.errors import AuthError

log = logging.getLogger(__name__)

IDENTITY_TOOLKIT = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN = "https://securetoken.googleapis.com/v1"

# refresh a little before Firebase's one hour expiry
EXPIRY_MARGIN = 60


@dataclass
class AuthUser:
    uid: str
    email: str
    refresh_token: str
    id_token: Optional[str] = None
    display_name: Optional[str] = None
    expires_at: float = 0.0


class FirebaseAuth:
    """Auth state for one session.

    ``wait_for_auth_state`` blocks until the state has been resolved once (a
    sign-in, a restored session or an explicit sign-out). Listeners registered
    with ``on_auth_state_changed`` are called with the user (or None) on every
    change.
    """

    def __init__(self, api_key, session=None, emulator_host=None, timeout=10, clock=time.time):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self.clock = clock
        if emulator_host:
            self.identity_url = f"http://{emulator_host}/identitytoolkit.googleapis.com/v1"
            self.token_url = f"http://{emulator_host}/securetoken.googleapis.com/v1"
        else:
            self.identity_url = IDENTITY_TOOLKIT
            self.token_url = SECURE_TOKEN
        self._user: Optional[AuthUser] = None
        self._settled = threading.Event()
        self._listeners: List[Callable[[Optional[AuthUser]], None]] = []
        self._lock = threading.Lock()

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._user

    @property
    def is_settled(self) -> bool:
        return self._settled.is_set()

    def wait_for_auth_state(self, timeout: Optional[float] = None) -> bool:
        """Return True once the auth state is known, False if the wait timed out."""
        if self._settled.is_set():
            return True
        return self._settled.wait(timeout)

    def on_auth_state_changed(self, callback: Callable[[Optional[AuthUser]], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)
        return unsubscribe

    def _set_user(self, user: Optional[AuthUser]) -> None:
        self._user = user
        self._settled.set()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(user)
            except Exception:
                log.exception("Auth state listener failed")

    def mark_signed_out(self) -> None:
        self._set_user(None)

    def _post(self, url: str, **kwargs) -> dict:
        try:
            response = self.session.post(url, params={"key": self.api_key}, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            log.error("Firebase auth request failed: %s", exc)
            raise AuthError("NETWORK_ERROR", "Could not reach the sign-in service") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 400:
            code = (payload.get("error") or {}).get("message", f"HTTP_{response.status_code}")
            log.warning("Firebase auth rejected request: %s", code)
            raise AuthError(code)
        return payload

    def _user_from_identity(self, payload: dict) -> AuthUser:
        return AuthUser(
            uid=payload["localId"],
            email=payload.get("email", ""),
            display_name=payload.get("displayName") or None,
            id_token=payload["idToken"],
            refresh_token=payload["refreshToken"],
            expires_at=self.clock() + int(payload.get("expiresIn", 3600)),
        )

    def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        payload = self._post(
            f"{self.identity_url}/accounts:signInWithPassword",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        user = self._user_from_identity(payload)
        self._set_user(user)
        log.info("Signed in %s", user.uid)
        return user

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> AuthUser:
        payload = self._post(
            f"{self.identity_url}/accounts:signUp",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        user = self._user_from_identity(payload)
        if display_name:
            self._post(
                f"{self.identity_url}/accounts:update",
                json={"idToken": user.id_token, "displayName": display_name, "returnSecureToken": False},
            )
            user.display_name = display_name
        self._set_user(user)
        log.info("Registered %s", user.uid)
        return user

    def send_password_reset(self, email: str) -> None:
        self._post(f"{self.identity_url}/accounts:sendOobCode", json={"requestType": "PASSWORD_RESET", "email": email})

    def restore(self, uid: str, email: str, refresh_token: Optional[str], display_name: Optional[str] = None) -> None:
        """Resume a session from a stored refresh token; the ID token is fetched lazily."""
        if not refresh_token:
            self.mark_signed_out()
            return
        self._set_user(AuthUser(uid=uid, email=email, refresh_token=refresh_token, display_name=display_name))

    def sign_out(self) -> None:
        self.mark_signed_out()

    def get_id_token(self, force_refresh: bool = False) -> str:
        user = self._user
        if user is None:
            raise AuthError("NO_USER", "No user is signed in")
        if force_refresh or not user.id_token or self.clock() >= user.expires_at - EXPIRY_MARGIN:
            payload = self._post(
                f"{self.token_url}/token",
                data={"grant_type": "refresh_token", "refresh_token": user.refresh_token},
            )
            user.id_token = payload["id_token"]
            user.refresh_token = payload.get("refresh_token", user.refresh_token)
            user.expires_at = self.clock() + int(payload.get("expires_in", 3600))
        return user.id_token
