"""HTTP client for the Cloud Functions backend.

Every response uses the envelope ``{success, data?, error?, message?}``. A
failure at either layer (transport or ``success: false``) becomes an ApiError
carrying the server's message or the caller's fallback text.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import requests

from sprintify.errors import ApiError, AuthError, AuthenticationError

log = logging.getLogger(__name__)


def handle_api_error(message: str) -> str:
    """Translate a transport error message into something a user can act on."""
    message = message or ""
    if "Network" in message:
        return "Network connection failed, please check your connection"
    if "401" in message:
        return "Authentication failed, please sign in again"
    if "403" in message:
        return "You do not have permission to do that"
    if "404" in message:
        return "The requested resource does not exist"
    if "429" in message:
        return "Too many requests, please try again later"
    if "500" in message:
        return "Server error, please try again later"
    return message or "Unknown error"


class ApiClient:
    def __init__(self, base_url, auth, timeout=10, session=None, sleep=time.sleep,
                 auth_wait_timeout=10, token_retries=3, retry_delay=1):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep
        self.auth_wait_timeout = auth_wait_timeout
        self.token_retries = max(1, token_retries)
        self.retry_delay = retry_delay

    def get_auth_headers(self) -> Dict[str, str]:
        """Bearer header for the signed-in user.

        The auth SDK may still be restoring the session when the first request
        fires, so this waits (bounded) for the auth state, then polls for a
        user up to ``token_retries`` times before giving up.
        """
        if not self.auth.wait_for_auth_state(self.auth_wait_timeout):
            log.warning("Auth state not settled after %ss, continuing", self.auth_wait_timeout)

        user = None
        for attempt in range(1, self.token_retries + 1):
            user = self.auth.current_user
            if user is not None:
                break
            if attempt < self.token_retries:
                log.debug("No signed-in user yet (attempt %d/%d)", attempt, self.token_retries)
                self.sleep(self.retry_delay)
        if user is None:
            log.error("No signed-in user after %d attempts", self.token_retries)
            raise AuthenticationError("You are not signed in, please sign in and try again")

        try:
            token = self.auth.get_id_token(force_refresh=True)
        except AuthError as exc:
            raise AuthenticationError(exc.message) from exc
        if not token:
            raise AuthenticationError("Could not obtain an authentication token")
        return {"Authorization": f"Bearer {token}"}

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                json: Any = None, fallback: str = "Request failed") -> Dict[str, Any]:
        headers = self.get_auth_headers()
        url = f"{self.base_url}{path}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = self.session.request(
                method, url, params=params or None, json=json, headers=headers, timeout=self.timeout
            )
        except requests.Timeout as exc:
            log.error("%s %s timed out", method, path)
            raise ApiError("Request timed out") from exc
        except requests.RequestException as exc:
            log.error("%s %s failed: %s", method, path, exc)
            raise ApiError(handle_api_error(f"Network error: {exc}")) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {}

        message = payload.get("error") or payload.get("message")
        if response.status_code >= 400:
            log.warning("%s %s -> HTTP %s: %s", method, path, response.status_code, message)
            raise ApiError(message or fallback, response.status_code)
        if not payload.get("success"):
            log.warning("%s %s -> unsuccessful response: %s", method, path, message)
            raise ApiError(message or fallback, response.status_code)
        return payload

    def get(self, path, params=None, fallback="Request failed"):
        return self.request("GET", path, params=params, fallback=fallback)

    def post(self, path, json=None, fallback="Request failed"):
        return self.request("POST", path, json=json if json is not None else {}, fallback=fallback)

    def put(self, path, json=None, fallback="Request failed"):
        return self.request("PUT", path, json=json, fallback=fallback)

    def delete(self, path, json=None, fallback="Request failed"):
        return self.request("DELETE", path, json=json, fallback=fallback)
