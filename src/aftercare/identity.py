"""Identity — sign-in against the aftercare API and local token keeping.

The bearer token and the signed-in user are kept in the profile key/value
store under reserved keys, next to (but never colliding with) the record
collections. Credentials are never logged.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from aftercare.models import AuthResponse, User
from aftercare.storage import KeyValueStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth_token"
USER_KEY = "user_data"

LOGIN_PATH = "/auth/login"
SIGNUP_PATH = "/auth/signup"
PASSWORD_RESET_PATH = "/auth/forgot-password"


class AuthError(Exception):
    """Raised when a sign-in, sign-up or reset request is rejected or unreachable."""


class IdentityService:
    """Issues and remembers the bearer token used by the remote backend.

    Args:
        store: Profile key/value store holding the token and user.
        client: HTTP client rooted at the API base URL. Without one, only the
            locally stored identity is available and sign-in raises AuthError.
    """

    def __init__(self, store: KeyValueStore, client: httpx.AsyncClient | None = None):
        self._store = store
        self._client = client

    async def _post(self, path: str, payload: dict[str, Any], action: str) -> Any:
        if self._client is None:
            raise AuthError(f"Cannot {action}: no API URL is configured")
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise AuthError(f"Cannot {action}: {exc}") from exc

        if not response.is_success:
            message = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get("message") or body.get("error")
            except ValueError:
                pass
            raise AuthError(message or f"Failed to {action} (HTTP {response.status_code})")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise AuthError(f"Failed to {action}: response is not valid JSON") from exc

    def _remember(self, body: Any, action: str) -> AuthResponse:
        try:
            auth = AuthResponse.model_validate(body)
        except ValidationError as exc:
            raise AuthError(f"Failed to {action}: unexpected response") from exc
        self._store.set_item(TOKEN_KEY, auth.token)
        self._store.set_item(USER_KEY, auth.user.model_dump_json(by_alias=True))
        logger.info("Signed in as user %s", auth.user.id)
        return auth

    async def login(self, email: str, password: str) -> AuthResponse:
        body = await self._post(LOGIN_PATH, {"email": email, "password": password}, "log in")
        return self._remember(body, "log in")

    async def signup(self, email: str, password: str, name: str) -> AuthResponse:
        body = await self._post(
            SIGNUP_PATH, {"email": email, "password": password, "name": name}, "sign up"
        )
        return self._remember(body, "sign up")

    async def request_password_reset(self, email: str) -> None:
        await self._post(PASSWORD_RESET_PATH, {"email": email}, "request a password reset")

    def current_user(self) -> User | None:
        """Return the signed-in user, or None unless both token and user are stored."""
        token = self._store.get_item(TOKEN_KEY)
        raw_user = self._store.get_item(USER_KEY)
        if not token or not raw_user:
            return None
        try:
            return User.model_validate_json(raw_user)
        except ValidationError:
            logger.warning("Stored user record is invalid; treating as signed out")
            return None

    def get_token(self) -> str | None:
        return self._store.get_item(TOKEN_KEY) or None

    def logout(self) -> None:
        self._store.remove_item(TOKEN_KEY)
        self._store.remove_item(USER_KEY)
