"""
Identity provider adapters.

The core only consumes `{user_id, email} | None`; credentials, tokens and
security policy stay inside the provider.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import requests

from livechat.core.errors import AuthError
from livechat.infra.logging_config import get_logger
from livechat.schemas.auth import AuthSession, AuthUser

logger = get_logger("identity_provider")

TIMEOUT_SECONDS = 10


class BaseIdentityProvider(ABC):
    """Contract for hosted identity providers."""

    @abstractmethod
    def get_user(self, access_token: str) -> Optional[AuthUser]:
        """Return the user behind a token, or None if the token is not valid."""
        ...

    @abstractmethod
    def sign_in(self, email: str, password: str) -> AuthSession:
        """Password sign-in. Raise AuthError on failure."""
        ...

    @abstractmethod
    def sign_up(
        self, email: str, password: str, name: Optional[str] = None
    ) -> Optional[AuthSession]:
        """Create an account. Returns None when email confirmation is pending."""
        ...

    @abstractmethod
    def sign_out(self, access_token: str) -> None:
        """Revoke the session. Raise AuthError on failure."""
        ...


class GoTrueIdentityProvider(BaseIdentityProvider):
    """Identity provider speaking the GoTrue REST API (/auth/v1/*)."""

    def __init__(self, base_url: str, api_key: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    def _headers(self, access_token: Optional[str] = None) -> dict[str, str]:
        headers = {"apikey": self._api_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: Optional[str] = None,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> requests.Response:
        url = f"{self._base_url}/auth/v1{path}"
        try:
            return requests.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(access_token),
                timeout=TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise AuthError("Identity provider unreachable", cause=e) from e

    @staticmethod
    def _error_message(resp: requests.Response, fallback: str) -> str:
        try:
            body = resp.json()
        except ValueError:
            return fallback
        return (
            body.get("error_description")
            or body.get("msg")
            or body.get("message")
            or fallback
        )

    @staticmethod
    def _parse_user(data: dict[str, Any]) -> AuthUser:
        return AuthUser(user_id=str(data["id"]), email=data.get("email"))

    def _parse_session(self, data: dict[str, Any]) -> AuthSession:
        return AuthSession(
            user=self._parse_user(data["user"]),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
        )

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        resp = self._request("GET", "/user", access_token=access_token)
        if resp.status_code in (401, 403):
            return None
        if resp.status_code != 200:
            raise AuthError(self._error_message(resp, "Unable to load session"))
        return self._parse_user(resp.json())

    def sign_in(self, email: str, password: str) -> AuthSession:
        resp = self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code != 200:
            raise AuthError(self._error_message(resp, "Unable to sign in"))
        return self._parse_session(resp.json())

    def sign_up(
        self, email: str, password: str, name: Optional[str] = None
    ) -> Optional[AuthSession]:
        payload: dict[str, Any] = {"email": email, "password": password}
        if name:
            payload["data"] = {"name": name}
        resp = self._request("POST", "/signup", json=payload)
        if resp.status_code not in (200, 201):
            raise AuthError(self._error_message(resp, "Unable to create account"))
        data = resp.json()
        if "access_token" not in data:
            logger.info("Sign-up for %s awaiting email confirmation", email)
            return None
        return self._parse_session(data)

    def sign_out(self, access_token: str) -> None:
        resp = self._request("POST", "/logout", access_token=access_token)
        if resp.status_code not in (200, 204):
            raise AuthError(self._error_message(resp, "Unable to sign out"))
