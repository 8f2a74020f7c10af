"""
Identity resolution for a browser context.

Exactly one identity is active per context: the authenticated user when the
identity provider reports one, otherwise an anonymous session id that is
generated once and persisted for reuse across visits.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Literal, Optional, Protocol, Union

from livechat.core.scope_key import ScopeKey
from livechat.infra.logging_config import get_logger
from livechat.schemas.auth import AuthMode, AuthUser

logger = get_logger("identity")

ANONYMOUS_SESSION_KEY = "anonymous_session_id"
AUTH_MODE_KEY = "auth_modal_mode"


class SessionStorage(Protocol):
    """Persisted browser state (local storage, cookies)."""

    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class InMemorySessionStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


@dataclass(frozen=True)
class AuthenticatedIdentity:
    user_id: str
    email: Optional[str] = None
    kind: Literal["authenticated"] = "authenticated"

    @property
    def actor_id(self) -> str:
        return self.user_id

    @property
    def scope(self) -> ScopeKey:
        return ScopeKey.for_user(self.user_id)


@dataclass(frozen=True)
class AnonymousIdentity:
    session_id: str
    kind: Literal["anonymous"] = "anonymous"

    @property
    def actor_id(self) -> str:
        return self.session_id

    @property
    def scope(self) -> ScopeKey:
        return ScopeKey.for_session(self.session_id)


Identity = Union[AuthenticatedIdentity, AnonymousIdentity]


class IdentityResolver:
    """Produces the single active identity for the current context."""

    def __init__(
        self,
        current_user: Callable[[], Optional[AuthUser]],
        storage: SessionStorage,
        session_key: str = ANONYMOUS_SESSION_KEY,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._current_user = current_user
        self._storage = storage
        self._session_key = session_key
        self._id_factory = id_factory

    def resolve(self) -> Identity:
        user = self._current_user()
        if user is not None:
            return AuthenticatedIdentity(user_id=user.user_id, email=user.email)
        return AnonymousIdentity(session_id=self.anonymous_session_id())

    def anonymous_session_id(self) -> str:
        """Read the persisted anonymous id, creating it only when absent."""
        session_id = self._storage.get(self._session_key)
        if not session_id:
            session_id = self._id_factory()
            self._storage.set(self._session_key, session_id)
            logger.info("Created anonymous session %s", session_id)
        return session_id


class AuthPreferences:
    """Last-used auth modal mode. UX only; unrelated to conversation state."""

    def __init__(self, storage: SessionStorage, key: str = AUTH_MODE_KEY) -> None:
        self._storage = storage
        self._key = key

    def last_mode(self) -> AuthMode:
        raw = self._storage.get(self._key)
        try:
            return AuthMode(raw) if raw else AuthMode.SIGN_IN
        except ValueError:
            return AuthMode.SIGN_IN

    def remember(self, mode: AuthMode) -> None:
        self._storage.set(self._key, mode.value)
