from __future__ import annotations

from typing import Callable, List, Optional

from livechat.adapters.identity_provider import BaseIdentityProvider
from livechat.core.errors import AuthError
from livechat.infra.logging_config import get_logger
from livechat.schemas.auth import AuthEvent, AuthSession, AuthUser

logger = get_logger("auth")

AuthListener = Callable[[AuthEvent, Optional[AuthSession]], None]


class AuthManager:
    """Tracks the current auth session and notifies listeners on every change."""

    def __init__(self, provider: BaseIdentityProvider) -> None:
        self._provider = provider
        self._session: Optional[AuthSession] = None
        self._listeners: List[AuthListener] = []

    def get_current_session(self) -> Optional[AuthSession]:
        return self._session

    def current_user(self) -> Optional[AuthUser]:
        return self._session.user if self._session else None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def restore(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Load an existing session from a stored token."""
        user = self._provider.get_user(access_token)
        self._session = (
            AuthSession(user=user, access_token=access_token, refresh_token=refresh_token)
            if user
            else None
        )
        self._emit(AuthEvent.INITIAL_SESSION)

    def sign_in(self, email: str, password: str) -> AuthSession:
        session = self._provider.sign_in(email, password)
        self._session = session
        logger.info("User signed in: %s", session.user.email)
        self._emit(AuthEvent.SIGNED_IN)
        return session

    def sign_up(
        self, email: str, password: str, name: Optional[str] = None
    ) -> Optional[AuthSession]:
        session = self._provider.sign_up(email, password, name)
        if session is not None:
            self._session = session
            self._emit(AuthEvent.SIGNED_IN)
        return session

    def sign_out(self) -> None:
        if self._session is None:
            return
        try:
            self._provider.sign_out(self._session.access_token)
        except AuthError:
            logger.warning("Sign out failed for %s", self._session.user.user_id)
            raise
        self._session = None
        logger.info("User signed out")
        self._emit(AuthEvent.SIGNED_OUT)

    def _emit(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            listener(event, self._session)
