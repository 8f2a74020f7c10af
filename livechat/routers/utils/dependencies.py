from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from livechat.adapters.identity_provider import BaseIdentityProvider
from livechat.adapters.sql_store import SqlMessageStore
from livechat.config import Settings, get_settings
from livechat.core.app_state import state
from livechat.core.errors import AuthError
from livechat.core.identity import AuthenticatedIdentity, Identity, IdentityResolver
from livechat.db import get_db
from livechat.schemas.auth import AuthUser
from livechat.services.message_gateway import MessageStoreGateway
from livechat.services.profile_service import ProfileService

ANONYMOUS_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


class CookieSessionStorage:
    """Persisted browser state backed by request/response cookies."""

    def __init__(self, request: Request, response: Response) -> None:
        self._request = request
        self._response = response
        self._written: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._written.get(key) or self._request.cookies.get(key)

    def set(self, key: str, value: str) -> None:
        self._written[key] = value
        self._response.set_cookie(
            key, value, max_age=ANONYMOUS_COOKIE_MAX_AGE, httponly=True, samesite="lax"
        )

    def remove(self, key: str) -> None:
        self._written.pop(key, None)
        self._response.delete_cookie(key)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_identity_provider() -> Optional[BaseIdentityProvider]:
    return state.identity_provider


def get_current_user(
    authorization: Optional[str] = Header(None),
    provider: Optional[BaseIdentityProvider] = Depends(get_identity_provider),
) -> Optional[AuthUser]:
    """FastAPI dependency: the signed-in user, or None for anonymous visitors."""
    token = bearer_token(authorization)
    if token is None:
        return None
    if provider is None:
        raise HTTPException(status_code=401, detail="Authentication is not configured")
    try:
        user = provider.get_user(token)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=e.message) from e
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


def get_identity(
    request: Request,
    response: Response,
    user: Optional[AuthUser] = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> Identity:
    """FastAPI dependency resolving exactly one identity for the caller."""
    resolver = IdentityResolver(
        lambda: user,
        CookieSessionStorage(request, response),
        session_key=settings.anonymous_session_cookie,
    )
    return resolver.resolve()


def require_admin(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> AuthenticatedIdentity:
    """FastAPI dependency for admin-only routes."""
    if not isinstance(identity, AuthenticatedIdentity):
        raise HTTPException(status_code=401, detail="Sign in required")
    if not ProfileService(db).is_admin(identity.user_id):
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


def get_message_store(db: Session = Depends(get_db)) -> SqlMessageStore:
    return SqlMessageStore.for_session(db, state.realtime)


def get_gateway(
    store: SqlMessageStore = Depends(get_message_store),
) -> MessageStoreGateway:
    return MessageStoreGateway(store)
