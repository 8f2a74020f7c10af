"""Auth API: thin pass-through to the hosted identity provider."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from pydantic import BaseModel

from livechat.adapters.identity_provider import BaseIdentityProvider
from livechat.commands.base import http_exception_for
from livechat.config import Settings, get_settings
from livechat.core.auth import AuthManager
from livechat.core.errors import AuthError
from livechat.core.identity import AuthPreferences
from livechat.routers.utils.dependencies import (
    CookieSessionStorage,
    bearer_token,
    get_current_user,
    get_identity_provider,
)
from livechat.schemas.auth import (
    AuthMode,
    AuthSession,
    AuthUser,
    SignInRequest,
    SignUpRequest,
)

auth_router = APIRouter(prefix="/auth", tags=["Auth"])


class AuthPreferencesBody(BaseModel):
    mode: AuthMode


def _auth_manager(
    provider: Optional[BaseIdentityProvider] = Depends(get_identity_provider),
) -> AuthManager:
    if provider is None:
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    return AuthManager(provider)


def _preferences(
    request: Request, response: Response, settings: Settings
) -> AuthPreferences:
    return AuthPreferences(
        CookieSessionStorage(request, response), key=settings.auth_mode_cookie
    )


@auth_router.post("/sign-in", response_model=AuthSession)
def sign_in(
    body: SignInRequest,
    request: Request,
    response: Response,
    manager: AuthManager = Depends(_auth_manager),
    settings: Settings = Depends(get_settings),
) -> AuthSession:
    try:
        session = manager.sign_in(body.email, body.password)
    except AuthError as e:
        raise http_exception_for(e) from e
    _preferences(request, response, settings).remember(AuthMode.SIGN_IN)
    return session


@auth_router.post("/sign-up", response_model=dict[str, Any], status_code=201)
def sign_up(
    body: SignUpRequest,
    request: Request,
    response: Response,
    manager: AuthManager = Depends(_auth_manager),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Create an account. session is null while email confirmation is pending."""
    try:
        session = manager.sign_up(body.email, body.password, body.name)
    except AuthError as e:
        raise http_exception_for(e) from e
    _preferences(request, response, settings).remember(AuthMode.SIGN_UP)
    return {
        "data": {
            "session": session.model_dump() if session else None,
            "confirmation_required": session is None,
        }
    }


@auth_router.post("/sign-out", status_code=204)
def sign_out(
    authorization: Optional[str] = Header(None),
    provider: Optional[BaseIdentityProvider] = Depends(get_identity_provider),
) -> Response:
    token = bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Sign in required")
    if provider is None:
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    try:
        provider.sign_out(token)
    except AuthError as e:
        raise http_exception_for(e) from e
    return Response(status_code=204)


@auth_router.get("/session", response_model=Optional[AuthUser])
def current_session(
    user: Optional[AuthUser] = Depends(get_current_user),
) -> Optional[AuthUser]:
    return user


@auth_router.get("/preferences", response_model=AuthPreferencesBody)
def get_preferences(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
) -> AuthPreferencesBody:
    return AuthPreferencesBody(mode=_preferences(request, response, settings).last_mode())


@auth_router.put("/preferences", response_model=AuthPreferencesBody)
def set_preferences(
    body: AuthPreferencesBody,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
) -> AuthPreferencesBody:
    _preferences(request, response, settings).remember(body.mode)
    return body
