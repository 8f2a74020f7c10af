"""Identity provider contracts."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AuthUser(BaseModel):
    """The only identity-provider data the messaging core relies on."""

    user_id: str
    email: Optional[str] = None


class AuthSession(BaseModel):
    user: AuthUser
    access_token: str
    refresh_token: Optional[str] = None


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


class AuthMode(str, Enum):
    SIGN_IN = "signin"
    SIGN_UP = "signup"


class SignInRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(SignInRequest):
    name: Optional[str] = None
