"""Profile model: display and authorization data keyed by identity-provider user id."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, String

from livechat.db import Base
from livechat.models.mixins import TimestampMixin


class Profile(Base, TimestampMixin):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    username = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
