"""Profile lookups used for display names and the admin-write policy."""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session as DBSession

from livechat.models.profile import Profile


class ProfileService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.db.query(Profile).filter(Profile.id == user_id).first()

    def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, Profile]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        rows = self.db.query(Profile).filter(Profile.id.in_(ids)).all()
        return {p.id: p for p in rows}

    def is_admin(self, user_id: str) -> bool:
        profile = self.get_profile(user_id)
        return bool(profile and profile.is_admin)

    def upsert_profile(
        self,
        user_id: str,
        username: Optional[str] = None,
        name: Optional[str] = None,
        is_admin: bool = False,
    ) -> Profile:
        profile = self.get_profile(user_id)
        if profile is None:
            profile = Profile(id=user_id)
            self.db.add(profile)
        profile.username = username
        profile.name = name
        profile.is_admin = is_admin
        self.db.commit()
        self.db.refresh(profile)
        return profile
