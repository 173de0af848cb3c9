from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from retort.db.models import Profile

DEFAULT_PROFILE = "default"


class ProfileRepo:
    """Repository for profile persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_by_name(self, name: str = DEFAULT_PROFILE) -> Optional[Profile]:
        result = await self._db.execute(select(Profile).where(Profile.name == name))
        return result.scalar_one_or_none()

    async def get_or_create(self, name: str = DEFAULT_PROFILE) -> Profile:
        """Fetch a profile, creating an empty one on first access."""

        profile = await self.get_by_name(name)
        if profile:
            return profile
        created = Profile(name=name, active_chat_tag=None, project_root=None)
        self._db.add(created)
        await self._db.flush()
        return created

    async def upsert_profile(
        self,
        name: str = DEFAULT_PROFILE,
        *,
        active_chat_tag: Optional[str] = None,
        project_root: Optional[str] = None,
    ) -> Profile:
        """Insert or update the given profile fields."""

        profile = await self.get_or_create(name)
        if active_chat_tag is not None:
            profile.active_chat_tag = active_chat_tag
        if project_root is not None:
            profile.project_root = project_root
        await self._db.flush()
        return profile
