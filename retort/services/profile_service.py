from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from retort.core.errors import NotFoundError
from retort.db.models import Profile
from retort.repos.profile_repo import DEFAULT_PROFILE, ProfileRepo

logger = logging.getLogger(__name__)


class ProfileService:
    """Read and update the active profile."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        profile_name: str = DEFAULT_PROFILE,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._profile_name = profile_name

    async def get_profile(self) -> Profile:
        """Return the active profile, creating it on first access."""

        async with self._sessionmaker() as db:
            async with db.begin():
                return await ProfileRepo(db).get_or_create(self._profile_name)

    async def set_active_chat(self, tag: str) -> Profile:
        async with self._sessionmaker() as db:
            async with db.begin():
                return await ProfileRepo(db).upsert_profile(
                    self._profile_name, active_chat_tag=tag
                )

    async def set_project_root(self, path: str) -> Path:
        """Store the canonical form of ``path`` as the project root."""

        try:
            canonical = Path(path).expanduser().resolve(strict=True)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Project root {path} does not exist.") from exc
        async with self._sessionmaker() as db:
            async with db.begin():
                await ProfileRepo(db).upsert_profile(
                    self._profile_name, project_root=str(canonical)
                )
        logger.info("Project root set to %s", canonical)
        return canonical
