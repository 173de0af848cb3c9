from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from retort.core.errors import NotFoundError
from retort.db.models import ChatTag
from retort.repos.message_repo import MessageRepo
from retort.repos.tag_repo import TagRepo


@dataclass
class TagUpdate:
    """Outcome of pointing a tag at a message."""

    tag: str
    message_id: int
    previous_id: Optional[int] = None

    @property
    def created(self) -> bool:
        return self.previous_id is None

    @property
    def unchanged(self) -> bool:
        return self.previous_id == self.message_id


class TagService:
    """Create, move, delete and list chat tags."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def set_tag(self, tag: str, message_id: int) -> TagUpdate:
        async with self._sessionmaker() as db:
            message_repo = MessageRepo(db)
            tag_repo = TagRepo(db)
            async with db.begin():
                if not await message_repo.message_exists(message_id):
                    raise NotFoundError(f"Message with ID '{message_id}' not found.")
                previous_id = await tag_repo.get_message_id(tag)
                if previous_id != message_id:
                    await tag_repo.set_tag(tag, message_id)
            return TagUpdate(tag=tag, message_id=message_id, previous_id=previous_id)

    async def delete_tag(self, tag: str) -> Optional[int]:
        """Delete ``tag`` and return the id it pointed to, or None if unknown."""

        async with self._sessionmaker() as db:
            async with db.begin():
                return await TagRepo(db).delete_tag(tag)

    async def list_tags(self) -> list[ChatTag]:
        async with self._sessionmaker() as db:
            return await TagRepo(db).list_tags()
