from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from retort.db.models import ChatTag


class TagRepo:
    """Repository for chat tag bindings."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_message_id(self, tag: str) -> Optional[int]:
        """Return the message a tag points to, if the tag exists."""

        result = await self._db.execute(select(ChatTag.message_id).where(ChatTag.tag == tag))
        return result.scalar_one_or_none()

    async def set_tag(self, tag: str, message_id: int) -> ChatTag:
        """Point ``tag`` at ``message_id``, creating or moving it."""

        result = await self._db.execute(select(ChatTag).where(ChatTag.tag == tag))
        existing = result.scalar_one_or_none()
        if existing:
            existing.message_id = message_id
            await self._db.flush()
            return existing
        created = ChatTag(tag=tag, message_id=message_id)
        self._db.add(created)
        await self._db.flush()
        return created

    async def delete_tag(self, tag: str) -> Optional[int]:
        """Delete a tag and return the message it pointed to."""

        message_id = await self.get_message_id(tag)
        if message_id is not None:
            await self._db.execute(delete(ChatTag).where(ChatTag.tag == tag))
            await self._db.flush()
        return message_id

    async def list_tags(self) -> List[ChatTag]:
        result = await self._db.execute(select(ChatTag).order_by(ChatTag.tag.asc()))
        return list(result.scalars())
