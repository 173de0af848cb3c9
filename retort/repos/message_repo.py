from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from retort.db.models import ChatTag, Message
from retort.utils.time_utils import utc_now


@dataclass
class LeafMessage:
    """A conversation tip with the tags bound to it."""

    id: int
    role: str
    content: str
    created_at: datetime
    tags: list[str] = field(default_factory=list)

    @property
    def tag(self) -> Optional[str]:
        return ", ".join(self.tags) if self.tags else None


class MessageRepo:
    """Repository for the append-only message tree."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add_message(
        self,
        parent_id: Optional[int],
        role: str,
        content: str,
        metadata_json: Optional[str] = None,
    ) -> Message:
        """Insert a new message and return it with its assigned id."""

        message = Message(
            parent_id=parent_id,
            role=role,
            content=content,
            metadata_json=metadata_json,
            created_at=utc_now(),
        )
        self._db.add(message)
        await self._db.flush()
        return message

    async def get_message(self, message_id: int) -> Optional[Message]:
        """Fetch a message by ID."""

        result = await self._db.execute(select(Message).where(Message.id == message_id))
        return result.scalar_one_or_none()

    async def message_exists(self, message_id: int) -> bool:
        result = await self._db.execute(select(exists().where(Message.id == message_id)))
        return bool(result.scalar())

    async def get_parent_id(self, message_id: int) -> Optional[int]:
        result = await self._db.execute(select(Message.parent_id).where(Message.id == message_id))
        return result.scalar_one_or_none()

    async def get_metadata(self, message_id: int) -> Optional[str]:
        result = await self._db.execute(
            select(Message.metadata_json).where(Message.id == message_id)
        )
        return result.scalar_one_or_none()

    async def list_ancestors(self, leaf_id: int) -> List[Message]:
        """Return the chain from the root to ``leaf_id``, oldest first.

        The chain is walked by a recursive CTE inside SQLite, so depth does
        not consume Python stack frames.
        """

        chain = (
            select(Message.id, Message.parent_id)
            .where(Message.id == leaf_id)
            .cte("ancestors", recursive=True)
        )
        walked = chain.alias()
        parent = aliased(Message)
        chain = chain.union_all(
            select(parent.id, parent.parent_id).where(parent.id == walked.c.parent_id)
        )
        result = await self._db.execute(
            select(Message)
            .join(chain, Message.id == chain.c.id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        return list(result.scalars())

    async def list_leaves(self) -> List[LeafMessage]:
        """Return childless messages, newest first, annotated with their tags."""

        child = aliased(Message)
        stmt = (
            select(Message, ChatTag.tag)
            .outerjoin(ChatTag, ChatTag.message_id == Message.id)
            .where(~exists().where(child.parent_id == Message.id))
            .order_by(Message.created_at.desc(), Message.id.desc(), ChatTag.tag.asc())
        )
        result = await self._db.execute(stmt)
        leaves: dict[int, LeafMessage] = {}
        for message, tag in result.all():
            leaf = leaves.get(message.id)
            if leaf is None:
                leaf = LeafMessage(
                    id=message.id,
                    role=message.role,
                    content=message.content,
                    created_at=message.created_at,
                )
                leaves[message.id] = leaf
            if tag:
                leaf.tags.append(tag)
        return list(leaves.values())
