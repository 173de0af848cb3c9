from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from retort.core.errors import InvalidRequestError, NotFoundError
from retort.db.models import Message
from retort.repos.message_repo import LeafMessage, MessageRepo
from retort.repos.tag_repo import TagRepo


@dataclass
class ChatSummary:
    """A leaf together with the preview shown in chat listings."""

    leaf: LeafMessage
    preview: str


class HistoryService:
    """Read-side queries over the message tree."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def ancestors(self, leaf_id: int) -> list[Message]:
        """Return the conversation ending at ``leaf_id``, root first."""

        async with self._sessionmaker() as db:
            repo = MessageRepo(db)
            if not await repo.message_exists(leaf_id):
                raise NotFoundError(f"Message with ID '{leaf_id}' not found.")
            return await repo.list_ancestors(leaf_id)

    async def leaves(self) -> list[LeafMessage]:
        """Return every conversation tip, newest first."""

        async with self._sessionmaker() as db:
            return await MessageRepo(db).list_leaves()

    async def list_chats(self) -> list[ChatSummary]:
        """Return leaves with the last user message of each branch as preview."""

        summaries = []
        async with self._sessionmaker() as db:
            repo = MessageRepo(db)
            for leaf in await repo.list_leaves():
                history = await repo.list_ancestors(leaf.id)
                last_user = next(
                    (message for message in reversed(history) if message.role == "user"),
                    None,
                )
                preview = last_user.content if last_user else leaf.content
                summaries.append(ChatSummary(leaf=leaf, preview=preview))
        return summaries

    async def resolve_target(
        self,
        target: Optional[str],
        *,
        as_tag: bool = False,
        as_message: bool = False,
        active_tag: Optional[str] = None,
    ) -> int:
        """Resolve a history target (tag, message id or active tag) to a message id."""

        if as_tag and as_message:
            raise InvalidRequestError("Invalid combination of arguments for history command.")

        async with self._sessionmaker() as db:
            tag_repo = TagRepo(db)
            message_repo = MessageRepo(db)

            if target is None:
                if as_tag or as_message:
                    raise InvalidRequestError(
                        "Invalid combination of arguments for history command."
                    )
                if not active_tag:
                    raise NotFoundError(
                        "No active chat tag set. Use `retort profile --active-chat <tag>`."
                    )
                message_id = await tag_repo.get_message_id(active_tag)
                if message_id is None:
                    raise NotFoundError(
                        f"Active chat tag '{active_tag}' does not point to a valid message."
                    )
                return message_id

            if as_message:
                try:
                    message_id = int(target)
                except ValueError as exc:
                    raise InvalidRequestError(f"'{target}' is not a valid message ID.") from exc
                if not await message_repo.message_exists(message_id):
                    raise NotFoundError(f"Message with ID '{message_id}' not found.")
                return message_id

            message_id = await tag_repo.get_message_id(target)
            if message_id is None:
                raise NotFoundError(f"Tag '{target}' not found.")
            return message_id
