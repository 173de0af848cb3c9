from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from retort.repos.context_stage_repo import DEFAULT_STAGE, ContextStageRepo
from retort.repos.message_repo import MessageRepo
from retort.repos.tag_repo import TagRepo
from retort.schemas.context import MessageMetadata, PreparedContext, parse_message_metadata

logger = logging.getLogger(__name__)


@dataclass
class ResolvedContext:
    """Inherited and prepared context for one turn and their merge."""

    inherited: MessageMetadata = field(default_factory=MessageMetadata)
    prepared: PreparedContext = field(default_factory=PreparedContext)
    files: dict[str, bool] = field(default_factory=dict)

    def read_write_paths(self) -> list[str]:
        return [path for path, read_only in self.files.items() if not read_only]

    def read_only_paths(self) -> list[str]:
        return [path for path, read_only in self.files.items() if read_only]


def merge_context(inherited: MessageMetadata, prepared: PreparedContext) -> dict[str, bool]:
    """Merge inherited and prepared context into ``path -> is_read_only``.

    Prepared entries always win. Any path the stage touched, dropped ones
    included, is never brought back from inheritance. Keys are returned in
    lexicographic order.
    """

    merged: dict[str, bool] = {}
    for path in prepared.read_write_files:
        merged[path] = False
    for path in prepared.read_only_files:
        merged[path] = True

    touched = prepared.touched()
    for ref in inherited.read_write_files:
        if ref.path not in touched:
            merged.setdefault(ref.path, False)
    for ref in inherited.read_only_files:
        if ref.path not in touched:
            merged.setdefault(ref.path, True)

    return {path: merged[path] for path in sorted(merged)}


def stage_file(stage: PreparedContext, path: str, read_only: bool) -> PreparedContext:
    """Return ``stage`` with ``path`` added to the requested visibility list."""

    read_write = list(stage.read_write_files)
    read_only_files = list(stage.read_only_files)
    dropped = [item for item in stage.dropped_files if item != path]
    if read_only:
        read_write = [item for item in read_write if item != path]
        if path not in read_only_files:
            read_only_files.append(path)
    else:
        read_only_files = [item for item in read_only_files if item != path]
        if path not in read_write:
            read_write.append(path)
    return PreparedContext(
        read_write_files=read_write,
        read_only_files=read_only_files,
        dropped_files=dropped,
    )


def drop_file(stage: PreparedContext, path: str) -> PreparedContext:
    """Return ``stage`` with ``path`` removed and excluded from inheritance."""

    dropped = list(stage.dropped_files)
    if path not in dropped:
        dropped.append(path)
    return PreparedContext(
        read_write_files=[item for item in stage.read_write_files if item != path],
        read_only_files=[item for item in stage.read_only_files if item != path],
        dropped_files=dropped,
    )


class ContextStageService:
    """Resolve and edit the file context sent with each turn."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def inherited_context(self, parent_id: Optional[int]) -> MessageMetadata:
        """Return the context recorded for the exchange that ``parent_id`` closes.

        ``parent_id`` is normally the previous assistant message; the snapshot
        lives on its parent, the user message of the same turn.
        """

        if parent_id is None:
            return MessageMetadata()
        async with self._sessionmaker() as db:
            repo = MessageRepo(db)
            user_message_id = await repo.get_parent_id(parent_id)
            if user_message_id is None:
                return MessageMetadata()
            return parse_message_metadata(await repo.get_metadata(user_message_id))

    async def inherited_for_tag(self, tag: Optional[str]) -> MessageMetadata:
        """Return the inherited context of the chat a tag points at."""

        if not tag:
            return MessageMetadata()
        async with self._sessionmaker() as db:
            message_id = await TagRepo(db).get_message_id(tag)
        return await self.inherited_context(message_id)

    async def get_stage(self, stage_name: str = DEFAULT_STAGE) -> PreparedContext:
        async with self._sessionmaker() as db:
            return await ContextStageRepo(db).get_stage(stage_name)

    async def resolve_context(
        self,
        parent_id: Optional[int],
        ignore_inherited: bool = False,
        stage_name: str = DEFAULT_STAGE,
    ) -> ResolvedContext:
        """Compute the files visible to the model for the next turn."""

        inherited = MessageMetadata()
        if not ignore_inherited:
            inherited = await self.inherited_context(parent_id)
        prepared = await self.get_stage(stage_name)
        files = merge_context(inherited, prepared)
        logger.debug(
            "Resolved context for parent %s: %d inherited, %d files",
            parent_id,
            len(inherited.read_write_files) + len(inherited.read_only_files),
            len(files),
        )
        return ResolvedContext(inherited=inherited, prepared=prepared, files=files)

    async def add_file(
        self, path: str, read_only: bool = False, stage_name: str = DEFAULT_STAGE
    ) -> PreparedContext:
        """Stage a file as read-write or read-only."""

        async with self._sessionmaker() as db:
            repo = ContextStageRepo(db)
            async with db.begin():
                stage = stage_file(await repo.get_stage(stage_name), path, read_only)
                await repo.save_stage(stage_name, stage)
            return stage

    async def remove_file(self, path: str, stage_name: str = DEFAULT_STAGE) -> PreparedContext:
        """Unstage a file and keep it out of the inherited context."""

        async with self._sessionmaker() as db:
            repo = ContextStageRepo(db)
            async with db.begin():
                stage = drop_file(await repo.get_stage(stage_name), path)
                await repo.save_stage(stage_name, stage)
            return stage

    async def clear(self, stage_name: str = DEFAULT_STAGE) -> None:
        async with self._sessionmaker() as db:
            async with db.begin():
                await ContextStageRepo(db).clear_stage(stage_name)
