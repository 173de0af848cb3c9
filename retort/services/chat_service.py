from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from retort.core.errors import InvalidRequestError, NotFoundError
from retort.repos.context_stage_repo import DEFAULT_STAGE, ContextStageRepo
from retort.repos.message_repo import MessageRepo
from retort.repos.tag_repo import TagRepo
from retort.schemas.context import FileRef, MessageMetadata
from retort.services.context_service import ContextStageService, ResolvedContext
from retort.services.hooks import HookManager
from retort.services.prompt_builder import PromptBuilder
from retort.services.provider_service import ProviderService

logger = logging.getLogger(__name__)

Echo = Callable[[str], None]


@dataclass
class SendRequest:
    """Everything one ``send`` needs, including the caller's active profile values."""

    prompt: str
    parent_id: Optional[int] = None
    chat_tag: Optional[str] = None
    new: bool = False
    stream: Optional[bool] = None
    ignore_inherited: bool = False
    stage_name: str = DEFAULT_STAGE
    active_tag: Optional[str] = None
    project_root: Optional[str] = None


@dataclass
class TurnTarget:
    """Where a new turn attaches and which tag follows it."""

    parent_id: Optional[int]
    tag: Optional[str]


@dataclass
class SendResult:
    user_message_id: int
    assistant_message_id: int
    response: str
    context: ResolvedContext
    tag: Optional[str] = None
    tag_created: bool = False


def file_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ChatService:
    """Runs one conversational turn end to end."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        prompt_builder: PromptBuilder,
        provider_service: ProviderService,
        context_service: ContextStageService,
        hook_manager: HookManager,
        default_stream: bool = False,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._prompt_builder = prompt_builder
        self._provider_service = provider_service
        self._context_service = context_service
        self._hook_manager = hook_manager
        self._default_stream = default_stream

    async def resolve_target(self, request: SendRequest) -> TurnTarget:
        """Pick the parent message and the tag to advance for a send.

        ``--parent`` branches without touching tags, ``--chat`` continues (or
        starts) a tagged chat, ``--new`` starts an untagged root and the
        default follows the active tag when one is set.
        """

        if request.parent_id is not None and (request.new or request.chat_tag):
            raise InvalidRequestError("--parent cannot be combined with --new or --chat.")
        if request.new and request.chat_tag:
            raise InvalidRequestError("--chat cannot be combined with --new.")

        if request.new:
            return TurnTarget(parent_id=None, tag=None)

        async with self._sessionmaker() as db:
            if request.parent_id is not None:
                if not await MessageRepo(db).message_exists(request.parent_id):
                    raise NotFoundError(f"Message with ID '{request.parent_id}' not found.")
                return TurnTarget(parent_id=request.parent_id, tag=None)

            tag = request.chat_tag or request.active_tag
            if not tag:
                return TurnTarget(parent_id=None, tag=None)
            return TurnTarget(parent_id=await TagRepo(db).get_message_id(tag), tag=tag)

    async def send(
        self,
        request: SendRequest,
        echo: Optional[Echo] = None,
        on_chunk: Optional[Echo] = None,
        on_context: Optional[Callable[[ResolvedContext], None]] = None,
    ) -> SendResult:
        """Record the user turn, ask the model, run hooks and record the answer."""

        echo = echo or (lambda _text: None)
        target = await self.resolve_target(request)
        context = await self._context_service.resolve_context(
            target.parent_id,
            ignore_inherited=request.ignore_inherited,
            stage_name=request.stage_name,
        )
        if on_context:
            on_context(context)
        read_write_files, read_only_files, metadata = self._load_files(context)

        async with self._sessionmaker() as db:
            repo = MessageRepo(db)
            async with db.begin():
                user_message = await repo.add_message(
                    target.parent_id, "user", request.prompt, metadata.to_json()
                )
            user_message_id = user_message.id
            history = await repo.list_ancestors(user_message_id)
        echo(f"Added user message with ID: {user_message_id}")

        system_prompt, messages = self._prompt_builder.build_messages(
            history, read_write_files, read_only_files
        )
        use_stream = request.stream if request.stream is not None else self._default_stream
        response = await self._generate(system_prompt, messages, use_stream, on_chunk)
        if on_chunk:
            # Ends the line the response text was written on.
            echo("")

        project_root = Path(request.project_root) if request.project_root else None
        self._hook_manager.run_post_send_hooks(response, project_root)

        tag_created = False
        async with self._sessionmaker() as db:
            message_repo = MessageRepo(db)
            async with db.begin():
                await ContextStageRepo(db).clear_stage(request.stage_name)
                assistant_message = await message_repo.add_message(
                    user_message_id, "assistant", response
                )
                if target.tag:
                    tag_created = target.parent_id is None
                    await TagRepo(db).set_tag(target.tag, assistant_message.id)
        echo(f"Added assistant message with ID: {assistant_message.id}")
        if target.tag:
            if tag_created:
                echo(f"Creating new chat with tag '{target.tag}'")
            echo(f"Updated tag '{target.tag}' to point to message ID {assistant_message.id}")

        return SendResult(
            user_message_id=user_message_id,
            assistant_message_id=assistant_message.id,
            response=response,
            context=context,
            tag=target.tag,
            tag_created=tag_created,
        )

    async def _generate(
        self,
        system_prompt: str,
        messages: list[dict],
        use_stream: bool,
        on_chunk: Optional[Echo],
    ) -> str:
        adapter, runtime_cfg = self._provider_service.get_generation_config()
        logger.info(
            "Requesting %s/%s with %d messages (stream=%s)",
            runtime_cfg.provider,
            runtime_cfg.model,
            len(messages),
            use_stream,
        )
        if not use_stream:
            result = await adapter.generate(runtime_cfg, messages, system=system_prompt)
            if on_chunk:
                on_chunk(result.text)
            return result.text

        parts: list[str] = []
        async for chunk in adapter.stream(runtime_cfg, messages, system=system_prompt):
            parts.append(chunk)
            if on_chunk:
                on_chunk(chunk)
        return "".join(parts)

    @staticmethod
    def _load_files(
        context: ResolvedContext,
    ) -> tuple[dict[str, str], dict[str, str], MessageMetadata]:
        read_write: dict[str, str] = {}
        read_only: dict[str, str] = {}
        metadata = MessageMetadata()
        for path, is_read_only in context.files.items():
            try:
                data = Path(path).read_bytes()
            except FileNotFoundError as exc:
                raise NotFoundError(f"File {path} not found.") from exc
            except OSError as exc:
                raise InvalidRequestError(f"Could not read file {path}: {exc.strerror}") from exc
            try:
                content = data.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise InvalidRequestError(f"File {path} is not valid UTF-8 text.") from exc
            ref = FileRef(path=path, content_hash=file_hash(data))
            if is_read_only:
                read_only[path] = content
                metadata.read_only_files.append(ref)
            else:
                read_write[path] = content
                metadata.read_write_files.append(ref)
        return read_write, read_only, metadata
