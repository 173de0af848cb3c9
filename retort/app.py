from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from retort.core.config import Settings, get_settings
from retort.core.logging import setup_logging
from retort.db.base import create_engine, create_sessionmaker, ensure_database_dir, init_db
from retort.services.chat_service import ChatService
from retort.services.context_service import ContextStageService
from retort.services.history_service import HistoryService
from retort.services.hooks import HookManager
from retort.services.patch_engine import PatchEngine
from retort.services.profile_service import ProfileService
from retort.services.prompt_builder import PromptBuilder
from retort.services.provider_service import ProviderService
from retort.services.tag_service import TagService


@dataclass
class RetortApp:
    """Services wired to one database for the lifetime of a command."""

    settings: Settings
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    history_service: HistoryService
    context_service: ContextStageService
    tag_service: TagService
    profile_service: ProfileService
    provider_service: ProviderService
    chat_service: ChatService


def create_app(
    settings: Optional[Settings] = None,
    echo: Callable[[str], None] | None = None,
) -> RetortApp:
    """Create the engine and services; the schema is set up by ``open_app``."""

    settings = settings or get_settings()
    setup_logging(settings.log_level)

    ensure_database_dir(settings.expanded_database_path())
    engine = create_engine(settings.database_url())
    sessionmaker = create_sessionmaker(engine)

    hook_manager = HookManager()
    hook_manager.register(PatchEngine(echo=echo))

    context_service = ContextStageService(sessionmaker)
    provider_service = ProviderService(settings)
    return RetortApp(
        settings=settings,
        engine=engine,
        sessionmaker=sessionmaker,
        history_service=HistoryService(sessionmaker),
        context_service=context_service,
        tag_service=TagService(sessionmaker),
        profile_service=ProfileService(sessionmaker),
        provider_service=provider_service,
        chat_service=ChatService(
            sessionmaker,
            PromptBuilder(settings.prompts_dir),
            provider_service,
            context_service,
            hook_manager,
            default_stream=bool(settings.stream),
        ),
    )


@asynccontextmanager
async def open_app(
    settings: Optional[Settings] = None,
    echo: Callable[[str], None] | None = None,
) -> AsyncIterator[RetortApp]:
    app = create_app(settings, echo)
    await init_db(app.engine)
    try:
        yield app
    finally:
        await app.engine.dispose()
