from __future__ import annotations

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

# Columns added after the first schema, as (table, column, DDL type).
ADDED_COLUMNS = (
    ("profiles", "project_root", "TEXT"),
    ("messages", "metadata", "TEXT"),
)


class Base(DeclarativeBase):
    pass


def create_engine(db_url: str) -> AsyncEngine:
    return create_async_engine(db_url)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def ensure_database_dir(db_path: Path) -> None:
    """Make sure the parent directory of an on-disk database exists."""

    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)


async def init_db(engine: AsyncEngine) -> None:
    """Create missing tables, then add columns that older databases lack."""

    from retort.db import models  # noqa: F401  registers the mapped tables

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if engine.dialect.name != "sqlite":
            return
        for table, column, ddl_type in ADDED_COLUMNS:
            if column not in await _sqlite_columns(conn, table):
                await conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl_type}"))


async def _sqlite_columns(conn: AsyncConnection, table: str) -> set[str]:
    rows = await conn.execute(text(f"PRAGMA table_info({table})"))
    return {row[1] for row in rows}
