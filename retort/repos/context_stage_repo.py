from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from retort.db.models import ContextStageRecord
from retort.schemas.context import PreparedContext, parse_prepared_context

DEFAULT_STAGE = "default"


class ContextStageRepo:
    """Repository for prepared context stages."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_stage(self, name: str = DEFAULT_STAGE) -> PreparedContext:
        """Load a stage; a missing row is an empty stage."""

        record = await self._get_record(name)
        if not record:
            return PreparedContext()
        return parse_prepared_context(record.payload_json, record.legacy_read_only_json)

    async def save_stage(self, name: str, stage: PreparedContext) -> None:
        """Persist a stage, always in the current single-column encoding."""

        payload = stage.model_dump_json()
        record = await self._get_record(name)
        if record:
            record.payload_json = payload
            record.legacy_read_only_json = "[]"
        else:
            self._db.add(
                ContextStageRecord(name=name, payload_json=payload, legacy_read_only_json="[]")
            )
        await self._db.flush()

    async def clear_stage(self, name: str = DEFAULT_STAGE) -> None:
        await self.save_stage(name, PreparedContext())

    async def _get_record(self, name: str) -> ContextStageRecord | None:
        result = await self._db.execute(
            select(ContextStageRecord).where(ContextStageRecord.name == name)
        )
        return result.scalar_one_or_none()
