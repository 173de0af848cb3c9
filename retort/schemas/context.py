from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class FileRef(BaseModel):
    """A file that was visible to the model, with its content hash at send time."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    content_hash: str = Field(default="", alias="hash")


class MessageMetadata(BaseModel):
    """Context snapshot stored on a user message."""

    read_write_files: List[FileRef] = Field(default_factory=list)
    read_only_files: List[FileRef] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.read_write_files and not self.read_only_files

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class PreparedContext(BaseModel):
    """Mutable staging area edited between turns."""

    read_write_files: List[str] = Field(default_factory=list)
    read_only_files: List[str] = Field(default_factory=list)
    dropped_files: List[str] = Field(default_factory=list)

    def touched(self) -> set[str]:
        """Paths the stage has an opinion about, including dropped ones."""

        return set(self.read_write_files) | set(self.read_only_files) | set(self.dropped_files)

    def is_empty(self) -> bool:
        return not (self.read_write_files or self.read_only_files or self.dropped_files)


def parse_message_metadata(raw: Optional[str]) -> MessageMetadata:
    """Decode stored message metadata; anything unreadable counts as empty."""

    text = (raw or "").strip()
    if not text:
        return MessageMetadata()
    try:
        return MessageMetadata.model_validate_json(text)
    except ValidationError:
        logger.warning("Ignoring unreadable message metadata: %s", text[:200])
        return MessageMetadata()


def parse_prepared_context(payload: Optional[str], legacy_read_only: Optional[str]) -> PreparedContext:
    """Decode a context stage row, falling back to the two-array legacy encoding."""

    decoded = _loads(payload)
    if isinstance(decoded, dict):
        try:
            return PreparedContext.model_validate(decoded)
        except ValidationError:
            logger.warning("Ignoring unreadable context stage payload")
            return PreparedContext()
    return PreparedContext(
        read_write_files=_string_list(decoded),
        read_only_files=_string_list(_loads(legacy_read_only)),
    )


def _loads(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]
