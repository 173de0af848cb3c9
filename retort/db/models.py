from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from retort.db.base import Base
from retort.utils.time_utils import utc_now


class Message(Base):
    """A node in the conversation tree. Rows are never updated or deleted."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_parent_id", "parent_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("messages.id"), nullable=True
    )
    role: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes.
    metadata_json: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class ChatTag(Base):
    """Named, movable pointer to a message."""

    __tablename__ = "chat_tags"

    tag: Mapped[str] = mapped_column(String, primary_key=True)
    message_id: Mapped[int] = mapped_column(Integer, ForeignKey("messages.id"), nullable=False)


class Profile(Base):
    """User profile holding the active chat tag and the project root."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    active_chat_tag: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    project_root: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ContextStageRecord(Base):
    """Persisted prepared context for one stage name.

    The first column holds a JSON object with all three file lists. Rows
    written by older versions hold a read-write JSON array there and a
    read-only JSON array in the second column.
    """

    __tablename__ = "context_stages"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    payload_json: Mapped[str] = mapped_column(
        "read_write_files", Text, nullable=False, default="[]"
    )
    legacy_read_only_json: Mapped[str] = mapped_column(
        "read_only_files", Text, nullable=False, default="[]"
    )
