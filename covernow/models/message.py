"""
models/message.py — SQLAlchemy ORM model for chat messages.

Table: messages
One row per user message and one per assistant turn. An assistant turn that
made tool calls stores them in tool_calls, each call paired with its result:
    [{"toolCallId": ..., "toolName": ..., "args": {...}, "result": {...}}, ...]
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from covernow.database import Base, JSONType


class MessageORM(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="'user' or 'assistant'",
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tool_calls: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Tool calls made during the turn, each paired with its result",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
