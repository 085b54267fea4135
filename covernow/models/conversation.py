"""
models/conversation.py — SQLAlchemy ORM model for chat conversations.

Table: conversations
Besides identity, each row carries:
  - token_count: running total of LLM tokens used, checked against settings.token_limit
  - pending_confirmation (+ created_at): the single staged profile update awaiting
    a yes/no from the user. At most one per conversation; a new one overwrites.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from covernow.database import Base, JSONType


class ConversationORM(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="UUID conversation identifier",
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="New conversation")
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    pending_confirmation: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Full proposed profile update awaiting confirmation (camelCase keys)",
    )
    pending_confirmation_created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the pending confirmation was staged — expires after 5 minutes",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
