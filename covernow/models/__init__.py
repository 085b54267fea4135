"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order matters: messages reference conversations.
"""
from covernow.models.user_profile import UserProfileORM
from covernow.models.conversation import ConversationORM
from covernow.models.message import MessageORM

__all__ = ["UserProfileORM", "ConversationORM", "MessageORM"]
