"""
store.py — Data access facade for CoverNow.

Provides a consistent, high-level API for persisting and retrieving domain objects.
Agents and tools use these functions — nothing else touches SQLAlchemy directly.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM-only queries
  - flush() only — the caller (get_db() dependency or the chat tool loop) commits
  - Logs only user_id / conversation_id / field names — never incomes, dob, names or issue text
  - Returns domain Pydantic objects (not ORM instances) so callers are persistence-agnostic
"""
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from covernow.agents.profile_agent.schemas import PendingConfirmation, ProfileRecord
from covernow.errors import NotFoundError
from covernow.models.conversation import ConversationORM
from covernow.models.message import MessageORM
from covernow.models.user_profile import UserProfileORM

logger = logging.getLogger(__name__)

PROFILE_NOT_FOUND = "Profile not found. User needs to create a profile first."
CONVERSATION_NOT_FOUND = "Conversation not found"


def _to_record(orm: UserProfileORM) -> ProfileRecord:
    return ProfileRecord(
        user_id=orm.user_id,
        first_name=orm.first_name,
        last_name=orm.last_name,
        dob=orm.dob,
        gender=orm.gender,
        is_married=orm.is_married,
        annual_income=orm.annual_income,
        city=orm.city,
        occupation=orm.occupation,
        smoking_status=orm.smoking_status,
        coverage_amount=orm.coverage_amount,
        policy_term=orm.policy_term,
        issues=list(orm.issues or []),
        has_issues=bool(orm.has_issues),
    )


async def _get_profile_orm(db: AsyncSession, user_id: str) -> UserProfileORM:
    result = await db.execute(
        select(UserProfileORM).where(UserProfileORM.user_id == user_id)
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        raise NotFoundError(PROFILE_NOT_FOUND)
    return orm


async def _get_conversation_orm(
    db: AsyncSession,
    conversation_id: str,
    user_id: Optional[str] = None,
) -> ConversationORM:
    query = select(ConversationORM).where(ConversationORM.id == conversation_id)
    if user_id is not None:
        query = query.where(ConversationORM.user_id == user_id)
    result = await db.execute(query)
    orm = result.scalar_one_or_none()
    if orm is None:
        raise NotFoundError(CONVERSATION_NOT_FOUND)
    return orm


# ---------------------------------------------------------------------------
# Profile operations
# ---------------------------------------------------------------------------

async def create_profile(
    db: AsyncSession,
    user_id: str,
    first_name: str,
    last_name: Optional[str] = None,
) -> ProfileRecord:
    """
    Create the profile row at signup. Identity fields are set here and never again.
    Every other field starts out null; issues start empty.
    """
    orm = UserProfileORM(
        user_id=user_id,
        first_name=first_name,
        last_name=last_name,
        issues=[],
        has_issues=False,
    )
    db.add(orm)
    await db.flush()
    logger.info("Created profile user_id=%s", user_id)
    return _to_record(orm)


async def get_profile(
    db: AsyncSession,
    user_id: str,
) -> Optional[ProfileRecord]:
    """
    Retrieve a user's profile.
    Returns None if no profile exists (caller decides: onboarding or NotFoundError).
    """
    result = await db.execute(
        select(UserProfileORM).where(UserProfileORM.user_id == user_id)
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        return None
    return _to_record(orm)


async def update_profile_columns(
    db: AsyncSession,
    user_id: str,
    values: dict[str, Any],
) -> None:
    """
    Write column values (snake_case column → value) onto the user's profile row.

    Raises NotFoundError if the profile does not exist. No optimistic concurrency:
    concurrent writers for the same user are last-writer-wins.
    """
    orm = await _get_profile_orm(db, user_id)
    for column, value in values.items():
        setattr(orm, column, value)
    await db.flush()
    logger.info("Updated profile user_id=%s columns=%s", user_id, sorted(values))


async def set_issues(
    db: AsyncSession,
    user_id: str,
    issues: list[str],
) -> None:
    """
    Replace the issue list and recompute has_issues in the same flush,
    so the two columns can never disagree.
    """
    orm = await _get_profile_orm(db, user_id)
    orm.issues = list(issues)  # new list object so SQLAlchemy marks the JSON column dirty
    orm.has_issues = len(issues) > 0
    await db.flush()
    logger.info("Updated issues user_id=%s count=%d", user_id, len(issues))


# ---------------------------------------------------------------------------
# Conversation operations
# ---------------------------------------------------------------------------

async def create_conversation(
    db: AsyncSession,
    user_id: str,
    title: Optional[str] = None,
) -> dict:
    orm = ConversationORM(user_id=user_id, title=title or "New conversation", token_count=0)
    db.add(orm)
    await db.flush()
    logger.info("Created conversation conversation_id=%s user_id=%s", orm.id, user_id)
    return {"id": orm.id, "title": orm.title, "token_count": orm.token_count}


async def get_conversation(
    db: AsyncSession,
    conversation_id: str,
    user_id: Optional[str] = None,
) -> Optional[dict]:
    """
    Return {id, user_id, title, token_count} or None when the conversation is
    missing (or belongs to another user when user_id is given).
    """
    try:
        orm = await _get_conversation_orm(db, conversation_id, user_id)
    except NotFoundError:
        return None
    return {
        "id": orm.id,
        "user_id": orm.user_id,
        "title": orm.title,
        "token_count": orm.token_count,
    }


async def add_token_usage(
    db: AsyncSession,
    conversation_id: str,
    tokens: int,
) -> int:
    """Add tokens to the running total. Returns the new total."""
    orm = await _get_conversation_orm(db, conversation_id)
    orm.token_count = (orm.token_count or 0) + tokens
    await db.flush()
    logger.info(
        "Token usage conversation_id=%s added=%d total=%d",
        conversation_id, tokens, orm.token_count,
    )
    return orm.token_count


# ---------------------------------------------------------------------------
# Pending confirmation operations
# ---------------------------------------------------------------------------

async def get_pending_confirmation(
    db: AsyncSession,
    conversation_id: str,
    user_id: Optional[str] = None,
) -> Optional[PendingConfirmation]:
    """
    Return the staged update for a conversation, or None if nothing is staged.
    Raises NotFoundError if the conversation itself is missing.
    Expiry is NOT checked here — the resolver owns that rule.
    """
    orm = await _get_conversation_orm(db, conversation_id, user_id)
    if orm.pending_confirmation is None or orm.pending_confirmation_created_at is None:
        return None
    return PendingConfirmation(
        data=dict(orm.pending_confirmation),
        created_at=orm.pending_confirmation_created_at,
    )


async def set_pending_confirmation(
    db: AsyncSession,
    conversation_id: str,
    data: dict[str, Any],
    created_at: datetime,
    user_id: Optional[str] = None,
) -> None:
    """Stage a proposed update. Overwrites whatever was staged before."""
    orm = await _get_conversation_orm(db, conversation_id, user_id)
    replaced = orm.pending_confirmation is not None
    orm.pending_confirmation = dict(data)
    orm.pending_confirmation_created_at = created_at
    await db.flush()
    logger.info(
        "Staged pending confirmation conversation_id=%s fields=%s replaced=%s",
        conversation_id, sorted(data), replaced,
    )


async def clear_pending_confirmation(
    db: AsyncSession,
    conversation_id: str,
) -> None:
    orm = await _get_conversation_orm(db, conversation_id)
    orm.pending_confirmation = None
    orm.pending_confirmation_created_at = None
    await db.flush()
    logger.info("Cleared pending confirmation conversation_id=%s", conversation_id)


# ---------------------------------------------------------------------------
# Message operations
# ---------------------------------------------------------------------------

async def save_message(
    db: AsyncSession,
    conversation_id: str,
    role: str,
    content: str,
    tool_calls: Optional[list[dict]] = None,
) -> None:
    """
    Persist one message row. Assistant turns carry their tool calls paired with results.
    Logs only ids and counts (message text may contain PII).
    """
    orm = MessageORM(
        conversation_id=conversation_id,
        role=role,
        content=content,
        tool_calls=tool_calls or None,
    )
    db.add(orm)
    await db.flush()
    logger.info(
        "Saved message conversation_id=%s role=%s tool_calls=%d",
        conversation_id, role, len(tool_calls or []),
    )


async def get_messages(
    db: AsyncSession,
    conversation_id: str,
) -> list[dict]:
    """
    Retrieve all messages for a conversation, oldest first.
    Returns empty list if the conversation has no messages.
    """
    result = await db.execute(
        select(MessageORM)
        .where(MessageORM.conversation_id == conversation_id)
        .order_by(MessageORM.created_at.asc())
    )
    rows = result.scalars().all()
    return [
        {
            "id": row.id,
            "role": row.role,
            "content": row.content,
            "tool_calls": row.tool_calls,
            "created_at": row.created_at.isoformat(),
        }
        for row in rows
    ]
