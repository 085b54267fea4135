"""
confirmation.py — profile update confirmation gate and resolver.

propose_update()        — apply a partial update, or stage it when it would overwrite
                          an existing value with a different one (all-or-nothing).
resolve_confirmation()  — on a later turn, apply or discard the staged update.

Staged updates live on conversations.pending_confirmation (at most one per
conversation) and are valid for settings.confirmation_ttl_seconds (5 minutes).
Expiry is lazy: it is checked only when someone tries to resolve.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from covernow import store
from covernow.agents.profile_agent.schemas import (
    BOOLEAN_LABELS,
    PROFILE_FIELDS,
    Applied,
    ConflictingField,
    NeedsConfirmation,
    ProfileRecord,
    ProfileUpdateRequest,
    ProposeOutcome,
    Resolved,
    parse_profile_update,
)
from covernow.config import settings
from covernow.errors import ExpiredStateError, NotFoundError

logger = logging.getLogger(__name__)

NO_PENDING_CONFIRMATION = "No pending confirmation found. Please try updating your profile again."
CONFIRMATION_EXPIRED = "The confirmation has expired. Please try updating your profile again."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _plain(value: Any) -> Any:
    """Comparable/displayable form: dates as ISO strings, whole floats as ints."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _display(field: str, value: Any) -> Any:
    if field in BOOLEAN_LABELS and isinstance(value, bool):
        yes, no = BOOLEAN_LABELS[field]
        return yes if value else no
    return value


def detect_conflicts(profile: ProfileRecord, fields: dict[str, Any]) -> list[ConflictingField]:
    """
    A field conflicts when the stored value is non-null and differs from the new one.

    Plain inequality for every type, so flipping a recorded boolean counts too.
    """
    conflicts: list[ConflictingField] = []
    for field, new_value in fields.items():
        column, display_name = PROFILE_FIELDS[field]
        current = getattr(profile, column)
        if current is None:
            continue
        if _plain(current) == _plain(new_value):
            continue
        conflicts.append(
            ConflictingField(
                field=field,
                currentValue=_plain(current),
                newValue=_plain(new_value),
                displayName=display_name,
            )
        )
    return conflicts


def build_confirmation_message(conflicts: list[ConflictingField]) -> str:
    if len(conflicts) == 1:
        c = conflicts[0]
        return (
            f'I see your {c.displayName} is currently recorded as '
            f'"{_display(c.field, c.currentValue)}". '
            f'You want to change it to "{_display(c.field, c.newValue)}".'
        )
    changes = [
        f'{c.displayName} from "{_display(c.field, c.currentValue)}" '
        f'to "{_display(c.field, c.newValue)}"'
        for c in conflicts
    ]
    return f"I see you want to update: {', '.join(changes)}."


def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for field, value in fields.items():
        column, _ = PROFILE_FIELDS[field]
        if field == "dob":
            value = date.fromisoformat(value)
        columns[column] = value
    return columns


async def apply_profile_update(
    db: AsyncSession,
    user_id: str,
    request: ProfileUpdateRequest,
) -> list[str]:
    """
    Write a validated update straight to the profile. Shared by the no-conflict
    branch of propose_update() and the confirmed branch of resolve_confirmation().
    Returns the camelCase names of the fields written.
    """
    fields = request.provided_fields()
    await store.update_profile_columns(db, user_id, _to_columns(fields))
    return list(fields)


async def propose_update(
    db: AsyncSession,
    user_id: str,
    conversation_id: str,
    update: Union[dict[str, Any], ProfileUpdateRequest],
    now: Optional[datetime] = None,
) -> ProposeOutcome:
    """
    Confirmation gate.

    1. Validate (bad/future dob, age without dob, empty update → InputValidationError;
       nothing is staged or written).
    2. Compare every provided field with the stored profile before touching anything.
    3. No conflicts → apply now, return Applied.
       Any conflict → stage the FULL update on the conversation (overwriting any
       earlier staged one), apply nothing, return NeedsConfirmation.
    """
    request = parse_profile_update(update)
    fields = request.provided_fields()

    profile = await store.get_profile(db, user_id)
    if profile is None:
        raise NotFoundError(store.PROFILE_NOT_FOUND)

    conflicts = detect_conflicts(profile, fields)
    if not conflicts:
        updated = await apply_profile_update(db, user_id, request)
        logger.info("Profile update applied user_id=%s fields=%s", user_id, updated)
        return Applied(updated_fields=updated)

    await store.set_pending_confirmation(
        db,
        conversation_id,
        fields,
        created_at=now or _utcnow(),
        user_id=user_id,
    )
    logger.info(
        "Profile update staged user_id=%s conversation_id=%s conflicts=%s",
        user_id, conversation_id, [c.field for c in conflicts],
    )
    return NeedsConfirmation(
        conflicting_fields=conflicts,
        confirmation_message=build_confirmation_message(conflicts),
        proposed=fields,
    )


async def resolve_confirmation(
    db: AsyncSession,
    user_id: str,
    conversation_id: str,
    confirmed: bool,
    now: Optional[datetime] = None,
) -> Resolved:
    """
    Confirmation resolver.

    Missing staged update → NotFoundError. Older than the TTL → cleared, then
    ExpiredStateError whatever `confirmed` says. Declined → cleared, profile untouched.
    Confirmed → applied with the same validation as the gate, and only cleared
    AFTER the apply succeeds so a failed apply can be retried.
    """
    now = now or _utcnow()
    pending = await store.get_pending_confirmation(db, conversation_id, user_id)
    if pending is None:
        raise NotFoundError(NO_PENDING_CONFIRMATION)

    age = now - _as_utc(pending.created_at)
    if age > timedelta(seconds=settings.confirmation_ttl_seconds):
        await store.clear_pending_confirmation(db, conversation_id)
        logger.info(
            "Pending confirmation expired conversation_id=%s age_s=%d",
            conversation_id, int(age.total_seconds()),
        )
        raise ExpiredStateError(CONFIRMATION_EXPIRED)

    if not confirmed:
        await store.clear_pending_confirmation(db, conversation_id)
        logger.info("Pending confirmation declined conversation_id=%s", conversation_id)
        return Resolved(
            action="cancelled",
            message="No problem! I've kept your existing information unchanged.",
        )

    request = parse_profile_update(pending.data)
    updated = await apply_profile_update(db, user_id, request)
    await store.clear_pending_confirmation(db, conversation_id)
    logger.info(
        "Pending confirmation applied conversation_id=%s fields=%s",
        conversation_id, updated,
    )
    return Resolved(
        action="updated",
        message="Perfect! I've updated your profile with the new information.",
        updated_fields=updated,
    )
