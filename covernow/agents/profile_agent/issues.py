"""
issues.py — health-issue list manager.

The list is ordered and case-insensitively unique. has_issues is never set on its
own: store.set_issues() recomputes it from the list in the same flush.
Issue text is medical information, so it is never logged, only counts.
"""
import logging
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from covernow import store
from covernow.agents.profile_agent.schemas import IssueOperation, IssuesOutcome
from covernow.errors import InputValidationError, NotFoundError

logger = logging.getLogger(__name__)

_PAST_TENSE = {
    IssueOperation.add: "added",
    IssueOperation.remove: "removed",
    IssueOperation.clear: "cleared",
}


def _parse_operation(operation: Union[str, IssueOperation]) -> IssueOperation:
    try:
        return IssueOperation(operation)
    except ValueError:
        raise InputValidationError(
            f"Invalid operation '{operation}'. Use add, remove or clear."
        ) from None


async def mutate_issues(
    db: AsyncSession,
    user_id: str,
    operation: Union[str, IssueOperation],
    issue: Optional[str] = None,
) -> IssuesOutcome:
    op = _parse_operation(operation)
    cleaned = (issue or "").strip()
    if op is not IssueOperation.clear and not cleaned:
        raise InputValidationError("Issue is required for add and remove operations")

    profile = await store.get_profile(db, user_id)
    if profile is None:
        raise NotFoundError(store.PROFILE_NOT_FOUND)

    current = list(profile.issues)
    key = cleaned.lower()

    if op is IssueOperation.add:
        if any(existing.lower() == key for existing in current):
            return IssuesOutcome(message="Issue already exists in the list", issues=current)
        updated = current + [cleaned]
    elif op is IssueOperation.remove:
        updated = [existing for existing in current if existing.lower() != key]
    else:
        updated = []

    await store.set_issues(db, user_id, updated)
    logger.info(
        "Issues %s user_id=%s before=%d after=%d",
        op.value, user_id, len(current), len(updated),
    )
    return IssuesOutcome(
        message=f"Successfully {_PAST_TENSE[op]} issue(s)",
        issues=updated,
    )
