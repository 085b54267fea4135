"""
test_issues.py — health-issue list manager.

The list stays case-insensitively unique, keeps insertion order, and
has_issues always mirrors whether it is empty.
"""
import pytest

from covernow import store
from covernow.agents.profile_agent.issues import mutate_issues
from covernow.errors import InputValidationError, NotFoundError
from covernow.tests.fakes import USER_ID


async def _stored(session_factory):
    async with session_factory() as session:
        profile = await store.get_profile(session, USER_ID)
        return profile.issues, profile.has_issues


@pytest.mark.asyncio
async def test_add_sets_has_issues(db, session_factory, profile):
    outcome = await mutate_issues(db, USER_ID, "add", "Diabetes")
    await db.commit()

    assert outcome.message == "Successfully added issue(s)"
    assert outcome.issues == ["Diabetes"]
    assert await _stored(session_factory) == (["Diabetes"], True)


@pytest.mark.asyncio
async def test_add_keeps_insertion_order(db, profile):
    await mutate_issues(db, USER_ID, "add", "Diabetes")
    outcome = await mutate_issues(db, USER_ID, "add", "Asthma")
    assert outcome.issues == ["Diabetes", "Asthma"]


@pytest.mark.asyncio
async def test_duplicate_add_is_case_insensitive_noop(db, profile):
    await mutate_issues(db, USER_ID, "add", "Diabetes")
    outcome = await mutate_issues(db, USER_ID, "add", "  diabetes ")

    assert outcome.message == "Issue already exists in the list"
    assert outcome.issues == ["Diabetes"]


@pytest.mark.asyncio
async def test_remove_is_case_insensitive_and_clears_flag(db, session_factory, profile):
    await mutate_issues(db, USER_ID, "add", "Diabetes")
    outcome = await mutate_issues(db, USER_ID, "remove", "DIABETES")
    await db.commit()

    assert outcome.message == "Successfully removed issue(s)"
    assert await _stored(session_factory) == ([], False)


@pytest.mark.asyncio
async def test_remove_missing_issue_leaves_list_alone(db, profile):
    await mutate_issues(db, USER_ID, "add", "Asthma")
    outcome = await mutate_issues(db, USER_ID, "remove", "Diabetes")
    assert outcome.issues == ["Asthma"]


@pytest.mark.asyncio
async def test_clear(db, session_factory, profile):
    await mutate_issues(db, USER_ID, "add", "Asthma")
    await mutate_issues(db, USER_ID, "add", "Diabetes")
    outcome = await mutate_issues(db, USER_ID, "clear")
    await db.commit()

    assert outcome.message == "Successfully cleared issue(s)"
    assert await _stored(session_factory) == ([], False)


@pytest.mark.asyncio
async def test_invalid_operation(db, profile):
    with pytest.raises(InputValidationError) as excinfo:
        await mutate_issues(db, USER_ID, "replace", "Diabetes")
    assert excinfo.value.message == "Invalid operation 'replace'. Use add, remove or clear."


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", ["add", "remove"])
async def test_issue_required_for_add_and_remove(db, profile, operation):
    with pytest.raises(InputValidationError) as excinfo:
        await mutate_issues(db, USER_ID, operation, "   ")
    assert excinfo.value.message == "Issue is required for add and remove operations"


@pytest.mark.asyncio
async def test_missing_profile(db):
    with pytest.raises(NotFoundError):
        await mutate_issues(db, "nobody", "add", "Diabetes")
