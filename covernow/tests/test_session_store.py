"""
test_session_store.py — research session repositories.

A fake clock drives expiry: sessions go after 30 idle minutes, or 5 minutes
after completion, whichever comes first.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from covernow.agents.research_agent.schemas import ResearchAccumulator, ResearchSession
from covernow.agents.research_agent.session_store import (
    SESSION_EXPIRED,
    InMemoryResearchSessionRepository,
    RedisResearchSessionRepository,
)
from covernow.errors import ExpiredStateError


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _session(session_id: str = "s-1") -> ResearchSession:
    return ResearchSession(
        id=session_id,
        accumulator=ResearchAccumulator(original_query="term insurance", start_time=1_000.0),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo(clock):
    return InMemoryResearchSessionRepository(
        clock=clock, idle_ttl=1800, completed_ttl=300, sweep_interval=300
    )


@pytest.mark.asyncio
async def test_put_then_get(repo):
    session = _session()
    await repo.put(session)
    assert await repo.get("s-1") is session
    assert await repo.get("unknown") is None


@pytest.mark.asyncio
async def test_put_refreshes_last_updated(repo, clock):
    session = _session()
    await repo.put(session)
    clock.advance(1700)
    await repo.put(session)
    clock.advance(1700)

    assert session.last_updated == 1_000.0 + 1700
    assert await repo.get("s-1") is session


@pytest.mark.asyncio
async def test_idle_session_expires_on_read(repo, clock):
    await repo.put(_session())
    clock.advance(1801)

    with pytest.raises(ExpiredStateError) as excinfo:
        await repo.get("s-1")
    assert excinfo.value.message == SESSION_EXPIRED
    assert len(repo) == 0


@pytest.mark.asyncio
async def test_completed_session_gets_short_grace_period(repo, clock):
    await repo.put(_session())
    await repo.mark_completed("s-1")

    clock.advance(299)
    assert await repo.sweep() == 0
    clock.advance(2)
    assert await repo.sweep() == 1
    assert len(repo) == 0


@pytest.mark.asyncio
async def test_sweep_only_removes_expired(repo, clock):
    await repo.put(_session("old"))
    clock.advance(1000)
    await repo.put(_session("fresh"))
    clock.advance(900)

    assert await repo.sweep() == 1
    assert await repo.get("fresh") is not None
    assert await repo.get("old") is None


@pytest.mark.asyncio
async def test_delete(repo):
    await repo.put(_session())
    await repo.delete("s-1")
    await repo.delete("s-1")
    assert len(repo) == 0


@pytest.mark.asyncio
async def test_background_sweeper_runs_and_stops(clock):
    repo = InMemoryResearchSessionRepository(
        clock=clock, idle_ttl=1800, completed_ttl=300, sweep_interval=0
    )
    await repo.put(_session())
    clock.advance(1801)

    repo.start()
    for _ in range(10):
        await asyncio.sleep(0)
        if len(repo) == 0:
            break
    await repo.stop()

    assert len(repo) == 0
    assert repo._task is None


@pytest.mark.asyncio
async def test_stop_without_start_is_harmless(repo):
    await repo.stop()


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_redis_put_uses_idle_ttl_then_completed_ttl(clock):
    client = AsyncMock()
    repo = RedisResearchSessionRepository(client, idle_ttl=1800, completed_ttl=300, clock=clock)
    session = _session()

    await repo.put(session)
    key, ttl, payload = client.setex.await_args.args
    assert key == "research:s-1"
    assert ttl == 1800
    assert json.loads(payload)["accumulator"]["original_query"] == "term insurance"

    client.get.return_value = payload
    await repo.mark_completed("s-1")
    _, ttl, payload = client.setex.await_args.args
    assert ttl == 300
    assert json.loads(payload)["completed_at"] == clock.now


@pytest.mark.asyncio
async def test_redis_get_missing_and_delete(clock):
    client = AsyncMock()
    client.get.return_value = None
    repo = RedisResearchSessionRepository(client, clock=clock)

    assert await repo.get("s-1") is None
    await repo.delete("s-1")
    client.delete.assert_awaited_once_with("research:s-1")
    assert await repo.sweep() == 0
