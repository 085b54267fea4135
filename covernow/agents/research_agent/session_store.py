"""
session_store.py — where deep-research sessions live between tool calls.

ResearchSessionRepository            — interface the orchestrator talks to
InMemoryResearchSessionRepository    — per-process dict + owned sweeper task
RedisResearchSessionRepository       — JSON under research:{id}, Redis TTLs do the eviction
build_session_repository()           — picks one from settings.research_session_backend

Eviction rules (both backends):
  - idle for more than research_idle_ttl_seconds (30 min) since the last write
  - completed more than research_completed_ttl_seconds (5 min) ago

Every put() counts as activity and refreshes last_updated.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis.asyncio as aioredis

from covernow import cache
from covernow.agents.research_agent.schemas import ResearchSession
from covernow.config import settings
from covernow.errors import ExpiredStateError

logger = logging.getLogger(__name__)

SESSION_EXPIRED = "Research session expired. Please start again with deepResearchInit."


class ResearchSessionRepository(ABC):
    """Storage for ResearchSession objects keyed by session id."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[ResearchSession]:
        ...

    @abstractmethod
    async def put(self, session: ResearchSession) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def mark_completed(self, session_id: str) -> None:
        """Schedule eviction research_completed_ttl_seconds from now."""

    @abstractmethod
    async def sweep(self) -> int:
        """Evict expired sessions. Returns the number removed."""

    def start(self) -> None:
        """Start any background work. Called from the FastAPI lifespan."""

    async def stop(self) -> None:
        """Stop background work started by start()."""


class InMemoryResearchSessionRepository(ResearchSessionRepository):
    """
    Single-process store. Sessions are lost on restart and are not shared
    between workers; use the Redis backend when running more than one.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        idle_ttl: Optional[int] = None,
        completed_ttl: Optional[int] = None,
        sweep_interval: Optional[int] = None,
    ) -> None:
        self._sessions: dict[str, ResearchSession] = {}
        self._clock = clock
        self._idle_ttl = idle_ttl if idle_ttl is not None else settings.research_idle_ttl_seconds
        self._completed_ttl = (
            completed_ttl if completed_ttl is not None else settings.research_completed_ttl_seconds
        )
        self._sweep_interval = (
            sweep_interval if sweep_interval is not None else settings.research_sweep_interval_seconds
        )
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_expired(self, session: ResearchSession, now: float) -> bool:
        if session.completed_at is not None and now - session.completed_at > self._completed_ttl:
            return True
        return now - session.last_updated > self._idle_ttl

    async def get(self, session_id: str) -> Optional[ResearchSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session, self._clock()):
            del self._sessions[session_id]
            logger.info("Research session expired on read session_id=%s", session_id)
            raise ExpiredStateError(SESSION_EXPIRED)
        return session

    async def put(self, session: ResearchSession) -> None:
        session.last_updated = self._clock()
        self._sessions[session.id] = session

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def mark_completed(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.completed_at = self._clock()

    async def sweep(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if self._is_expired(s, now)]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Research sweep removed=%d remaining=%d", len(expired), len(self._sessions))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.error("Research session sweep failed", exc_info=True)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._sweep_loop())
            logger.info("Research session sweeper started interval=%ds", self._sweep_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Research session sweeper stopped")


class RedisResearchSessionRepository(ResearchSessionRepository):
    """Sessions as JSON in Redis. Eviction is Redis key expiry, so sweep() does nothing."""

    def __init__(
        self,
        client: aioredis.Redis,
        idle_ttl: Optional[int] = None,
        completed_ttl: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._idle_ttl = idle_ttl if idle_ttl is not None else settings.research_idle_ttl_seconds
        self._completed_ttl = (
            completed_ttl if completed_ttl is not None else settings.research_completed_ttl_seconds
        )
        self._clock = clock

    async def get(self, session_id: str) -> Optional[ResearchSession]:
        data = await cache.get_research_data(self._client, session_id)
        if data is None:
            return None
        return ResearchSession.model_validate(data)

    async def put(self, session: ResearchSession) -> None:
        session.last_updated = self._clock()
        ttl = self._completed_ttl if session.completed_at is not None else self._idle_ttl
        await cache.set_research_data(
            self._client, session.id, session.model_dump(mode="json"), ttl
        )

    async def delete(self, session_id: str) -> None:
        await cache.delete_research_data(self._client, session_id)

    async def mark_completed(self, session_id: str) -> None:
        session = await self.get(session_id)
        if session is None:
            return
        session.completed_at = self._clock()
        await self.put(session)

    async def sweep(self) -> int:
        return 0


def build_session_repository(
    redis_client: Optional[aioredis.Redis] = None,
) -> ResearchSessionRepository:
    """Pick the configured backend. The Redis backend needs the lifespan's Redis pool."""
    if settings.research_session_backend == "redis":
        if redis_client is None:
            raise RuntimeError("research_session_backend=redis requires a Redis client")
        logger.info("Research sessions stored in Redis")
        return RedisResearchSessionRepository(redis_client)
    logger.info("Research sessions stored in memory")
    return InMemoryResearchSessionRepository()
