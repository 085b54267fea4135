"""
cache.py — Redis layer for CoverNow.

Namespace conventions:
  research:{session_id}   → ResearchSession JSON    TTL 30 min (reset on every write)
                                                    TTL 5 min once the session completes

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x — do NOT use aioredis separately)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param — no module-level global state
  - Logs only session ids and TTLs (the research query can contain personal details)
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from covernow.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
RESEARCH_PREFIX = "research"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_research_key(session_id: str) -> str:
    """Build Redis key for a research session: research:{session_id}"""
    return f"{RESEARCH_PREFIX}:{session_id}"


# ---------------------------------------------------------------------------
# Pool factory: called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup — stored on app.state.redis.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Research session helpers
# ---------------------------------------------------------------------------

async def get_research_data(
    client: aioredis.Redis, session_id: str
) -> Optional[dict]:
    """
    Retrieve a research session dict from Redis.
    Returns None if the session expired or never existed.
    """
    raw = await client.get(make_research_key(session_id))
    if raw is None:
        return None
    return json.loads(raw)


async def set_research_data(
    client: aioredis.Redis, session_id: str, data: dict, ttl: int
) -> None:
    """Store a research session dict. Overwrites the value and resets the TTL."""
    await client.setex(make_research_key(session_id), ttl, json.dumps(data))
    logger.info("Research session stored session_id=%s ttl=%ds", session_id, ttl)


async def delete_research_data(client: aioredis.Redis, session_id: str) -> None:
    await client.delete(make_research_key(session_id))
    logger.info("Research session deleted session_id=%s", session_id)
