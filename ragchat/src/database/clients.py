"""
RagChat - Store Client Singletons
==================================
Process-wide Redis and MongoDB clients, created lazily on first use and
reused by every request.  Store classes never build clients themselves;
they receive one through their constructor, so tests can hand in fakes.
"""

from __future__ import annotations

import motor.motor_asyncio
import redis.asyncio as aioredis

from ragchat.config.settings import settings
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_mongo_client: motor.motor_asyncio.AsyncIOMotorClient | None = None


def get_redis_client() -> aioredis.Redis:
    """Return (or create) the module-level async Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.REDIS_URL.get_secret_value(), decode_responses=True, socket_connect_timeout=5, socket_keepalive=True)
        logger.info("Redis async client created (singleton).")
    return _redis_client


def get_mongo_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return (or create) the module-level async MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value())
        logger.info("MongoDB async client created (singleton).")
    return _mongo_client


async def close_clients() -> None:
    """Close whichever singletons were opened."""
    global _redis_client, _mongo_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis client closed.")
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
        logger.info("MongoDB client closed.")
