"""
Connection lifecycle for the search engine's backing services.
"""

import logging
from typing import Optional

import aiohttp
import asyncpg
import redis.asyncio as redis

from listing_search.config import SearchSettings

logger = logging.getLogger(__name__)

# Global connection pools
pg_pool: Optional[asyncpg.Pool] = None
redis_client: Optional[redis.Redis] = None
http_session: Optional[aiohttp.ClientSession] = None


async def init_db(settings: SearchSettings):
    """Initialize the PostgreSQL pool, the index HTTP session, and Redis"""
    global pg_pool, redis_client, http_session

    # PostgreSQL
    try:
        pg_pool = await asyncpg.create_pool(
            settings.database.dsn,
            min_size=settings.database.min_size,
            max_size=settings.database.max_size,
        )
        logger.info("PostgreSQL connection pool created")
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise

    # Full-text index
    http_session = aiohttp.ClientSession()
    logger.info(f"Search index session opened for {settings.index.url}")

    # Redis (result cache only, search works without it)
    if settings.cache.enabled:
        try:
            redis_client = redis.from_url(settings.cache.redis_url, decode_responses=True)
            await redis_client.ping()
            logger.info("Redis connection established")
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Redis unavailable, result cache disabled: {e}")
            await redis_client.aclose()
            redis_client = None


async def close_db():
    """Close all connections"""
    global pg_pool, redis_client, http_session

    if http_session:
        await http_session.close()
        http_session = None
        logger.info("Search index session closed")

    if pg_pool:
        await pg_pool.close()
        pg_pool = None
        logger.info("PostgreSQL connection pool closed")

    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


def get_pg_pool() -> asyncpg.Pool:
    """Get PostgreSQL connection pool"""
    if pg_pool is None:
        raise RuntimeError("Database not initialized")
    return pg_pool


def get_http_session() -> aiohttp.ClientSession:
    """Get the search index HTTP session"""
    if http_session is None:
        raise RuntimeError("Search index session not initialized")
    return http_session


def get_redis() -> Optional[redis.Redis]:
    """Get Redis client, None when the cache is disabled or unreachable"""
    return redis_client
