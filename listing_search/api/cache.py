"""
Redis result cache for search responses.

Cache failures never fail a search: a read error is a miss and a write
error is ignored.
"""

import hashlib
import logging
from typing import Optional

import redis.asyncio as redis

from listing_search.models import SearchCriteria
from .schemas import SearchResponse

logger = logging.getLogger(__name__)


class SearchResultCache:
    """Caches serialized search responses keyed by normalized criteria"""

    CACHE_TTL = 300  # 5 minutes
    KEY_PREFIX = "listing_search:page:"

    def __init__(
        self,
        client: Optional[redis.Redis],
        ttl_seconds: int = CACHE_TTL,
        enabled: bool = True
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled and client is not None

    def cache_key(self, criteria: SearchCriteria) -> str:
        """Generate cache key from the normalized criteria"""
        key_str = "|".join(criteria.cache_key_parts())
        return self.KEY_PREFIX + hashlib.md5(key_str.encode()).hexdigest()

    async def get(self, criteria: SearchCriteria) -> Optional[SearchResponse]:
        """
        Look up a cached response.

        Args:
            criteria: Validated search criteria

        Returns:
            Cached SearchResponse with cached=True, or None
        """
        if not self.enabled:
            return None

        try:
            cached_data = await self.client.get(self.cache_key(criteria))
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Search cache read failed: {e}")
            return None

        if not cached_data:
            return None

        try:
            response = SearchResponse.model_validate_json(cached_data)
        except ValueError as e:
            logger.warning(f"Discarding unreadable cache entry: {e}")
            return None

        response.cached = True
        return response

    async def set(self, criteria: SearchCriteria, response: SearchResponse) -> None:
        """Store a response; failures are logged and ignored"""
        if not self.enabled:
            return

        try:
            await self.client.setex(
                self.cache_key(criteria),
                self.ttl_seconds,
                response.model_dump_json(exclude={"cached"}),
            )
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Search cache write failed: {e}")
