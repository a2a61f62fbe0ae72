import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from carebook.core.config import settings

logger = structlog.get_logger(__name__)


def booking_draft_key(session_id: str) -> str:
    return f"booking_draft:{session_id}"


class RedisClient:
    """JSON document storage with expiry, used for booking drafts.

    Failures are logged and reported as falsy results so a Redis outage
    degrades drafts to request scope instead of failing the booking flow.
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.redis_pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def connect(self):
        """Create the connection pool and check the server answers."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.url,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
            )
            self._client = redis.Redis(connection_pool=self.redis_pool)
            await self._client.ping()
            logger.info("Redis connection established", url=self.url)
        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            raise

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self.redis_pool is not None:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    async def client(self) -> redis.Redis:
        if self._client is None:
            await self.connect()
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await (await self.client()).ping())
        except Exception as e:
            logger.warning("Redis ping failed", error=str(e))
            return False

    async def read_json(self, key: str) -> Optional[Any]:
        """Stored document, or ``None`` if missing, unreadable or Redis is down."""
        try:
            value = await (await self.client()).get(key)
        except Exception as e:
            logger.error("Redis read error", key=key, exc_info=e)
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Stored value is not JSON", key=key)
            return None

    async def write_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            return bool(await (await self.client()).set(key, json.dumps(value), ex=ttl))
        except Exception as e:
            logger.error("Redis write error", key=key, exc_info=e)
            return False

    async def touch(self, key: str, ttl: int) -> bool:
        """Restart the expiry of ``key``; drafts live while the patient is active."""
        try:
            return bool(await (await self.client()).expire(key, ttl))
        except Exception as e:
            logger.error("Redis EXPIRE error", key=key, exc_info=e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            return await (await self.client()).delete(key) > 0
        except Exception as e:
            logger.error("Redis DELETE error", key=key, exc_info=e)
            return False
