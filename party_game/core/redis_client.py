"""
Redis connection for the change feed bridge
Redis连接管理 - 多进程部署时用于转发行变更事件
"""

import json
import logging
import time
from typing import Any, Dict, Optional

import redis.asyncio as redis

from party_game.core.config import settings

logger = logging.getLogger(__name__)


class RedisManager:
    """Owns the pool used to fan row changes out to other processes"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = None
        self.published = 0
        self.publish_failures = 0
        self.last_error: Optional[str] = None
        self.last_ping: Optional[float] = None

    @property
    def is_available(self) -> bool:
        return self.client is not None

    async def initialize(self):
        """Connect once; a missing redis leaves the service single-node"""
        self.pool = redis.ConnectionPool.from_url(
            self.url,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
            encoding="utf-8",
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        if await self.ping():
            logger.info(f"Redis connected: {self.url}")
            return

        await self.close()
        # 生产环境开启了转发却连不上，直接失败
        if settings.ENVIRONMENT == "production" and settings.CHANGE_FEED_REDIS_ENABLED:
            raise ConnectionError(f"Redis unreachable: {self.last_error}")
        logger.warning(f"Redis unavailable ({self.last_error}), change feed stays in-process")

    async def ping(self) -> bool:
        if not self.client:
            return False
        try:
            await self.client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            self.last_error = str(e)
            return False
        self.last_ping = time.time()
        return True

    async def publish_event(self, channel: str, payload: Dict[str, Any]) -> int:
        """Publish one change event; returns the receiver count redis reports"""
        if not self.client:
            raise RuntimeError("Redis connection unavailable")
        try:
            receivers = await self.client.publish(channel, json.dumps(payload, default=str))
        except redis.RedisError as e:
            self.publish_failures += 1
            self.last_error = str(e)
            raise
        self.published += 1
        return receivers

    async def open_pubsub(self, channel: str):
        """PubSub already subscribed to `channel`; the caller closes it"""
        if not self.client:
            raise RuntimeError("Redis connection unavailable")
        pubsub = self.client.pubsub()
        await pubsub.subscribe(channel)
        return pubsub

    async def close(self):
        if self.client:
            await self.client.aclose()
        if self.pool:
            await self.pool.aclose()
        self.client = None
        self.pool = None


redis_manager = RedisManager()


async def init_redis():
    await redis_manager.initialize()


async def close_redis():
    await redis_manager.close()
    logger.info("Redis connections closed")


async def redis_health_check() -> dict:
    """Status block for /health/detailed"""
    if not redis_manager.is_available:
        return {"status": "disabled", "last_error": redis_manager.last_error}
    healthy = await redis_manager.ping()
    return {
        "status": "healthy" if healthy else "unhealthy",
        "published": redis_manager.published,
        "publish_failures": redis_manager.publish_failures,
        "last_ping": redis_manager.last_ping,
        "last_error": redis_manager.last_error,
    }
