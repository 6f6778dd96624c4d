"""
Redis utility module for centralized Redis configuration and connection logic.

Provides secure Redis connection management with production validation and
keyspace expiry notification setup for the challenge expiry listener.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from ladder_bot.config import Config

logger = logging.getLogger(__name__)


class RedisUtils:
    """Centralized Redis configuration and connection utilities."""

    @staticmethod
    def get_secure_redis_url() -> Optional[str]:
        """Get Redis URL with security validation for production deployments."""
        if Config.REDIS_URL:
            if RedisUtils._validate_redis_security(Config.REDIS_URL):
                return Config.REDIS_URL
            logger.error("REDIS_URL contains insecure configuration")
            return None

        if not Config.DEBUG:
            logger.error("Production deployment requires REDIS_URL (or REDISCLOUD_URL) with authentication.")
            return None

        logger.warning("Development mode: using insecure localhost Redis. Do not use in production!")
        return 'redis://localhost:6379'

    @staticmethod
    def _validate_redis_security(redis_url: str) -> bool:
        """Validate that Redis URL meets security requirements."""
        if not redis_url:
            return False

        if redis_url.startswith('redis://localhost') or redis_url.startswith('redis://127.0.0.1'):
            return Config.DEBUG
        if '@' not in redis_url:
            # Hosted Redis must carry credentials
            logger.error("Remote Redis URL must include authentication credentials")
            return False
        if not redis_url.startswith('rediss://'):
            logger.warning("Remote Redis URL is not using TLS (rediss://)")
        return True

    @staticmethod
    async def create_redis_client() -> Optional[redis.Redis]:
        """Create a Redis client returning decoded strings, or None if unreachable."""
        redis_url = RedisUtils.get_secure_redis_url()
        if not redis_url:
            return None

        try:
            client = redis.from_url(redis_url, decode_responses=True)
            await client.ping()
            logger.info("Successfully connected to Redis")
            return client
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            return None

    @staticmethod
    async def enable_expiry_notifications(client: redis.Redis) -> bool:
        """
        Turn on keyevent notifications for expired keys ('E' + 'x').

        Managed Redis services often forbid CONFIG SET; in that case the
        notifications must be enabled in the provider console and the periodic
        sweep still covers expiry.
        """
        try:
            config = await client.config_get('notify-keyspace-events')
            current = config.get('notify-keyspace-events', '')
            if 'E' in current and ('x' in current or 'A' in current):
                return True
            new_config = current
            if 'E' not in new_config:
                new_config += 'E'
            if 'x' not in new_config:
                new_config += 'x'
            await client.config_set('notify-keyspace-events', new_config)
            logger.info("Redis configured for key expiry notifications")
            return True
        except ResponseError as e:
            logger.warning(f"Could not enable keyspace notifications (CONFIG not permitted?): {e}")
            return False
        except RedisError as e:
            logger.error(f"Failed to configure keyspace notifications: {e}")
            return False

    @staticmethod
    def expired_channel(client: redis.Redis) -> str:
        """Pub/sub channel carrying expired-key events for the client's database."""
        db = client.connection_pool.connection_kwargs.get('db', 0)
        return f"__keyevent@{db}__:expired"
