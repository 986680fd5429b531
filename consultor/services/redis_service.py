# consultor/services/redis_service.py
"""
Redis Service.

Async-only wrapper around Redis with:
- Configuration from environment for common Redis providers
- Automatic JSON serialization/deserialization
- TTL support
- Health checks

Redis is optional for a running consultation: without a URL the service
stays disabled and every operation returns its "empty" result.
"""
import os
import json
import redis.asyncio as redis
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
import logging

from consultor.core.service_base import BaseService, ServiceConfig

logger = logging.getLogger(__name__)

# Checked in priority order
REDIS_URL_ENV_VARS = [
    "REDIS_URL",
    "REDIS_TLS_URL",
    "REDIS_DIRECT_URI",
]


@dataclass
class RedisConfig(ServiceConfig):
    """Configuration for Redis Service"""
    url: Optional[str] = None
    decode_responses: bool = True
    socket_timeout: float = 5.0
    max_connections: int = 10
    retry_on_timeout: bool = True
    health_check_interval: int = 30


class RedisService(BaseService[RedisConfig]):
    """
    Async-only Redis service for key/value and list storage.
    """

    def __init__(self, config: Optional[RedisConfig] = None):
        self._url_source = None

        if config is None:
            config = RedisConfig(url=self._get_redis_url())

        super().__init__(config, logger)

    def _get_redis_url(self) -> Optional[str]:
        for var in REDIS_URL_ENV_VARS:
            if url := os.environ.get(var):
                self._url_source = var
                logger.info(f"Using Redis URL from {var}")
                return url
        return None

    def _validate_config(self) -> None:
        super()._validate_config()

        if not self.config.url:
            self.logger.warning(
                "No Redis URL found. Persistence will be disabled. "
                f"Set one of: {', '.join(REDIS_URL_ENV_VARS)}"
            )

    async def _initialize_client(self) -> Optional[redis.Redis]:
        if not self.config.url:
            self.logger.warning("Redis disabled - no URL configured")
            return None

        try:
            client = redis.from_url(
                self.config.url,
                decode_responses=self.config.decode_responses,
                socket_timeout=self.config.socket_timeout,
                max_connections=self.config.max_connections,
                retry_on_timeout=self.config.retry_on_timeout,
                health_check_interval=self.config.health_check_interval
            )

            await client.ping()
            self.logger.info("Redis connection successful")

            return client

        except Exception as e:
            self.logger.error(f"Failed to connect to Redis: {str(e)}")
            self.logger.warning("Redis functionality disabled due to connection error")
            return None

    async def get(
        self,
        key: str,
        default: Any = None,
        deserialize_json: bool = True
    ) -> Any:
        """
        Get a value from Redis.

        Args:
            key: The key to retrieve
            default: Default value if key doesn't exist
            deserialize_json: Whether to deserialize JSON strings

        Returns:
            The stored value or default
        """
        if not self._client:
            return default

        try:
            value = await self._client.get(key)

            if value is None:
                return default

            if deserialize_json and isinstance(value, str):
                try:
                    return json.loads(value)
                except json.JSONDecodeError:
                    pass

            return value

        except Exception as e:
            self.logger.warning(f"Redis get failed for key '{key}': {e}")
            return default

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        serialize_json: bool = True,
        only_if_absent: bool = False
    ) -> bool:
        """
        Set a value in Redis.

        Args:
            key: The key to set
            value: The value to store
            ttl: Time to live in seconds
            serialize_json: Whether to serialize non-string values as JSON
            only_if_absent: Refuse to overwrite an existing key (SET NX)

        Returns:
            True if the value was written, False otherwise
        """
        if not self._client:
            return False

        try:
            if serialize_json and not isinstance(value, (str, bytes)):
                value = json.dumps(value)

            result = await self._client.set(key, value, ex=ttl, nx=only_if_absent)
            return bool(result)

        except Exception as e:
            self.logger.error(f"Redis set failed for key '{key}': {e}")
            return False

    async def lpush(self, key: str, *values: str) -> Optional[int]:
        """
        Prepend values to a list.

        Returns:
            New length of the list, or None on error
        """
        if not self._client or not values:
            return None

        try:
            return await self._client.lpush(key, *values)
        except Exception as e:
            self.logger.error(f"Redis lpush failed for key '{key}': {e}")
            return None

    async def lrange(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        if not self._client:
            return []

        try:
            values = await self._client.lrange(key, start, end)
            return [v.decode() if isinstance(v, bytes) else v for v in values]
        except Exception as e:
            self.logger.warning(f"Redis lrange failed for key '{key}': {e}")
            return []

    async def mget(self, keys: List[str]) -> List[Any]:
        """
        Get multiple values at once, deserializing JSON values.

        Returns:
            List of values (None for missing keys)
        """
        if not self._client or not keys:
            return [None] * len(keys)

        try:
            values = await self._client.mget(keys)
            result = []
            for value in values:
                if isinstance(value, str):
                    try:
                        result.append(json.loads(value))
                    except json.JSONDecodeError:
                        result.append(value)
                else:
                    result.append(value)
            return result
        except Exception as e:
            self.logger.warning(f"Redis mget failed: {e}")
            return [None] * len(keys)

    async def health_check(self) -> Dict[str, Any]:
        if not self.config.url:
            return {
                "healthy": True,  # disabled, not broken
                "status": "disabled",
                "details": {
                    "message": "Redis not configured"
                }
            }

        try:
            if not self._client:
                return {
                    "healthy": False,
                    "status": "not_connected",
                    "details": {
                        "url_source": self._url_source,
                        "error": "Client not initialized"
                    }
                }

            await self._client.ping()
            info = await self._client.info()

            return {
                "healthy": True,
                "status": "connected",
                "details": {
                    "url_source": self._url_source,
                    "redis_version": info.get("redis_version", "unknown"),
                    "connected_clients": info.get("connected_clients", 0),
                    "used_memory_human": info.get("used_memory_human", "unknown")
                }
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {
                    "url_source": self._url_source,
                    "error": str(e)
                }
            }

    async def _cleanup(self) -> None:
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")

    def is_connected(self) -> bool:
        return self._client is not None

