# admingate/services/redis_service.py
"""
Redis Service for the admin gate.

Async-only wrapper around Redis with:
- Configuration from settings or environment
- Automatic JSON serialization/deserialization
- TTL support
- Lua script execution for atomic read-modify-write
- Health checks

Unlike a cache, the security stores built on this service must be able to
tell "key missing" apart from "Redis unreachable", so operation failures
raise RedisServiceError instead of returning a default.
"""
import os
import json
import redis.asyncio as redis
from typing import Optional, Dict, Any, List, Sequence
from dataclasses import dataclass
import logging

from admingate.core.service_base import BaseService
from admingate.core.exceptions import config_error, redis_error

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("redis://", "rediss://", "unix://")


@dataclass
class RedisConfig:
    """Configuration for Redis Service"""
    url: Optional[str] = None
    decode_responses: bool = True
    socket_timeout: float = 5.0
    max_connections: int = 10
    retry_on_timeout: bool = True
    health_check_interval: int = 30


class RedisService(BaseService[RedisConfig]):
    """
    Async-only Redis service backing the session registry and the
    CSRF token authority.
    """

    def __init__(self, config: Optional[RedisConfig] = None):
        """
        Initialize Redis Service.

        Args:
            config: Redis configuration. If not provided, uses environment variables.
        """
        self.logger = logging.getLogger(__name__)
        self._url_source = None

        if config is None:
            config = RedisConfig(url=self._get_redis_url())

        super().__init__(config, self.logger)

    def _get_redis_url(self) -> Optional[str]:
        """Get Redis URL from environment variables."""
        for var in ("ADMINGATE_REDIS_URL", "REDIS_URL"):
            if url := os.environ.get(var):
                self._url_source = var
                self.logger.info(f"Using Redis URL from {var}")
                return url
        return None

    def _validate_config(self) -> None:
        """Validate Redis configuration"""
        super()._validate_config()

        if self.config.url and not self.config.url.startswith(SUPPORTED_SCHEMES):
            raise config_error(
                f"Unsupported Redis URL scheme, expected one of {SUPPORTED_SCHEMES}",
                component="RedisService"
            )

        if not self.config.url:
            self.logger.warning(
                "No Redis URL found. Falling back to in-memory security stores. "
                "Set REDIS_URL to share sessions across processes."
            )

    async def _initialize_client(self) -> Optional[redis.Redis]:
        """Initialize the Redis client"""
        if not self.config.url:
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
            self.logger.warning("Redis disabled due to connection error")
            return None

    def _require_client(self, operation: str, key: Optional[str] = None):
        if not self._client:
            raise redis_error("Redis is not connected", key=key, operation=operation)
        return self._client

    async def get(self, key: str, deserialize_json: bool = True) -> Any:
        """
        Get a value from Redis.

        Returns:
            The stored value, or None if the key does not exist

        Raises:
            RedisServiceError: If Redis cannot be reached
        """
        client = self._require_client("get", key)
        try:
            value = await client.get(key)
        except Exception as e:
            raise redis_error(f"Redis get failed: {e}", key=key, operation="get")

        if value is None:
            return None

        if deserialize_json and isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        serialize_json: bool = True
    ) -> bool:
        """
        Set a value in Redis.

        Args:
            key: The key to set
            value: The value to store
            ttl: Time to live in seconds
            serialize_json: Whether to serialize non-string values as JSON
        """
        client = self._require_client("set", key)

        if serialize_json and not isinstance(value, (str, bytes)):
            value = json.dumps(value)

        try:
            if ttl:
                await client.setex(key, ttl, value)
            else:
                await client.set(key, value)
            return True
        except Exception as e:
            raise redis_error(f"Redis set failed: {e}", key=key, operation="set")

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys, returns number of keys deleted"""
        if not keys:
            return 0
        client = self._require_client("delete")
        try:
            return await client.delete(*keys)
        except Exception as e:
            raise redis_error(f"Redis delete failed: {e}", operation="delete")

    async def exists(self, *keys: str) -> int:
        """Number of the given keys that exist"""
        if not keys:
            return 0
        client = self._require_client("exists")
        try:
            return await client.exists(*keys)
        except Exception as e:
            raise redis_error(f"Redis exists check failed: {e}", operation="exists")

    async def scan_keys(self, pattern: str = "*", count: int = 100) -> List[str]:
        """Keys matching pattern, collected with incremental SCAN"""
        client = self._require_client("scan")
        found = []
        try:
            async for key in client.scan_iter(match=pattern, count=count):
                found.append(key.decode() if isinstance(key, bytes) else key)
        except Exception as e:
            raise redis_error(f"Redis scan failed: {e}", operation="scan")
        return found

    async def hgetall(self, key: str) -> Dict[str, str]:
        """Get all fields of a hash, empty dict if missing"""
        client = self._require_client("hgetall", key)
        try:
            return await client.hgetall(key) or {}
        except Exception as e:
            raise redis_error(f"Redis hgetall failed: {e}", key=key, operation="hgetall")

    async def sadd(self, key: str, *members: str) -> int:
        client = self._require_client("sadd", key)
        try:
            return await client.sadd(key, *members)
        except Exception as e:
            raise redis_error(f"Redis sadd failed: {e}", key=key, operation="sadd")

    async def srem(self, key: str, *members: str) -> int:
        client = self._require_client("srem", key)
        try:
            return await client.srem(key, *members)
        except Exception as e:
            raise redis_error(f"Redis srem failed: {e}", key=key, operation="srem")

    async def smembers(self, key: str) -> List[str]:
        client = self._require_client("smembers", key)
        try:
            members = await client.smembers(key)
        except Exception as e:
            raise redis_error(f"Redis smembers failed: {e}", key=key, operation="smembers")
        return sorted(m.decode() if isinstance(m, bytes) else m for m in members)

    async def eval(self, script: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """
        Run a Lua script atomically on the server.

        Args:
            script: Lua source
            keys: KEYS passed to the script
            args: ARGV passed to the script
        """
        client = self._require_client("eval", keys[0] if keys else None)
        try:
            return await client.eval(script, len(keys), *keys, *args)
        except Exception as e:
            raise redis_error(f"Redis eval failed: {e}", operation="eval")

    async def health_check(self) -> Dict[str, Any]:
        """Check Redis service health."""
        if not self.config.url:
            return {
                "healthy": True,  # Disabled, not unhealthy
                "status": "disabled",
                "details": {"message": "Redis not configured"}
            }

        if not self._client:
            return {
                "healthy": False,
                "status": "not_connected",
                "details": {
                    "url_source": self._url_source,
                    "error": "Client not initialized"
                }
            }

        try:
            await self._client.ping()
            info = await self._client.info()
            return {
                "healthy": True,
                "status": "connected",
                "details": {
                    "url_source": self._url_source,
                    "redis_version": info.get("redis_version", "unknown"),
                    "connected_clients": info.get("connected_clients", 0),
                }
            }
        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {"url_source": self._url_source, "error": str(e)}
            }

    async def _cleanup(self) -> None:
        """Close Redis connection"""
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")

    def is_connected(self) -> bool:
        """Check if Redis is connected and available"""
        return self._client is not None


async def create_redis_service(url: Optional[str] = None, **kwargs) -> RedisService:
    """
    Create and initialize a Redis service instance.

    Args:
        url: Redis URL (uses env vars if not provided)
        **kwargs: Additional config parameters
    """
    config = RedisConfig(url=url, **kwargs) if url else None
    service = RedisService(config)
    await service.initialize()
    return service
