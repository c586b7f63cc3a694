# tests/services/test_redis_service.py
"""
Unit tests for the Redis service.

Uses a mocked client so no Redis instance is required.
"""
import json
import pytest
from unittest.mock import AsyncMock, Mock, patch

from admingate.core.exceptions import ConfigurationError, RedisServiceError
from admingate.services.redis_service import RedisService, RedisConfig, create_redis_service


async def scan_over(keys):
    for key in keys:
        yield key


@pytest.fixture
def mock_config():
    """Create a test configuration"""
    return RedisConfig(url="redis://localhost:6379/0", decode_responses=True, socket_timeout=5.0)


@pytest.fixture
def mock_redis_client():
    """Create a mock Redis client"""
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.setex = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.exists = AsyncMock(return_value=1)
    client.scan_iter = Mock(side_effect=lambda **kwargs: scan_over([]))
    client.hgetall = AsyncMock(return_value={})
    client.sadd = AsyncMock(return_value=1)
    client.srem = AsyncMock(return_value=1)
    client.smembers = AsyncMock(return_value=set())
    client.eval = AsyncMock(return_value=1)
    client.info = AsyncMock(return_value={"redis_version": "7.2.0", "connected_clients": 3})
    client.aclose = AsyncMock()
    return client


@pytest.fixture
async def redis_service(mock_config, mock_redis_client):
    """Create a Redis service with mocked client"""
    service = RedisService(mock_config)
    with patch('admingate.services.redis_service.redis.from_url', return_value=mock_redis_client):
        await service.initialize()
    return service


class TestRedisServiceSetup:
    """Initialization and configuration"""

    async def test_initialization(self, mock_config, mock_redis_client):
        service = RedisService(mock_config)

        assert service.config == mock_config
        assert not service.is_initialized

        with patch('admingate.services.redis_service.redis.from_url', return_value=mock_redis_client):
            await service.initialize()

        assert service.is_initialized
        assert service.is_connected()
        mock_redis_client.ping.assert_called_once()

    async def test_initialization_from_env(self):
        with patch.dict('os.environ', {
            'ADMINGATE_REDIS_URL': 'redis://gate:6379',
            'REDIS_URL': 'redis://standard:6379'
        }):
            service = RedisService()

        assert service.config.url == 'redis://gate:6379'
        assert service._url_source == 'ADMINGATE_REDIS_URL'

    async def test_no_redis_url(self):
        with patch.dict('os.environ', {}, clear=True):
            service = RedisService()
            await service.initialize()

        assert service.config.url is None
        assert service.is_initialized
        assert not service.is_connected()

    async def test_unsupported_scheme(self):
        service = RedisService(RedisConfig(url="http://localhost:6379"))

        with pytest.raises(ConfigurationError):
            await service.initialize()

    async def test_connection_failure(self, mock_config):
        service = RedisService(mock_config)
        failing_client = AsyncMock()
        failing_client.ping.side_effect = Exception("Connection refused")

        with patch('admingate.services.redis_service.redis.from_url', return_value=failing_client):
            await service.initialize()

        assert service.is_initialized
        assert not service.is_connected()

    async def test_create_redis_service(self, mock_redis_client):
        with patch('admingate.services.redis_service.redis.from_url', return_value=mock_redis_client):
            service = await create_redis_service("redis://localhost:6379/1")

        assert service.config.url == "redis://localhost:6379/1"
        assert service.is_connected()


class TestRedisServiceOperations:
    """Key/value, hash, set and script operations"""

    async def test_get_json(self, redis_service, mock_redis_client):
        mock_redis_client.get.return_value = '{"name": "test", "value": 42}'

        assert await redis_service.get("k") == {"name": "test", "value": 42}

    async def test_get_raw(self, redis_service, mock_redis_client):
        mock_redis_client.get.return_value = '{"a": 1}'

        assert await redis_service.get("k", deserialize_json=False) == '{"a": 1}'

    async def test_get_missing(self, redis_service, mock_redis_client):
        assert await redis_service.get("missing") is None

    async def test_get_failure_raises(self, redis_service, mock_redis_client):
        mock_redis_client.get.side_effect = ConnectionError("gone")

        with pytest.raises(RedisServiceError) as exc_info:
            await redis_service.get("k")

        assert exc_info.value.details["key"] == "k"
        assert exc_info.value.details["operation"] == "get"

    async def test_no_client_raises(self, redis_service):
        redis_service._client = None

        with pytest.raises(RedisServiceError):
            await redis_service.get("k")
        with pytest.raises(RedisServiceError):
            await redis_service.set("k", "v")

    async def test_set_json(self, redis_service, mock_redis_client):
        data = {"name": "test", "value": 42}

        assert await redis_service.set("k", data) is True
        mock_redis_client.set.assert_called_once_with("k", json.dumps(data))

    async def test_set_with_ttl(self, redis_service, mock_redis_client):
        await redis_service.set("k", "v", ttl=60)

        mock_redis_client.setex.assert_called_once_with("k", 60, "v")

    async def test_delete(self, redis_service, mock_redis_client):
        mock_redis_client.delete.return_value = 2

        assert await redis_service.delete("a", "b") == 2
        assert await redis_service.delete() == 0
        mock_redis_client.delete.assert_called_once_with("a", "b")

    async def test_set_members_are_sorted_strings(self, redis_service, mock_redis_client):
        mock_redis_client.smembers.return_value = {b"s2", "s1"}

        assert await redis_service.smembers("idx") == ["s1", "s2"]

    async def test_scan_keys_collects_all_pages(self, redis_service, mock_redis_client):
        mock_redis_client.scan_iter = Mock(return_value=scan_over([b"p:user_sessions:u1", "p:user_sessions:u2"]))

        keys = await redis_service.scan_keys("p:user_sessions:*")

        assert keys == ["p:user_sessions:u1", "p:user_sessions:u2"]
        mock_redis_client.scan_iter.assert_called_once_with(match="p:user_sessions:*", count=100)

    async def test_scan_failure_raises(self, redis_service, mock_redis_client):
        async def broken(**kwargs):
            raise ConnectionError("gone")
            yield

        mock_redis_client.scan_iter = broken

        with pytest.raises(RedisServiceError):
            await redis_service.scan_keys("*")

    async def test_eval_passes_keys_and_args(self, redis_service, mock_redis_client):
        await redis_service.eval("return 1", ["k1"], ["a", 2])

        mock_redis_client.eval.assert_called_once_with("return 1", 1, "k1", "a", 2)

    async def test_health_check(self, redis_service):
        health = await redis_service.health_check()

        assert health["healthy"] is True
        assert health["status"] == "connected"
        assert health["details"]["redis_version"] == "7.2.0"

    async def test_health_check_disabled(self):
        service = RedisService(RedisConfig(url=None))

        health = await service.health_check()

        assert health["status"] == "disabled"

    async def test_shutdown(self, redis_service, mock_redis_client):
        await redis_service.shutdown()

        mock_redis_client.aclose.assert_called_once()
        assert not redis_service.is_initialized
