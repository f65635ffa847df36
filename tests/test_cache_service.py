"""
HRMS Core - Cache Service Tests

Tests for the Redis-based caching service.
"""

import pytest
from unittest.mock import AsyncMock, patch

from hrms.services.cache_service import CacheService, close_cache_service, get_cache_service


class TestCacheServiceKeys:
    """Test cache key format."""

    def test_permissions_key(self):
        cache = CacheService()
        assert cache.permissions_key("42") == "permissions:42"


class TestCacheServiceOperations:

    @pytest.mark.asyncio
    async def test_set_with_ttl_uses_setex(self):
        cache = CacheService()
        mock_client = AsyncMock()

        with patch.object(cache, 'get_client', return_value=mock_client):
            assert await cache.set("k", "v", ttl=30) is True

        mock_client.setex.assert_called_once_with("k", 30, "v")
        mock_client.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_set_without_ttl(self):
        cache = CacheService()
        mock_client = AsyncMock()

        with patch.object(cache, 'get_client', return_value=mock_client):
            await cache.set("k", "v")

        mock_client.set.assert_called_once_with("k", "v")

    @pytest.mark.asyncio
    async def test_json_round_trip(self):
        cache = CacheService()
        mock_client = AsyncMock()
        mock_client.get = AsyncMock(return_value='{"codes": ["a.view"]}')

        with patch.object(cache, 'get_client', return_value=mock_client):
            await cache.set_json("k", {"codes": ["a.view"]}, ttl=10)
            value = await cache.get_json("k")

        mock_client.setex.assert_called_once_with("k", 10, '{"codes": ["a.view"]}')
        assert value == {"codes": ["a.view"]}

    @pytest.mark.asyncio
    async def test_get_json_with_corrupt_value(self):
        cache = CacheService()
        mock_client = AsyncMock()
        mock_client.get = AsyncMock(return_value="{not json")

        with patch.object(cache, 'get_client', return_value=mock_client):
            assert await cache.get_json("k") is None

    @pytest.mark.asyncio
    async def test_delete_without_keys_is_a_no_op(self):
        cache = CacheService()
        mock_client = AsyncMock()

        with patch.object(cache, 'get_client', return_value=mock_client):
            assert await cache.delete() is True

        mock_client.delete.assert_not_called()


class TestCacheServiceDegradation:
    """A Redis outage is reported as a miss, never raised."""

    @pytest.mark.asyncio
    async def test_operations_swallow_connection_errors(self):
        cache = CacheService()

        with patch.object(cache, 'get_client', side_effect=ConnectionError("redis down")):
            assert await cache.get("k") is None
            assert await cache.set("k", "v", ttl=5) is False
            assert await cache.delete("k") is False
            assert await cache.get_json("k") is None

    @pytest.mark.asyncio
    async def test_health_check_reports_unhealthy(self):
        cache = CacheService()
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(side_effect=ConnectionError("refused"))

        with patch.object(cache, 'get_client', return_value=mock_client):
            health = await cache.health_check()

        assert health["status"] == "unhealthy"
        assert health["connected"] is False

    @pytest.mark.asyncio
    async def test_health_check_reports_healthy(self):
        cache = CacheService()
        mock_client = AsyncMock()
        mock_client.info = AsyncMock(return_value={"used_memory_human": "1M", "connected_clients": 3})

        with patch.object(cache, 'get_client', return_value=mock_client):
            health = await cache.health_check()

        assert health == {
            "status": "healthy",
            "connected": True,
            "used_memory": "1M",
            "connected_clients": 3,
        }


class TestGlobalCacheService:

    @pytest.mark.asyncio
    async def test_singleton_and_close(self):
        first = get_cache_service()
        assert get_cache_service() is first

        await close_cache_service()

        assert get_cache_service() is not first
        await close_cache_service()
