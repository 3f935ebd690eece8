"""Tests for lifespan management and dependency injection."""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from formtrack.errors import AuthorizationError, ServiceUnavailableError


def _settings(env):
    from formtrack.config import Settings

    with patch.dict(os.environ, env, clear=True):
        return Settings()


class TestSetupResources:
    """Test backend selection at startup."""

    @pytest.mark.asyncio
    async def test_memory_backends(self):
        """Test the default configuration needs no external services."""
        from formtrack.auth import InMemoryFormDirectory
        from formtrack.db.memory import InMemoryEventStore, InMemorySessionStore
        from formtrack.lifespan import cleanup_resources, setup_resources

        settings = _settings({"FORM_OWNERS": "form-1:user-1", "GEOIP_DB_PATH": "/nonexistent.mmdb"})
        resources = await setup_resources(settings)

        assert isinstance(resources.event_store, InMemoryEventStore)
        assert isinstance(resources.session_store, InMemorySessionStore)
        assert isinstance(resources.forms, InMemoryFormDirectory)
        assert await resources.forms.owner_of("form-1") == "user-1"
        assert resources.pg_pool is None
        assert resources.redis_client is None
        assert resources.geo is None
        assert resources.tracker.store is resources.session_store
        await cleanup_resources(resources)

    @pytest.mark.asyncio
    async def test_redis_sessions(self):
        """Test STORAGE_SESSIONS=redis wires the CAS store with configured retries."""
        from formtrack.db.redis_sessions import RedisSessionStore
        from formtrack.lifespan import cleanup_resources, setup_resources

        settings = _settings(
            {
                "STORAGE_SESSIONS": "redis",
                "STORAGE_MERGE_MAX_RETRIES": "4",
                "REDIS_KEY_PREFIX": "ft",
                "GEOIP_DB_PATH": "/nonexistent.mmdb",
            }
        )
        mock_client = MagicMock()
        mock_client.aclose = AsyncMock()

        with patch("formtrack.lifespan.init_redis", AsyncMock(return_value=mock_client)):
            resources = await setup_resources(settings)

        assert isinstance(resources.session_store, RedisSessionStore)
        assert resources.session_store.session_key("f", "s") == "ft:session:1:f:s"
        assert resources.session_store._max_retries == 4
        assert resources.redis_client is mock_client

        await cleanup_resources(resources)
        mock_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_postgres_backends(self):
        """Test postgres storage opens one pool shared by every store."""
        from formtrack.auth import PostgresFormDirectory
        from formtrack.db.events import PostgresEventStore
        from formtrack.db.sessions import PostgresSessionStore
        from formtrack.lifespan import cleanup_resources, setup_resources

        settings = _settings(
            {"STORAGE_EVENTS": "postgres", "STORAGE_SESSIONS": "postgres", "GEOIP_DB_PATH": "/nonexistent.mmdb"}
        )
        pool = MagicMock()

        with patch("formtrack.lifespan.core.open_pool", AsyncMock(return_value=pool)) as open_pool, patch(
            "formtrack.lifespan.core.close_pool", AsyncMock()
        ) as close_pool:
            resources = await setup_resources(settings)
            assert isinstance(resources.event_store, PostgresEventStore)
            assert isinstance(resources.session_store, PostgresSessionStore)
            assert isinstance(resources.forms, PostgresFormDirectory)
            open_pool.assert_awaited_once()
            await cleanup_resources(resources)
            close_pool.assert_awaited_once_with(pool)


class TestInitRedis:
    """Test init_redis function."""

    @pytest.mark.asyncio
    async def test_init_redis_uses_blocking_pool(self):
        """Test the client is built on a blocking pool that decodes responses."""
        from formtrack.lifespan import init_redis

        settings = _settings({"REDIS_HOST": "localhost", "REDIS_MAX_CONNECTIONS": "7"})
        with patch("formtrack.lifespan.RedisConnectionPool") as pool_cls, patch(
            "formtrack.lifespan.redis.Redis"
        ) as redis_cls:
            await init_redis(settings)

        kwargs = pool_cls.call_args.kwargs
        assert kwargs["host"] == "localhost"
        assert kwargs["max_connections"] == 7
        assert kwargs["password"] is None
        assert kwargs["decode_responses"] is True
        redis_cls.assert_called_once_with(connection_pool=pool_cls.return_value)


class TestDependencies:
    """Test dependency functions."""

    def _request(self, resources=None, headers=None, client=("127.0.0.1", 5000)):
        return SimpleNamespace(
            app=SimpleNamespace(state=SimpleNamespace(resources=resources)),
            headers=headers or {},
            client=SimpleNamespace(host=client[0], port=client[1]) if client else None,
        )

    def test_get_resources_raises_before_startup(self):
        """Test handlers fail with 503 when the lifespan has not run."""
        from formtrack.dependencies import get_resources

        with pytest.raises(ServiceUnavailableError):
            get_resources(self._request())

    def test_get_resources_returns_state(self):
        from formtrack.dependencies import get_facade, get_ingestor, get_resources

        resources = MagicMock()
        assert get_resources(self._request(resources)) is resources
        assert get_ingestor(resources) is resources.ingestor
        assert get_facade(resources) is resources.facade

    def test_optional_clients_when_not_started(self):
        from formtrack.dependencies import get_optional_pg_pool, get_optional_redis

        assert get_optional_redis(self._request()) is None
        assert get_optional_pg_pool(self._request()) is None

    def test_client_ip_prefers_forwarded_for(self):
        from formtrack.dependencies import client_ip

        assert client_ip(self._request(headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"
        assert client_ip(self._request()) == "127.0.0.1"
        assert client_ip(self._request(client=None)) is None

    def test_current_user(self):
        from formtrack.dependencies import get_current_user

        settings = _settings({})
        assert get_current_user(self._request(headers={"x-user-id": " user-1 "}), settings) == "user-1"
        with pytest.raises(AuthorizationError):
            get_current_user(self._request(headers={"x-user-id": "  "}), settings)
