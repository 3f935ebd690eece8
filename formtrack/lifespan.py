"""Application startup and shutdown.

Builds every shared resource (connection pools, stores, services) from the
settings and tears them down again. The result lives on
``app.state.resources`` and reaches handlers through ``formtrack.dependencies``.
"""

import logging
from dataclasses import dataclass

import redis.asyncio as redis
from psycopg_pool import AsyncConnectionPool
from redis.asyncio import BlockingConnectionPool as RedisConnectionPool

from formtrack.aggregator import MetricsAggregator
from formtrack.auth import FormDirectory, InMemoryFormDirectory, PostgresFormDirectory
from formtrack.config import Settings
from formtrack.db import core
from formtrack.db.base import EventStore, SessionStore
from formtrack.db.events import PostgresEventStore
from formtrack.db.memory import InMemoryEventStore, InMemorySessionStore
from formtrack.db.redis_sessions import RedisSessionStore
from formtrack.db.sessions import PostgresSessionStore
from formtrack.geo import GeoIPEnricher, open_geoip
from formtrack.ingestion import EventIngestor
from formtrack.reporting import ReportingFacade
from formtrack.sessions import SessionTracker

logger = logging.getLogger("formtrack.lifespan")


@dataclass
class LifespanResources:
    """Container for resources initialized during lifespan."""

    event_store: EventStore
    session_store: SessionStore
    forms: FormDirectory
    tracker: SessionTracker
    ingestor: EventIngestor
    aggregator: MetricsAggregator
    facade: ReportingFacade
    pg_pool: AsyncConnectionPool | None = None
    redis_client: redis.Redis | None = None
    geo: GeoIPEnricher | None = None


async def init_redis(settings: Settings) -> redis.Redis:
    """Initialize Redis connection with connection pool."""
    redis_pool = RedisConnectionPool(
        host=settings.redis.host,
        port=settings.redis.port,
        password=settings.redis.password if settings.redis.password else None,
        max_connections=settings.redis.max_connections,
        timeout=settings.redis.pool_timeout_sec,
        health_check_interval=settings.redis.health_check_interval,
        socket_timeout=settings.redis.socket_timeout,
        socket_connect_timeout=settings.redis.socket_connect_timeout,
        retry_on_timeout=settings.redis.retry_on_timeout,
        decode_responses=True,
    )
    return redis.Redis(connection_pool=redis_pool)


def build_resources(
    settings: Settings,
    *,
    event_store: EventStore,
    session_store: SessionStore,
    forms: FormDirectory,
    geo: GeoIPEnricher | None = None,
    pg_pool: AsyncConnectionPool | None = None,
    redis_client: redis.Redis | None = None,
) -> LifespanResources:
    """Wire the services on top of already-open stores."""
    tracker = SessionTracker(session_store)
    aggregator = MetricsAggregator(event_store, session_store, geo)
    return LifespanResources(
        event_store=event_store,
        session_store=session_store,
        forms=forms,
        tracker=tracker,
        ingestor=EventIngestor(event_store, tracker),
        aggregator=aggregator,
        facade=ReportingFacade(
            aggregator,
            forms,
            reveal_form_existence=settings.auth.reveal_form_existence,
        ),
        pg_pool=pg_pool,
        redis_client=redis_client,
        geo=geo,
    )


async def setup_resources(settings: Settings) -> LifespanResources:
    """Open the configured backends and wire the services."""
    storage = settings.storage
    pg_pool = await core.open_pool(settings.postgres) if storage.uses_postgres else None
    redis_client = await init_redis(settings) if storage.uses_redis else None

    event_store: EventStore
    if storage.events == "postgres":
        event_store = PostgresEventStore(pg_pool)
    else:
        event_store = InMemoryEventStore()

    session_store: SessionStore
    if storage.sessions == "postgres":
        session_store = PostgresSessionStore(pg_pool)
    elif storage.sessions == "redis":
        session_store = RedisSessionStore(
            redis_client,
            key_prefix=settings.redis.key_prefix,
            max_retries=storage.merge_max_retries,
        )
    else:
        session_store = InMemorySessionStore()

    forms: FormDirectory
    if pg_pool is not None:
        forms = PostgresFormDirectory(pg_pool)
    else:
        forms = InMemoryFormDirectory(settings.auth.form_owners)

    logger.info(
        "Storage ready (events=%s, sessions=%s, forms=%s)",
        storage.events,
        storage.sessions,
        "postgres" if pg_pool is not None else "memory",
    )
    return build_resources(
        settings,
        event_store=event_store,
        session_store=session_store,
        forms=forms,
        geo=open_geoip(settings.geoip.db_path),
        pg_pool=pg_pool,
        redis_client=redis_client,
    )


async def cleanup_resources(resources: LifespanResources) -> None:
    """Clean up all resources on shutdown."""
    if resources.pg_pool is not None:
        try:
            await core.close_pool(resources.pg_pool)
        except Exception:
            logger.warning("Failed to close database pool", exc_info=True)

    if resources.redis_client is not None:
        await resources.redis_client.aclose()

    if resources.geo is not None:
        resources.geo.close()
