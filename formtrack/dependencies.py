"""Dependency injection for FastAPI endpoints.

Resources are built in the lifespan and stored on ``app.state.resources``;
these dependencies hand the relevant piece to each endpoint.

Usage in controllers:
    from formtrack.dependencies import Ingestor

    @router.post("/analytics/track")
    async def track(body: TrackEventRequest, ingestor: Ingestor): ...
"""

from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Request
from psycopg_pool import AsyncConnectionPool

from formtrack.auth import caller_id
from formtrack.config import Settings, get_settings
from formtrack.errors import ServiceUnavailableError
from formtrack.ingestion import EventIngestor
from formtrack.lifespan import LifespanResources
from formtrack.reporting import ReportingFacade


def get_resources(request: Request) -> LifespanResources:
    """Get the resources built at startup.

    Raises:
        ServiceUnavailableError: If the lifespan has not run.
    """
    resources = getattr(request.app.state, "resources", None)
    if resources is None:
        raise ServiceUnavailableError(detail="Analytics storage not initialized")
    return resources


def get_ingestor(resources: Annotated[LifespanResources, Depends(get_resources)]) -> EventIngestor:
    return resources.ingestor


def get_facade(resources: Annotated[LifespanResources, Depends(get_resources)]) -> ReportingFacade:
    return resources.facade


def get_optional_redis(request: Request) -> redis.Redis | None:
    resources = getattr(request.app.state, "resources", None)
    return resources.redis_client if resources else None


def get_optional_pg_pool(request: Request) -> AsyncConnectionPool | None:
    resources = getattr(request.app.state, "resources", None)
    return resources.pg_pool if resources else None


def get_current_user(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> str:
    """User id forwarded by the identity provider.

    Raises:
        AuthorizationError: If the request carries no identity.
    """
    return caller_id(request, settings.auth.user_header)


def client_ip(request: Request) -> str | None:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


Ingestor = Annotated[EventIngestor, Depends(get_ingestor)]
Facade = Annotated[ReportingFacade, Depends(get_facade)]
CurrentUser = Annotated[str, Depends(get_current_user)]
ClientIP = Annotated[str | None, Depends(client_ip)]
OptionalRedis = Annotated[redis.Redis | None, Depends(get_optional_redis)]
OptionalPgPool = Annotated[AsyncConnectionPool | None, Depends(get_optional_pg_pool)]
