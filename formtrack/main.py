import logging

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from formtrack.config import get_settings
from formtrack.controllers.health import router as health_router
from formtrack.controllers.reports import router as reports_router
from formtrack.controllers.tracking import router as tracking_router
from formtrack.errors import register_exception_handlers
from formtrack.lifespan import cleanup_resources, setup_resources
from formtrack.middleware import HTTPLogMiddleware

settings = get_settings()

app = FastAPI(title="formtrack Analytics API", version="1.0.0")
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

if settings.debug.request:
    logging.getLogger("formtrack.http").setLevel(logging.DEBUG)
    app.add_middleware(HTTPLogMiddleware)

if settings.analytics.debug:
    logging.getLogger("formtrack.sessions").setLevel(logging.DEBUG)
    logging.getLogger("formtrack.aggregator").setLevel(logging.DEBUG)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    resources = await setup_resources(get_settings())
    _app.state.resources = resources
    try:
        yield
    finally:
        await cleanup_resources(resources)
        _app.state.resources = None


app.router.lifespan_context = lifespan

app.include_router(health_router)
app.include_router(tracking_router)
app.include_router(reports_router)

Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
