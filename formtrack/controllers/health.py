from fastapi import APIRouter

from formtrack.db.core import get_pool_stats
from formtrack.dependencies import OptionalPgPool, OptionalRedis

router = APIRouter()


@router.get("/health")
async def health(redis_client: OptionalRedis, pg_pool: OptionalPgPool) -> dict[str, object]:
    redis_status = "disabled"
    if redis_client is not None:
        try:
            await redis_client.ping()
            redis_status = "healthy"
        except Exception:
            redis_status = "unhealthy"

    postgres_status: object = "disabled"
    if pg_pool is not None:
        postgres_status = get_pool_stats(pg_pool)

    return {"status": "ok", "redis": redis_status, "postgres": postgres_status}
