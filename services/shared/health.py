"""Liveness and readiness endpoints (/health and /ready)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional, Union

import redis
import redis.asyncio as aioredis
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def check_database_health(engine: Optional[Engine]) -> bool:
    """Return True when ``SELECT 1`` succeeds on the engine."""
    if engine is None:
        return False

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except SQLAlchemyError:
        return False


async def check_redis_health(
    redis_client: Optional[Union[redis.Redis, aioredis.Redis, str]] = None,
) -> Optional[bool]:
    """Ping Redis.

    Returns True when reachable, False when configured but unreachable and
    None when Redis is not configured at all.
    """
    if not redis_client:
        return None

    try:
        if isinstance(redis_client, str):
            temp_client = aioredis.from_url(redis_client)
            try:
                await asyncio.wait_for(temp_client.ping(), timeout=1.0)
            finally:
                await temp_client.aclose()
            return True

        if isinstance(redis_client, redis.Redis):
            redis_client.ping()
            return True

        await asyncio.wait_for(redis_client.ping(), timeout=1.0)
        return True
    except (redis.RedisError, OSError, asyncio.TimeoutError):
        return False


def create_health_router(
    service_name: str,
    database_engine: Optional[Engine] = None,
    redis_client: Optional[Union[redis.Redis, aioredis.Redis, str]] = None,
) -> APIRouter:
    router = APIRouter(tags=["Health"])

    @router.get("/health", status_code=status.HTTP_200_OK)
    def health():
        """Always 200 while the process is up; dependencies are checked by /ready."""
        return {
            "status": "ok",
            "service": service_name,
            "timestamp": _timestamp(),
        }

    @router.get("/ready", status_code=status.HTTP_200_OK)
    async def ready():
        checks = {
            "database": check_database_health(database_engine),
            "redis": await check_redis_health(redis_client),
        }
        # redis=None means not configured, which does not make the service unready
        all_healthy = checks["database"] and checks["redis"] is not False

        return JSONResponse(
            content={
                "status": "ready" if all_healthy else "not_ready",
                "service": service_name,
                "timestamp": _timestamp(),
                "checks": checks,
            },
            status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return router
