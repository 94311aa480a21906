"""
FastAPI application factory for the livescores API service.

Creates the app with:
- SSE stream routes and the board/standings read routes
- Middleware stack
- Health and status endpoints
- Lifespan management: Redis, provider client, resilience controller,
  fanout hub, reconciliation services and the poll scheduler all live in
  this process so pollers publish straight into the hub
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable

import uvicorn
from fastapi import FastAPI

from shared.config import get_settings
from shared.utils.circuit_breaker import ResilienceController
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from api.dependencies import (
    get_breaker,
    get_hub,
    get_match_service,
    get_provider,
    init_dependencies,
)
from api.middleware import setup_middleware
from api.routes.stream import router as stream_router
from api.stream.hub import FanoutHub
from ingest.providers.livescore import LiveScoreProvider
from ingest.service import MatchService
from ingest.standings import StandingsService
from ingest.store import KeySets, MatchStateStore
from scheduler.pollers import FixturesPoller, LivePoller
from scheduler.service import SchedulerService

logger = get_logger(__name__)

# Retry connection on startup (e.g. Redis not ready yet in Docker)
_CONNECT_RETRY_ATTEMPTS = 10
_CONNECT_RETRY_BASE_DELAY_S = 2.0


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without Redis or the provider."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Wires the ingest pipeline on startup and tears it down in reverse order.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()

    redis = RedisManager(settings)
    await _connect_with_retry(redis.connect, "Redis")

    provider = LiveScoreProvider(redis, settings)
    await provider.start()

    breaker = ResilienceController(settings.provider_name, settings)
    hub = FanoutHub(settings)
    standings = StandingsService(redis, provider, breaker, settings)
    matches = MatchService(
        MatchStateStore(redis, settings),
        KeySets(redis, settings),
        hub,
        standings,
        settings,
    )
    scheduler = SchedulerService(
        LivePoller(provider, breaker, matches, redis, settings=settings),
        FixturesPoller(provider, breaker, matches, settings),
        settings,
    )

    init_dependencies(redis, hub, breaker, provider, matches, standings)
    await scheduler.start()

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        competitions=settings.competition_ids,
    )

    yield

    await scheduler.stop()
    hub.close_all()
    await provider.close()
    await redis.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without Redis."""
    app = FastAPI(
        title="Livescores API",
        description="Live football scores with server-sent event streams",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)
    app.include_router(stream_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/v1/status", tags=["system"])
    async def system_status() -> dict[str, Any]:
        """Resilience controller state, today's quota usage and key set sizes."""
        breaker = get_breaker()
        provider = get_provider()
        matches = get_match_service()
        settings = get_settings()

        quota: dict[str, Any] = {"limit": settings.provider_quota_per_day}
        try:
            quota["used"] = await provider.quota_usage()
        except Exception as exc:
            logger.warning("status_quota_unavailable", error=str(exc))
            quota["used"] = None

        return {
            "status": "degraded" if breaker.is_open() else "ok",
            "provider": breaker.stats,
            "quota": quota,
            "live_matches": len(await matches.get_live_match_keys()),
            "board_matches": len(await matches.get_board_match_keys()),
            "stream_subscribers": get_hub().subscriber_count,
        }

    return app


# For running with uvicorn directly
app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run("api.app:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
