"""
Dependency injection for the API service.
Provides the Redis manager, fanout hub, resilience controller and read
services to route handlers.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from shared.utils.circuit_breaker import ResilienceController
from shared.utils.redis_manager import RedisManager

from api.stream.hub import FanoutHub

if TYPE_CHECKING:
    from ingest.providers.base import BaseProvider
    from ingest.service import MatchService
    from ingest.standings import StandingsService

# Module-level singletons, initialized at startup
_redis: RedisManager | None = None
_hub: FanoutHub | None = None
_breaker: ResilienceController | None = None
_provider: "BaseProvider | None" = None
_matches: "MatchService | None" = None
_standings: "StandingsService | None" = None


def init_dependencies(
    redis: RedisManager,
    hub: FanoutHub,
    breaker: ResilienceController,
    provider: "BaseProvider",
    matches: "MatchService",
    standings: "StandingsService",
) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _redis, _hub, _breaker, _provider, _matches, _standings
    _redis = redis
    _hub = hub
    _breaker = breaker
    _provider = provider
    _matches = matches
    _standings = standings


def get_redis() -> RedisManager:
    """FastAPI dependency: returns the shared RedisManager."""
    if _redis is None:
        raise RuntimeError("RedisManager not initialized; call init_dependencies first")
    return _redis


def get_hub() -> FanoutHub:
    if _hub is None:
        raise RuntimeError("FanoutHub not initialized; call init_dependencies first")
    return _hub


def get_breaker() -> ResilienceController:
    if _breaker is None:
        raise RuntimeError("ResilienceController not initialized; call init_dependencies first")
    return _breaker


def get_provider() -> "BaseProvider":
    if _provider is None:
        raise RuntimeError("Provider not initialized; call init_dependencies first")
    return _provider


def get_match_service() -> "MatchService":
    if _matches is None:
        raise RuntimeError("MatchService not initialized; call init_dependencies first")
    return _matches


def get_standings_service() -> "StandingsService":
    if _standings is None:
        raise RuntimeError("StandingsService not initialized; call init_dependencies first")
    return _standings
