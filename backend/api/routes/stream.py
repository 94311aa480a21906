"""
Live stream endpoints.

GET /api/stream/board                     Board snapshot (JSON).
GET /api/stream/live                      SSE stream of the live board.
GET /api/stream/matches/{match_key}       SSE stream of one match's state.
GET /api/stream/competitions/{id}/table   Standings table (provider JSON passthrough).
"""
from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import StreamingResponse

from shared.models.domain import MATCH_KEY_PREFIX
from shared.models.enums import Topic
from shared.utils.circuit_breaker import ResilienceController
from shared.utils.logging import get_logger

from api.dependencies import get_breaker, get_hub, get_match_service, get_standings_service
from api.stream.hub import FanoutHub
from ingest.service import MatchService
from ingest.standings import StandingsService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/stream", tags=["stream"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse(hub: FanoutHub, topic: str) -> StreamingResponse:
    """SSE response whose subscription lives exactly as long as the body iteration."""

    async def frames() -> AsyncIterator[str]:
        sub = hub.subscribe(topic)
        try:
            async with aclosing(sub.stream()) as stream:
                async for frame in stream:
                    yield frame
        finally:
            sub.close()

    return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/board")
async def board(matches: MatchService = Depends(get_match_service)) -> list[dict[str, Any]]:
    """Current board view, for clients that need a full state before streaming."""
    return [m.model_dump(mode="json") for m in await matches.get_board_matches()]


@router.get("/live")
async def live(hub: FanoutHub = Depends(get_hub)) -> StreamingResponse:
    return _sse(hub, Topic.LIVE_BOARD.value)


@router.get("/matches/{match_key}")
async def match_stream(match_key: str, hub: FanoutHub = Depends(get_hub)) -> StreamingResponse:
    if not match_key.startswith(MATCH_KEY_PREFIX):
        raise HTTPException(status_code=404, detail="Unknown match key")
    return _sse(hub, match_key)


@router.get("/competitions/{competition_id}/table")
async def competition_table(
    competition_id: int,
    standings: StandingsService = Depends(get_standings_service),
    breaker: ResilienceController = Depends(get_breaker),
) -> Response:
    payload = await standings.get_competition_table(competition_id)
    if payload is None:
        status = 503 if breaker.is_open() else 502
        raise HTTPException(status_code=status, detail="Standings unavailable")
    return Response(content=payload, media_type="application/json")
