"""Chart endpoints: merged candle series and artist/timeframe selection."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from curvetrade.market_data.controller import MarketDataController
from curvetrade.models import Candle

log = structlog.get_logger(__name__)

router = APIRouter()


class SelectionRequest(BaseModel):
    artist_id: str
    timeframe: str


def series_payload(
    controller: MarketDataController, series: list[Candle] | None = None
) -> dict:
    """Series message shared by GET /api/candles and the /ws push."""
    selection = controller.selection
    candles = controller.series if series is None else series
    return {
        "type": "series",
        "artist_id": selection.artist_id if selection else None,
        "timeframe": selection.timeframe.value if selection else None,
        "state": controller.state.value,
        "candles": [c.to_dict() for c in candles],
    }


@router.get("/candles")
async def get_candles(request: Request) -> JSONResponse:
    return JSONResponse(content=series_payload(request.app.state.controller))


@router.post("/selection")
async def select(request: Request, body: SelectionRequest) -> JSONResponse:
    """Switch the chart; history loads before the response returns."""
    controller: MarketDataController = request.app.state.controller
    try:
        await controller.select(body.artist_id, body.timeframe)
    except ValueError as exc:
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "invalid_input", "message": str(exc), "retryable": False}},
        )
    log.info("chart_selection_changed", artist_id=body.artist_id, timeframe=body.timeframe)
    return JSONResponse(content=series_payload(controller))
