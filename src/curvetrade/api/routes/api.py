"""JSON endpoints for quoting, cooldown lookup, trade submission and status."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from web3 import Web3

from curvetrade.exceptions import (
    CapExceededError,
    CooldownActiveError,
    CurveTradeError,
    InsufficientLiquidityError,
    InvalidInputError,
    StaleQuoteError,
    SubmissionRevertedError,
    TransportError,
    ZeroPriceError,
)
from curvetrade.models import Quote, TradeSide

log = structlog.get_logger(__name__)

router = APIRouter()

_STATUS_CODES: list[tuple[type[CurveTradeError], int]] = [
    (InvalidInputError, 400),
    (TransportError, 503),
    (CooldownActiveError, 409),
    (CapExceededError, 409),
    (StaleQuoteError, 409),
    (InsufficientLiquidityError, 409),
    (ZeroPriceError, 409),
    (SubmissionRevertedError, 422),
]


class TradeRequest(BaseModel):
    quote_id: str


def error_response(exc: CurveTradeError) -> JSONResponse:
    """Map a curvetrade error to a JSON body carrying its code."""
    status = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


def _remember(app: FastAPI, quote: Quote) -> None:
    quotes = app.state.quotes
    quotes[quote.quote_id] = quote
    while len(quotes) > app.state.max_stored_quotes:
        quotes.popitem(last=False)


async def _quote(
    request: Request, side: TradeSide, usd: str, slippage: str | None, address: str
) -> JSONResponse:
    if not Web3.is_address(address):
        return error_response(InvalidInputError(f"Invalid wallet address: {address}"))
    engine = request.app.state.quote_engine
    if slippage is None:
        slippage = request.app.state.settings.curve.default_slippage_pct

    if side is TradeSide.BUY:
        result = await engine.quote_buy(usd, slippage, address)
    else:
        result = await engine.quote_sell(usd, slippage, address)

    if isinstance(result, CurveTradeError):
        log.info("quote_rejected", side=side.value, address=address, code=result.code)
        return error_response(result)

    _remember(request.app, result)
    return JSONResponse(content=result.to_dict())


@router.get("/quote/buy")
async def quote_buy(
    request: Request, usd: str, address: str, slippage: str | None = None
) -> JSONResponse:
    """Quote spending `usd` dollars."""
    return await _quote(request, TradeSide.BUY, usd, slippage, address)


@router.get("/quote/sell")
async def quote_sell(
    request: Request, usd: str, address: str, slippage: str | None = None
) -> JSONResponse:
    """Quote selling about `usd` dollars worth of tokens."""
    return await _quote(request, TradeSide.SELL, usd, slippage, address)


@router.get("/cooldown/{address}")
async def get_cooldown(request: Request, address: str) -> JSONResponse:
    if not Web3.is_address(address):
        return error_response(InvalidInputError(f"Invalid wallet address: {address}"))
    guard = request.app.state.limit_guard
    try:
        remaining = await guard.cooldown_remaining(address)
    except TransportError as exc:
        return error_response(exc)
    return JSONResponse(content={"address": address, "remaining_seconds": remaining})


@router.post("/trade")
async def submit_trade(request: Request, body: TradeRequest) -> JSONResponse:
    """Submit a quote previously issued by this process."""
    quote = request.app.state.quotes.get(body.quote_id)
    if quote is None:
        return JSONResponse(
            status_code=404,
            content={"error": {"code": "unknown_quote", "message": "Quote not found or expired", "retryable": True}},
        )
    submitter = request.app.state.submitter
    try:
        result = await submitter.submit(quote)
    except CurveTradeError as exc:
        log.warning("trade_submission_failed", quote_id=body.quote_id, code=exc.code)
        return error_response(exc)
    finally:
        request.app.state.quotes.pop(body.quote_id, None)
    return JSONResponse(content=result.to_dict())


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    controller = request.app.state.controller
    feed = request.app.state.feed
    selection = controller.selection
    content: dict[str, Any] = {
        "state": controller.state.value,
        "selection": (
            {"artist_id": selection.artist_id, "timeframe": selection.timeframe.value}
            if selection is not None
            else None
        ),
        "feed_connected": feed.connected,
        "candles": len(controller.series),
        "last_error": controller.last_error,
    }
    return JSONResponse(content=content)
