"""OHLC candle endpoint for the configured pair."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rfq.api.payloads import candle_to_dict
from rfq.exceptions import ValidationError
from rfq.market_data.candles import TIMEFRAME_SECONDS

router = APIRouter()


@router.get("/{pair}")
async def get_candles(pair: str, request: Request, tf: str = "1h", limit: str = "200") -> JSONResponse:
    aggregator = request.app.state.desk.candles
    if pair != aggregator.pair:
        raise ValidationError(f"Only {aggregator.pair} pair is supported for now", pair=pair)
    if tf not in TIMEFRAME_SECONDS:
        raise ValidationError(
            f"Invalid timeframe, expected one of: {', '.join(TIMEFRAME_SECONDS)}",
            timeframe=tf,
        )

    try:
        limit_num = int(limit) or 200
    except ValueError:
        limit_num = 200

    candles = aggregator.get_candles(tf, limit_num)
    return JSONResponse(content={
        "success": True,
        "pair": pair,
        "timeframe": tf,
        "data": [candle_to_dict(c) for c in candles],
    })
