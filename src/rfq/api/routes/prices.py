"""Spot rate and rate history endpoints."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rfq.api.payloads import rate_point_to_dict

router = APIRouter()


@router.get("/{from_currency}/{to_currency}")
async def get_price(from_currency: str, to_currency: str, request: Request) -> JSONResponse:
    oracle = request.app.state.desk.oracle
    source, target = from_currency.upper(), to_currency.upper()
    rate = await oracle.get_rate(source, target)
    return JSONResponse(content={
        "success": True,
        "fromCurrency": source,
        "toCurrency": target,
        "rate": str(rate),
        "timestamp": int(time.time() * 1000),
    })


@router.get("/{from_currency}/{to_currency}/history")
async def get_history(
    from_currency: str,
    to_currency: str,
    request: Request,
    days: str = "7",
    interval: str = "hourly",
) -> JSONResponse:
    """Cross-rate series for charting; empty when the source is unavailable."""
    oracle = request.app.state.desk.oracle
    source, target = from_currency.upper(), to_currency.upper()
    points = await oracle.get_history(source, target, days, interval)
    return JSONResponse(content={
        "success": True,
        "fromCurrency": source,
        "toCurrency": target,
        "data": [rate_point_to_dict(p) for p in points],
    })
