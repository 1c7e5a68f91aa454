"""JSON request parsing and response serialization for the REST adapter.

Responses use the camelCase field names wallet frontends already consume.
Decimals are rendered as strings so no precision is lost in transit.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request

from rfq.exceptions import ValidationError
from rfq.models import RFQ, Candle, Quote, RatePoint, Trade


async def read_json_body(request: Request, *required: str) -> dict[str, Any]:
    """Parse a JSON object body and check required top-level fields are present."""
    try:
        body = await request.json()
    except Exception as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    missing = [field for field in required if not body.get(field)]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required", missing=missing)
    return body


def rfq_to_dict(rfq: RFQ) -> dict[str, Any]:
    return {
        "id": rfq.id,
        "from": {"currency": rfq.from_currency, "amount": str(rfq.from_amount)},
        "to": {"currency": rfq.to_currency},
        "tenor": rfq.tenor.value,
        "takerAddress": rfq.taker_address,
        "timestamp": int(rfq.created_at * 1000),
    }


def quote_to_dict(quote: Quote) -> dict[str, Any]:
    return {
        "id": quote.id,
        "rfqId": quote.rfq_id,
        "makerAddress": quote.maker_address,
        "fromCurrency": quote.from_currency,
        "toCurrency": quote.to_currency,
        "fromAmount": str(quote.from_amount),
        "toAmount": str(quote.to_amount),
        "rate": str(quote.rate),
        "expiry": quote.expiry,
        "selected": quote.selected,
    }


def trade_to_dict(trade: Trade) -> dict[str, Any]:
    result: dict[str, Any] = {
        "id": trade.id,
        "rfqId": trade.rfq_id,
        "quoteId": trade.quote_id,
        "takerAddress": trade.taker_address,
        "makerAddress": trade.maker_address,
        "fromToken": trade.from_currency,
        "toToken": trade.to_currency,
        "fromAmount": str(trade.from_amount),
        "toAmount": str(trade.to_amount),
        "settlementTime": trade.settlement_time,
        "status": trade.status.value,
    }
    if trade.tx_hash:
        result["txHash"] = trade.tx_hash
    # Funding flags are only known for ledger-derived views
    if trade.settled is not None:
        result["takerFunded"] = trade.taker_funded
        result["makerFunded"] = trade.maker_funded
        result["settled"] = trade.settled
    return result


def candle_to_dict(candle: Candle) -> dict[str, Any]:
    return {
        "time": candle.time,
        "open": str(candle.open),
        "high": str(candle.high),
        "low": str(candle.low),
        "close": str(candle.close),
    }


def rate_point_to_dict(point: RatePoint) -> dict[str, Any]:
    return {"time": point.time, "rate": str(point.rate)}
