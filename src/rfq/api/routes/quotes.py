"""Quote listing, manual submission, and acceptance endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rfq.api.payloads import quote_to_dict, read_json_body, trade_to_dict

router = APIRouter()


@router.get("/{rfq_id}")
async def get_quotes(rfq_id: str, request: Request) -> JSONResponse:
    """All quotes for an RFQ plus the current best."""
    quote_book = request.app.state.desk.quote_book
    quotes = quote_book.list(rfq_id)
    best = quote_book.best(rfq_id)
    return JSONResponse(content={
        "success": True,
        "quotes": [quote_to_dict(q) for q in quotes],
        "bestQuote": quote_to_dict(best) if best is not None else None,
        "count": len(quotes),
    })


@router.post("")
async def submit_quote(request: Request) -> JSONResponse:
    """Submit a quote for ``rfqId`` as ``makerAddress``, optionally at a given ``toAmount``."""
    makers = request.app.state.desk.makers
    body = await read_json_body(request, "rfqId", "makerAddress")

    quote = await makers.submit_manual_quote(
        body["rfqId"], body["makerAddress"], body.get("toAmount")
    )
    return JSONResponse(content={
        "success": True,
        "quoteId": quote.id,
        "message": "Quote submitted successfully",
    })


@router.post("/{rfq_id}/accept")
async def accept_quote(rfq_id: str, request: Request) -> JSONResponse:
    """Accept a quote with the taker's EIP-712 signature and create the trade."""
    settlement = request.app.state.desk.settlement
    body = await read_json_body(request, "quoteId", "takerAddress", "takerSig")

    trade = await settlement.accept_quote(
        rfq_id,
        body["quoteId"],
        body["takerAddress"],
        body["takerSig"],
        body.get("settlementTime"),
    )
    return JSONResponse(content={
        "success": True,
        "trade": trade_to_dict(trade),
        "message": "Quote accepted, trade created",
    })
