"""RFQ creation and lookup endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rfq.api.payloads import read_json_body, rfq_to_dict
from rfq.exceptions import ValidationError

router = APIRouter()


@router.post("")
async def create_rfq(request: Request) -> JSONResponse:
    """Create an RFQ from ``{from: {currency, amount}, to: {currency}, tenor, takerAddress}``."""
    registry = request.app.state.desk.registry
    body = await read_json_body(request, "from", "to", "tenor", "takerAddress")

    source = body["from"]
    target = body["to"]
    if not isinstance(source, dict) or not isinstance(target, dict):
        raise ValidationError("Invalid RFQ request")

    rfq_id = registry.create(
        from_currency=source.get("currency"),
        from_amount=source.get("amount"),
        to_currency=target.get("currency"),
        tenor=body["tenor"],
        taker_address=body["takerAddress"],
    )
    return JSONResponse(content={
        "success": True,
        "rfqId": rfq_id,
        "message": "RFQ created successfully",
    })


@router.get("/pending")
async def get_pending(request: Request) -> JSONResponse:
    """RFQs still open for quoting, newest first."""
    rfqs = request.app.state.desk.registry.list_pending()
    return JSONResponse(content={
        "success": True,
        "rfqs": [rfq_to_dict(r) for r in rfqs],
        "count": len(rfqs),
    })


@router.get("/{rfq_id}")
async def get_rfq(rfq_id: str, request: Request) -> JSONResponse:
    rfq = request.app.state.desk.registry.require(rfq_id)
    return JSONResponse(content={"success": True, "rfq": rfq_to_dict(rfq)})
