"""Trade views, funding, and settlement endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from rfq.api.payloads import read_json_body, trade_to_dict

router = APIRouter()


@router.get("/trade/{trade_id}")
async def get_trade(trade_id: str, request: Request) -> JSONResponse:
    """Trade as the ledger currently reports it."""
    trade = await request.app.state.desk.settlement.get_trade_view(trade_id)
    return JSONResponse(content={"success": True, "trade": trade_to_dict(trade)})


@router.post("/trade/{trade_id}/fund")
async def fund_trade(trade_id: str, request: Request) -> JSONResponse:
    """Fund one side of a trade: ``{userAddress, role: "taker" | "maker"}``."""
    settlement = request.app.state.desk.settlement
    body = await read_json_body(request, "userAddress", "role")

    tx_hash = await settlement.fund(trade_id, body["userAddress"], body["role"])
    return JSONResponse(content={
        "success": True,
        "message": "Trade funded on-chain",
        "txHash": tx_hash,
    })


@router.post("/trade/{trade_id}/settle")
async def settle_trade(trade_id: str, request: Request) -> JSONResponse:
    """Settle a trade once both sides are funded and its time has come."""
    tx_hash = await request.app.state.desk.settlement.settle(trade_id)
    return JSONResponse(content={
        "success": True,
        "message": "Trade settled on-chain",
        "txHash": tx_hash,
    })


@router.get("/ready")
async def get_ready(request: Request) -> JSONResponse:
    trades = request.app.state.desk.settlement.ready_for_settlement()
    return JSONResponse(content={
        "success": True,
        "trades": [trade_to_dict(t) for t in trades],
        "count": len(trades),
    })


@router.get("/trades")
async def get_user_trades(
    request: Request,
    user_address: str = Query("", alias="userAddress"),
) -> JSONResponse:
    """Trades where ``userAddress`` is taker or maker, newest first."""
    trades = await request.app.state.desk.settlement.trades_for_user(user_address)
    return JSONResponse(content={
        "success": True,
        "trades": [trade_to_dict(t) for t in trades],
        "count": len(trades),
    })
