"""FastAPI application factory for the RFQ desk REST adapter."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rfq.api.routes import candles, health, prices, quotes, rfq, settlement
from rfq.exceptions import (
    NotFoundError,
    RFQDeskError,
    SettlementNotReady,
    SigningKeyError,
    UpstreamError,
    ValidationError,
)
from rfq.logging import get_logger

logger = get_logger(__name__)

# Most specific family first; anything else is a 500.
_STATUS_BY_ERROR: list[tuple[type[RFQDeskError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (SettlementNotReady, 409),
    (UpstreamError, 502),
    (SigningKeyError, 500),
]


def status_for(exc: RFQDeskError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def _desk_error_handler(request: Request, exc: RFQDeskError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        status=status_code,
        error_type=type(exc).__name__,
        error=exc.message,
    )
    content: dict[str, Any] = {"error": exc.message or type(exc).__name__}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(content=content, status_code=status_code)


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the REST application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to start and stop the desk.

    Returns:
        Configured FastAPI application with routers and error mapping.
    """
    app = FastAPI(title="FX RFQ Desk", lifespan=lifespan)

    app.add_exception_handler(RFQDeskError, _desk_error_handler)  # type: ignore[arg-type]

    app.include_router(health.router)
    app.include_router(rfq.router, prefix="/api/rfq")
    app.include_router(quotes.router, prefix="/api/quotes")
    app.include_router(settlement.router, prefix="/api/settlement")
    app.include_router(prices.router, prefix="/api/price")
    app.include_router(candles.router, prefix="/api/candles")

    return app
