"""REST adapter -- FastAPI application and routers."""

from rfq.api.app import create_app

__all__ = ["create_app"]
