"""HTTP API for barsync."""

from barsync.web.app import create_app
from barsync.web.models import APIResponse, ErrorResponse
from barsync.web.routes import data_router, health_router

__all__ = ["APIResponse", "ErrorResponse", "create_app", "data_router", "health_router"]
