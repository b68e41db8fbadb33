"""HTTP API routers."""

from barsync.web.metrics import router as metrics_router
from barsync.web.routes.data_routes import router as data_router
from barsync.web.routes.health_routes import router as health_router

__all__ = ["data_router", "health_router", "metrics_router"]
