from typing import Optional

from fastapi import FastAPI
import structlog

# Prometheus metrics for FastAPI app
from starlette_prometheus import PrometheusMiddleware, metrics as starlette_metrics

from libs.py_common.config import get_settings
from libs.py_common.errors import register_error_handlers
from libs.py_common.logging import setup_logging
from libs.py_common.middleware import StructlogRequestLoggingMiddleware

from .deps import PayoutsContainer
from .routes import admin_router, internal_router, router as payout_routes_router

logger = structlog.get_logger(__name__)


def create_app(container: Optional[PayoutsContainer] = None) -> FastAPI:
    settings = container.settings if container else get_settings()
    setup_logging(settings.log_level, service="payouts-api", json_logs=settings.log_json)

    app = FastAPI(
        title="Payouts Service API",
        description="Vendor withdrawal requests, admin review and bank transfers.",
        version="0.1.0"
    )
    app.state.container = container or PayoutsContainer.from_settings(settings)

    app.add_middleware(StructlogRequestLoggingMiddleware, service_name="payouts-api")
    app.add_middleware(PrometheusMiddleware)
    app.add_route("/metrics", starlette_metrics)
    register_error_handlers(app)

    @app.on_event("startup")
    async def on_startup():
        logger.info("payouts_service_api_startup", service="payouts-api", event="service_starting")
        logger.info("payouts_service_api_startup_complete", service="payouts-api", event="service_started")

    app.include_router(payout_routes_router)
    app.include_router(admin_router)
    app.include_router(internal_router)

    @app.get("/payouts-health", tags=["health"])
    async def health_check():
        logger.debug("Payouts service API health check endpoint hit")
        return {"status": "ok", "service": "payouts-api"}

    return app


app = create_app()

# To run this API: uvicorn services.payouts.main:app --reload --port 8004
