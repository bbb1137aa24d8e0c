from typing import Optional

from fastapi import FastAPI
import structlog

from starlette_prometheus import PrometheusMiddleware, metrics as starlette_metrics

from libs.py_common.config import get_settings
from libs.py_common.errors import register_error_handlers
from libs.py_common.logging import setup_logging
from libs.py_common.middleware import StructlogRequestLoggingMiddleware

from .deps import PaymentsContainer
from .routes import router as payments_router

logger = structlog.get_logger(__name__)


def create_app(container: Optional[PaymentsContainer] = None) -> FastAPI:
    settings = container.settings if container else get_settings()
    setup_logging(settings.log_level, service="payments-api", json_logs=settings.log_json)

    app = FastAPI(
        title="Payments Service API",
        description="Checkout initialization, processor webhooks and bank lookups.",
        version="0.1.0"
    )
    app.state.container = container or PaymentsContainer.from_settings(settings)

    app.add_middleware(StructlogRequestLoggingMiddleware, service_name="payments-api")
    app.add_middleware(PrometheusMiddleware)
    app.add_route("/metrics", starlette_metrics)
    register_error_handlers(app)

    @app.on_event("startup")
    async def on_startup():
        logger.info("payments_service_api_startup", service="payments-api", event="service_starting")
        if not app.state.container.settings.webhook_secret:
            logger.warning("Webhook secret not set. Every webhook delivery will be rejected.")
        logger.info("payments_service_api_startup_complete", service="payments-api", event="service_started")

    app.include_router(payments_router)

    @app.get("/payments-health", tags=["health"])
    async def health_check():
        logger.debug("Payments service API health check endpoint hit")
        return {"status": "ok", "service": "payments-api"}

    return app


app = create_app()

# To run this API: uvicorn services.payments.main:app --reload --port 8005
