import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-paystack-signature"}


class StructlogRequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, service_name: str):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
            service=self.service_name,
        )

        start_time = time.time()
        status_code = 500  # unhandled exceptions

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            logger.error(
                "unhandled_exception_during_request",
                exc_info=True,
                path=str(request.url.path),
                method=request.method,
            )
            raise
        finally:
            client = request.client
            logger.info(
                "http_request_completed",
                http={
                    "request": {
                        "method": request.method,
                        "url": str(request.url),
                        "headers": {k: v for k, v in request.headers.items() if k.lower() not in SENSITIVE_HEADERS},
                    },
                    "response": {"status_code": status_code},
                },
                network={"client": {"ip": client.host if client else None}},
                duration_ms=round((time.time() - start_time) * 1000, 2),
                path=str(request.url.path),
                method=request.method,
            )

        return response
