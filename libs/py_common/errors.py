"""Error taxonomy shared by the payments and payouts services.

Services raise these; each FastAPI app maps them to JSON responses in exactly
one place (`register_error_handlers`). Callers must be able to tell
"nothing happened" (every class except `PartialFailureError`) from "money moved
but the local record did not commit" (`PartialFailureError`).
"""

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class PaymentsError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "kind": self.kind}


class ValidationError(PaymentsError):
    """Malformed or missing input."""

    kind = "validation"
    status_code = 400


class AuthError(PaymentsError):
    """Bad webhook signature or missing caller identity."""

    kind = "auth"
    status_code = 401


class NotFoundError(PaymentsError):
    kind = "not_found"
    status_code = 404


class ConflictError(PaymentsError):
    """A state precondition does not hold (already paid, wrong payout status...)."""

    kind = "conflict"
    status_code = 409


class ExternalProcessorError(PaymentsError):
    """The payment processor rejected or failed a call. Nothing was recorded locally."""

    kind = "processor"
    status_code = 400

    def __init__(self, message: str, raw: Any = None, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.raw = raw
        self.upstream_status = upstream_status

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.raw is not None:
            body["raw"] = self.raw
        return body


class ProcessorRejectedError(ExternalProcessorError):
    """The processor answered and said no (invalid account, insufficient balance...).

    Kept apart from transport failures so it does not trip the circuit breaker.
    """


class PartialFailureError(PaymentsError):
    """An external side effect succeeded but its local record did not commit."""

    kind = "partial_failure"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        reference: str,
        transfer_code: Optional[str] = None,
        checkout_url: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.reference = reference
        self.transfer_code = transfer_code
        self.checkout_url = checkout_url
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["reference"] = self.reference
        if self.transfer_code is not None:
            body["transfer"] = {"transfer_code": self.transfer_code, "reference": self.reference}
        if self.checkout_url is not None:
            body["checkout_url"] = self.checkout_url
        if self.cause is not None:
            body["cause"] = str(self.cause)
        return body


async def payments_error_handler(request: Request, exc: PaymentsError) -> JSONResponse:
    log = logger.critical if isinstance(exc, PartialFailureError) else logger.info
    log(
        "request_failed",
        path=str(request.url.path),
        method=request.method,
        kind=exc.kind,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies are ValidationErrors like any other bad input
    errors = jsonable_encoder(exc.errors())
    logger.info("request_validation_failed", path=str(request.url.path), errors=errors)
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"error": "Invalid request", "kind": ValidationError.kind, "details": errors},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PaymentsError, payments_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
