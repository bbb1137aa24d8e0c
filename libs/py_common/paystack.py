"""Paystack adapter for the PaymentProcessor port.

Business rejections (invalid account, insufficient platform balance, ...)
surface as ProcessorRejectedError and do not count against the circuit
breaker; transport failures and 5xx answers do. Only idempotent GET calls are
retried.
"""

import time
from typing import Any, Optional

import pybreaker  # type: ignore
import requests
import structlog
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .config import Settings
from .errors import ExternalProcessorError, ProcessorRejectedError
from .metrics import PROCESSOR_CALLS_TOTAL, PROCESSOR_CIRCUIT_BREAKER_STATE, PROCESSOR_LATENCY_SECONDS
from .processor import Bank, CheckoutInit, PaymentProcessor, Recipient, ResolvedAccount, TransferResult

logger = structlog.get_logger(__name__)

FAILED_TRANSFER_STATUSES = {"failed", "reversed", "abandoned"}


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ExternalProcessorError) and not isinstance(exc, ProcessorRejectedError)


_retry_transient = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


class PaystackClient(PaymentProcessor):
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.breaker = breaker or pybreaker.CircuitBreaker(
            fail_max=5, reset_timeout=60, exclude=[ProcessorRejectedError], name="paystack"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaystackClient":
        if not settings.paystack_secret_key:
            logger.warning("PAYSTACK_SECRET_KEY not set. Processor calls will fail.")
        breaker = pybreaker.CircuitBreaker(
            fail_max=settings.processor_fail_max,
            reset_timeout=settings.processor_reset_timeout,
            exclude=[ProcessorRejectedError],
            name="paystack",
        )
        return cls(
            secret_key=settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            timeout=settings.http_timeout_seconds,
            breaker=breaker,
        )

    # --- transport ---
    def _breaker_state(self) -> float:
        if self.breaker.current_state == pybreaker.STATE_CLOSED:
            return 0
        if self.breaker.current_state == pybreaker.STATE_OPEN:
            return 1
        return 0.5

    def _request(self, api_call: str, method: str, path: str, *, json_body: Optional[dict] = None,
                 params: Optional[dict] = None) -> dict[str, Any]:
        if not self.secret_key:
            PROCESSOR_CALLS_TOTAL.labels(api_call=api_call, outcome="config_error").inc()
            raise ExternalProcessorError("Payment processor secret key is not configured")

        start_time = time.monotonic()
        outcome = "success"
        try:
            return self.breaker.call(self._send, method, path, json_body, params)
        except pybreaker.CircuitBreakerError as e:
            outcome = "circuit_open"
            logger.warning("processor_circuit_open", api_call=api_call, error=str(e))
            raise ExternalProcessorError("Payment processor temporarily unavailable") from e
        except ProcessorRejectedError:
            outcome = "rejected"
            raise
        except ExternalProcessorError:
            outcome = "transport_error"
            raise
        finally:
            PROCESSOR_CALLS_TOTAL.labels(api_call=api_call, outcome=outcome).inc()
            PROCESSOR_LATENCY_SECONDS.labels(api_call=api_call).observe(time.monotonic() - start_time)
            PROCESSOR_CIRCUIT_BREAKER_STATE.set(self._breaker_state())

    def _send(self, method: str, path: str, json_body: Optional[dict], params: Optional[dict]) -> dict[str, Any]:
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=json_body,
                params=params,
                headers={"Authorization": f"Bearer {self.secret_key}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("processor_request_failed", path=path, error=str(e))
            raise ExternalProcessorError(f"Paystack request failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"data": payload}

        if response.status_code >= 500:
            message = payload.get("message") or f"Paystack error ({response.status_code})"
            logger.error("processor_server_error", path=path, status_code=response.status_code, message=message)
            raise ExternalProcessorError(message, raw=payload, upstream_status=response.status_code)
        if not response.ok or not payload.get("status"):
            message = payload.get("message") or f"Paystack error ({response.status_code})"
            logger.info("processor_rejected_call", path=path, status_code=response.status_code, message=message)
            raise ProcessorRejectedError(message, raw=payload, upstream_status=response.status_code)
        return payload

    @staticmethod
    def _parse(model, data: Any, payload: dict):
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ExternalProcessorError(f"Unexpected Paystack response: {e.errors()[0]['msg']}", raw=payload) from e

    # --- API calls ---
    def initialize_transaction(self, email, amount_minor, reference, metadata=None, callback_url=None) -> CheckoutInit:
        body = {"email": email, "amount": amount_minor, "reference": reference, "metadata": metadata or {}}
        if callback_url:
            body["callback_url"] = callback_url
        payload = self._request("transaction_initialize", "POST", "/transaction/initialize", json_body=body)
        data = dict(payload.get("data") or {})
        data.setdefault("reference", reference)
        return self._parse(CheckoutInit, data, payload)

    def create_transfer_recipient(self, name, account_number, bank_code, currency, metadata=None) -> Recipient:
        body = {
            "type": "nuban",
            "name": name,
            "account_number": account_number,
            "bank_code": bank_code,
            "currency": currency,
            "metadata": metadata or {},
        }
        payload = self._request("transferrecipient_create", "POST", "/transferrecipient", json_body=body)
        return self._parse(Recipient, payload.get("data") or {}, payload)

    def initiate_transfer(self, amount_minor, recipient_code, reference, reason) -> TransferResult:
        body = {
            "source": "balance",
            "amount": amount_minor,
            "recipient": recipient_code,
            "reference": reference,
            "reason": reason,
        }
        payload = self._request("transfer_initiate", "POST", "/transfer", json_body=body)
        data = dict(payload.get("data") or {})
        data.setdefault("reference", reference)
        if not data.get("transfer_code"):
            data["transfer_code"] = data["reference"]
        result = self._parse(TransferResult, data, payload)
        if result.status.lower() in FAILED_TRANSFER_STATUSES:
            PROCESSOR_CALLS_TOTAL.labels(api_call="transfer_initiate", outcome="failed_status").inc()
            raise ProcessorRejectedError(f"Transfer {result.transfer_code} reported status {result.status}", raw=payload)
        return result

    @_retry_transient
    def list_banks(self, currency) -> list[Bank]:
        payload = self._request("bank_list", "GET", "/bank", params={"currency": currency})
        return [self._parse(Bank, item, payload) for item in payload.get("data") or []]

    @_retry_transient
    def resolve_account(self, account_number, bank_code) -> ResolvedAccount:
        payload = self._request(
            "bank_resolve", "GET", "/bank/resolve",
            params={"account_number": account_number, "bank_code": bank_code},
        )
        return self._parse(ResolvedAccount, payload.get("data") or {}, payload)
