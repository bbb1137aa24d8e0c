"""Payment Webhook Processor.

Verifies the processor's HMAC-SHA512 signature over the raw body, then settles
`charge.success` events: the order flips to paid and the vendor wallet is
credited in one transaction. Every verified delivery is acknowledged, so
replays, foreign references and other event types return a result instead of
an error.
"""

import hashlib
import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from libs.py_common.db import utcnow
from libs.py_common.errors import AuthError, ConflictError, ValidationError
from libs.py_common.money import to_minor_units
from services.wallet.ledger import WalletLedger

from .metrics import WEBHOOK_AMOUNT_MISMATCH_TOTAL, WEBHOOK_EVENTS_TOTAL, WEBHOOK_PROCESSING_SECONDS
from .models import Order, OrderPaymentAttempt, OrderStatus, PaymentStatus

logger = structlog.get_logger(__name__)

CHARGE_SUCCESS_EVENT = "charge.success"


class WebhookOutcome(str, Enum):
    CREDITED = "credited"
    IGNORED_EVENT = "ignored_event"
    UNKNOWN_REFERENCE = "unknown_reference"
    ALREADY_PAID = "already_paid"


@dataclass(frozen=True)
class WebhookResult:
    outcome: WebhookOutcome
    reference: Optional[str] = None
    order_id: Optional[uuid.UUID] = None


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    data: Any = None  # shape depends on the event type; only charge.success is read


class ChargeData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reference: str = Field(min_length=1)
    paid_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("paid_at", "paidAt"))
    amount: Optional[int] = None  # minor units, as reported by the processor


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class PaymentWebhookProcessor:
    def __init__(self, session_factory: sessionmaker, ledger: WalletLedger, secret: str):
        self.session_factory = session_factory
        self.ledger = ledger
        self.secret = secret

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        if not self.secret:
            logger.error("webhook_secret_not_configured")
            raise AuthError("Webhook signature cannot be verified")
        if not signature:
            raise AuthError("Missing webhook signature")
        expected = compute_signature(raw_body, self.secret)
        if not hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8")):
            raise AuthError("Invalid webhook signature")

    def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        try:
            self.verify_signature(raw_body, signature)
        except AuthError:
            WEBHOOK_EVENTS_TOTAL.labels(outcome="bad_signature").inc()
            logger.warning("webhook_signature_rejected", has_signature=bool(signature))
            raise

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except PydanticValidationError as e:
            WEBHOOK_EVENTS_TOTAL.labels(outcome="invalid_payload").inc()
            raise ValidationError("Webhook body is not a valid event") from e

        if event.event != CHARGE_SUCCESS_EVENT:
            WEBHOOK_EVENTS_TOTAL.labels(outcome=WebhookOutcome.IGNORED_EVENT.value).inc()
            logger.info("webhook_event_ignored", event_type=event.event)
            return WebhookResult(WebhookOutcome.IGNORED_EVENT)

        try:
            charge = ChargeData.model_validate(event.data)
        except PydanticValidationError as e:
            WEBHOOK_EVENTS_TOTAL.labels(outcome="invalid_payload").inc()
            raise ValidationError("Payment event is missing a valid reference") from e

        with WEBHOOK_PROCESSING_SECONDS.time():
            result = self._settle(charge)
        WEBHOOK_EVENTS_TOTAL.labels(outcome=result.outcome.value).inc()
        logger.info(
            "webhook_processed",
            outcome=result.outcome.value,
            reference=charge.reference,
            order_id=str(result.order_id) if result.order_id else None,
        )
        return result

    def _resolve_order_id(self, reference: str) -> Optional[uuid.UUID]:
        with self.session_factory() as session:
            order_id = session.exec(select(Order.id).where(Order.payment_reference == reference)).first()
            if order_id is None:
                # a webhook for an earlier checkout of the same order
                order_id = session.exec(
                    select(OrderPaymentAttempt.order_id).where(OrderPaymentAttempt.reference == reference)
                ).first()
            return order_id

    def _settle(self, charge: ChargeData) -> WebhookResult:
        reference = charge.reference
        order_id = self._resolve_order_id(reference)
        if order_id is None:
            logger.info("webhook_reference_unknown", reference=reference)
            return WebhookResult(WebhookOutcome.UNKNOWN_REFERENCE, reference=reference)

        paid_at = charge.paid_at or utcnow()
        if paid_at.tzinfo is None:
            paid_at = paid_at.replace(tzinfo=timezone.utc)

        # One retry: a duplicate-credit IntegrityError means a concurrent delivery won
        for attempt in range(2):
            with self.session_factory() as session:
                order = session.get(Order, order_id)
            if order.payment_status == PaymentStatus.PAID:
                return WebhookResult(WebhookOutcome.ALREADY_PAID, reference=reference, order_id=order_id)

            amount_minor = to_minor_units(order.total_amount)
            if charge.amount is not None and charge.amount != amount_minor:
                WEBHOOK_AMOUNT_MISMATCH_TOTAL.inc()
                logger.warning(
                    "webhook_amount_mismatch",
                    order_id=str(order_id),
                    expected=amount_minor,
                    reported=charge.amount,
                )

            self.ledger.ensure_wallet(order.vendor_id)
            try:
                with self.session_factory() as session, session.begin():
                    result = session.exec(
                        update(Order)
                        .where(Order.id == order_id)
                        .where(Order.payment_status != PaymentStatus.PAID)
                        .values(
                            payment_status=PaymentStatus.PAID,
                            paid_at=paid_at,
                            status=case(
                                (Order.status == OrderStatus.AWAITING_PAYMENT, OrderStatus.PAID),
                                else_=Order.status,
                            ),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        return WebhookResult(WebhookOutcome.ALREADY_PAID, reference=reference, order_id=order_id)
                    self.ledger.record_credit(session, order.vendor_id, amount_minor, order_id, reference=reference)
                return WebhookResult(WebhookOutcome.CREDITED, reference=reference, order_id=order_id)
            except IntegrityError as e:
                logger.warning("webhook_credit_conflict", order_id=str(order_id), attempt=attempt, error=str(e))

        # order still unpaid while its credit already exists
        logger.critical("webhook_order_credit_inconsistent", order_id=str(order_id), reference=reference)
        raise ConflictError(f"Order {order_id} has a credit but is not marked paid")
