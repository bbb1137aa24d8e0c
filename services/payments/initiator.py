import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from libs.py_common.errors import (
    ConflictError,
    ExternalProcessorError,
    NotFoundError,
    PartialFailureError,
    ValidationError,
)
from libs.py_common.money import to_minor_units
from libs.py_common.processor import PaymentProcessor

from .metrics import PARTIAL_FAILURES_TOTAL, PAYMENT_INITIATIONS_TOTAL
from .models import PAYMENT_METHOD_PAYSTACK, Order, OrderPaymentAttempt, PaymentStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    checkout_url: str
    reference: str


def new_payment_reference(order_id: uuid.UUID) -> str:
    return f"order_{order_id}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class OrderPaymentInitiator:
    """Starts a hosted checkout for an order and stores the reference the webhook will match on."""

    def __init__(
        self,
        session_factory: sessionmaker,
        processor: PaymentProcessor,
        callback_url: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.processor = processor
        self.callback_url = callback_url

    def initiate(self, order_id: uuid.UUID, payer_id: str) -> CheckoutSession:
        with self.session_factory() as session:
            order = session.get(Order, order_id)
        if order is None or order.customer_id != payer_id:
            # same answer for "missing" and "not yours"
            raise NotFoundError(f"Order {order_id} not found")
        if order.payment_status == PaymentStatus.PAID:
            PAYMENT_INITIATIONS_TOTAL.labels(outcome="conflict").inc()
            raise ConflictError(f"Order {order_id} is already paid")
        amount_minor = to_minor_units(order.total_amount)
        if not order.customer_email:
            raise ValidationError(f"Order {order_id} has no customer email")

        reference = new_payment_reference(order.id)
        log = logger.bind(order_id=str(order.id), reference=reference, amount_minor=amount_minor)
        try:
            checkout = self.processor.initialize_transaction(
                email=order.customer_email,
                amount_minor=amount_minor,
                reference=reference,
                metadata={"order_id": str(order.id), "vendor_id": str(order.vendor_id)},
                callback_url=self.callback_url,
            )
        except ExternalProcessorError as e:
            PAYMENT_INITIATIONS_TOTAL.labels(outcome="processor_error").inc()
            log.warning("payment_initialize_rejected", error=e.message)
            raise

        try:
            self._persist(order.id, reference, amount_minor, checkout.authorization_url)
        except SQLAlchemyError as e:
            PAYMENT_INITIATIONS_TOTAL.labels(outcome="partial_failure").inc()
            PARTIAL_FAILURES_TOTAL.labels(operation="initialize").inc()
            log.critical("payment_reference_not_persisted", checkout_url=checkout.authorization_url, error=str(e))
            raise PartialFailureError(
                "Checkout was created but its reference could not be saved",
                reference=reference,
                checkout_url=checkout.authorization_url,
                cause=e,
            ) from e

        PAYMENT_INITIATIONS_TOTAL.labels(outcome="success").inc()
        log.info("payment_initialized")
        return CheckoutSession(checkout_url=checkout.authorization_url, reference=reference)

    def _persist(self, order_id: uuid.UUID, reference: str, amount_minor: int, checkout_url: str) -> None:
        with self.session_factory() as session, session.begin():
            session.add(
                OrderPaymentAttempt(
                    reference=reference, order_id=order_id, amount_minor=amount_minor, checkout_url=checkout_url
                )
            )
            result = session.exec(
                update(Order)
                .where(Order.id == order_id)
                .where(Order.payment_status != PaymentStatus.PAID)
                .values(payment_reference=reference, payment_method=PAYMENT_METHOD_PAYSTACK)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # paid by an earlier checkout while this one was being created
                raise ConflictError(f"Order {order_id} was paid while initializing checkout")
