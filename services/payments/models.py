import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Column, Field, SQLModel

from libs.py_common.db import utcnow


class PaymentStatus:
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus:
    # Fulfilment statuses are owned by order placement; only this transition happens here
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"


PAYMENT_METHOD_PAYSTACK = "paystack"


class OrderBase(SQLModel):
    vendor_id: uuid.UUID = Field(sa_column=Column(sa.Uuid, nullable=False, index=True))
    customer_id: str = Field(nullable=False, index=True)
    customer_email: Optional[str] = Field(default=None)
    total_amount: Decimal = Field(sa_column=Column(sa.Numeric(12, 2), nullable=False))  # major units
    status: str = Field(default=OrderStatus.AWAITING_PAYMENT, nullable=False)
    payment_status: str = Field(default=PaymentStatus.AWAITING_PAYMENT, nullable=False, index=True)
    payment_method: Optional[str] = Field(default=None)


class Order(OrderBase, table=True):
    __tablename__ = "orders"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True, nullable=False)
    payment_reference: Optional[str] = Field(
        default=None, sa_column=Column(sa.String, nullable=True, unique=True, index=True)
    )  # latest attempt; older ones live in order_payment_attempt
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(sa.DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(sa.DateTime(timezone=True), nullable=False)
    )


class OrderRead(OrderBase):
    id: uuid.UUID
    payment_reference: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime


class OrderPaymentAttempt(SQLModel, table=True):
    __tablename__ = "order_payment_attempt"

    reference: str = Field(sa_column=Column(sa.String, primary_key=True, nullable=False))
    order_id: uuid.UUID = Field(sa_column=Column(sa.Uuid, nullable=False, index=True))
    amount_minor: int = Field(nullable=False)
    checkout_url: str = Field(nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(sa.DateTime(timezone=True), nullable=False)
    )
