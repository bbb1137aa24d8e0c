import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Column, Field, SQLModel

from libs.py_common.db import utcnow


class LedgerKind:
    ORDER_CREDIT = "order_credit"
    PAYOUT_DEBIT = "payout_debit"


LEDGER_STATUS_POSTED = "posted"


def order_credit_key(order_id: uuid.UUID) -> str:
    return f"{LedgerKind.ORDER_CREDIT}:{order_id}"


def payout_debit_key(payout_request_id: uuid.UUID) -> str:
    return f"{LedgerKind.PAYOUT_DEBIT}:{payout_request_id}"


class Wallet(SQLModel, table=True):
    # Cached balance; only the ledger writes it, in the same transaction as the entry
    vendor_id: uuid.UUID = Field(sa_column=Column(sa.Uuid, primary_key=True, nullable=False))
    balance: int = Field(default=0, nullable=False)  # minor units
    currency: str = Field(default="NGN", nullable=False)
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(sa.DateTime(timezone=True), nullable=False)
    )


class LedgerTransactionBase(SQLModel):
    vendor_id: uuid.UUID = Field(sa_column=Column(sa.Uuid, nullable=False, index=True))
    order_id: Optional[uuid.UUID] = Field(default=None, sa_column=Column(sa.Uuid, nullable=True, index=True))
    payout_request_id: Optional[uuid.UUID] = Field(
        default=None, sa_column=Column(sa.Uuid, nullable=True, index=True)
    )
    amount: int = Field(nullable=False)  # always positive, minor units; direction comes from kind
    kind: str = Field(nullable=False, index=True)  # order_credit, payout_debit
    status: str = Field(default=LEDGER_STATUS_POSTED, nullable=False)
    reference: Optional[str] = Field(default=None, index=True)  # processor reference
    description: Optional[str] = Field(default=None)


class LedgerTransaction(LedgerTransactionBase, table=True):
    __tablename__ = "ledger_transaction"
    __table_args__ = (
        sa.CheckConstraint("amount > 0", name="ck_ledger_transaction_amount_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True, nullable=False)
    idempotency_key: str = Field(sa_column=Column(sa.String, nullable=False, unique=True))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(sa.DateTime(timezone=True), nullable=False, index=True)
    )

    @property
    def signed_amount(self) -> int:
        return self.amount if self.kind == LedgerKind.ORDER_CREDIT else -self.amount


class LedgerTransactionRead(LedgerTransactionBase):
    id: uuid.UUID
    idempotency_key: str
    created_at: datetime
