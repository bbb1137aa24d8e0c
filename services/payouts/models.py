import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Column, Field, SQLModel

from libs.py_common.db import utcnow


class PayoutStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"

    ALL = (PENDING, APPROVED, REJECTED, PAID, CANCELLED)
    TERMINAL = (REJECTED, PAID, CANCELLED)
    # Requests still holding on to wallet funds
    OUTSTANDING = (PENDING, APPROVED)


class VendorBase(SQLModel):
    business_name: str = Field(nullable=False)
    # Transfer recipient attributes; recipient_code is the processor's id for this bank account
    bank_name: Optional[str] = Field(default=None)
    bank_code: Optional[str] = Field(default=None)
    account_number: Optional[str] = Field(default=None)
    account_name: Optional[str] = Field(default=None)


class Vendor(VendorBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True, nullable=False)
    recipient_code: Optional[str] = Field(default=None)
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(sa.DateTime(timezone=True), nullable=False)
    )


class BankDetailsUpdate(SQLModel):
    bank_name: Optional[str] = None
    bank_code: str
    account_number: str
    account_name: str


class PayoutRequestBase(SQLModel):
    vendor_id: uuid.UUID = Field(sa_column=Column(sa.Uuid, nullable=False, index=True))
    amount: int = Field(nullable=False)  # minor units
    status: str = Field(default=PayoutStatus.PENDING, nullable=False, index=True)
    reviewed_by: Optional[str] = Field(default=None)
    rejection_reason: Optional[str] = Field(default=None)
    transfer_reference: Optional[str] = Field(default=None, index=True)
    transfer_code: Optional[str] = Field(default=None)


class PayoutRequest(PayoutRequestBase, table=True):
    __tablename__ = "payout_request"
    __table_args__ = (
        sa.CheckConstraint("amount > 0", name="ck_payout_request_amount_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True, nullable=False)
    requested_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(sa.DateTime(timezone=True), nullable=False, index=True)
    )
    reviewed_at: Optional[datetime] = Field(default=None, sa_column=Column(sa.DateTime(timezone=True), nullable=True))
    # Transfer lease: set by the orchestrator run currently talking to the processor
    claim_token: Optional[str] = Field(default=None)
    claimed_at: Optional[datetime] = Field(default=None, sa_column=Column(sa.DateTime(timezone=True), nullable=True))


class PayoutRequestRead(PayoutRequestBase):
    id: uuid.UUID
    requested_at: datetime
    reviewed_at: Optional[datetime]


class PayoutRequestCreate(SQLModel):
    amount: int
