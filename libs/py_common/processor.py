"""Payment processor port and its validated result types.

`PaystackClient` is the production adapter; tests substitute their own
implementation. Every response is validated into one of the models below
before anything downstream looks at it.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from .errors import ValidationError

NUBAN_PATTERN = re.compile(r"^\d{10}$")


def validate_account_number(account_number: Optional[str]) -> str:
    """Returns the stripped NUBAN account number or raises ValidationError."""
    account_number = (account_number or "").strip()
    if not NUBAN_PATTERN.match(account_number):
        raise ValidationError("Account number must be exactly 10 digits")
    return account_number


class ProcessorModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class CheckoutInit(ProcessorModel):
    """Result of starting a hosted checkout."""

    authorization_url: str
    access_code: Optional[str] = None
    reference: str


class Recipient(ProcessorModel):
    recipient_code: str
    name: Optional[str] = None


class TransferResult(ProcessorModel):
    """Result of initiating a transfer to a recipient."""

    transfer_code: str
    reference: str
    status: str
    amount: Optional[int] = None


class Bank(ProcessorModel):
    name: str
    code: str


class ResolvedAccount(ProcessorModel):
    account_name: str
    account_number: str


class PaymentProcessor(ABC):
    """Abstract payment processor interface."""

    @abstractmethod
    def initialize_transaction(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        metadata: Optional[dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> CheckoutInit:
        """Start a checkout session and return the URL the payer is sent to."""
        ...

    @abstractmethod
    def create_transfer_recipient(
        self,
        name: str,
        account_number: str,
        bank_code: str,
        currency: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Recipient:
        """Register a bank account as a transfer recipient."""
        ...

    @abstractmethod
    def initiate_transfer(
        self,
        amount_minor: int,
        recipient_code: str,
        reference: str,
        reason: str,
    ) -> TransferResult:
        """Move money from the platform balance to a recipient."""
        ...

    @abstractmethod
    def list_banks(self, currency: str) -> list[Bank]:
        ...

    @abstractmethod
    def resolve_account(self, account_number: str, bank_code: str) -> ResolvedAccount:
        ...
