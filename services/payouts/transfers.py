"""Transfer Orchestrator: turns an approved payout request into a bank transfer and a ledger debit.

Failure points and what the caller sees:

* lease not acquired -> ConflictError, the processor is never called
* recipient creation or transfer rejected -> ExternalProcessorError, lease
  released, request still approved and safe to retry
* local commit fails after the transfer went out -> PartialFailureError with
  the transfer code and reference; the lease is kept and the reference is
  stamped on the request when possible so no second transfer can start
"""

import secrets
import time
import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import SQLAlchemyError

from libs.py_common.errors import ConflictError, ExternalProcessorError, PartialFailureError, ValidationError
from libs.py_common.kafka import EventPublisher
from libs.py_common.processor import PaymentProcessor
from services.wallet.ledger import WalletLedger

from .metrics import PARTIAL_FAILURES_TOTAL, RECIPIENTS_CREATED_TOTAL, TRANSFER_DURATION_SECONDS, TRANSFERS_TOTAL
from .models import PayoutRequest, PayoutStatus, Vendor
from .requests import PayoutRequestManager, event_payload
from .vendors import VendorAccounts

logger = structlog.get_logger(__name__)

REQUIRED_BANK_FIELDS = ("bank_code", "account_number", "account_name")


@dataclass(frozen=True)
class TransferOutcome:
    payout_request_id: uuid.UUID
    transfer_code: str
    reference: str
    status: str
    amount: int

    def to_dict(self) -> dict:
        return {"transfer_code": self.transfer_code, "reference": self.reference, "status": self.status}


def new_transfer_reference(request_id: uuid.UUID) -> str:
    # a fresh reference per attempt; the processor refuses reused references
    return f"payout_{request_id}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class TransferOrchestrator:
    def __init__(
        self,
        processor: PaymentProcessor,
        payouts: PayoutRequestManager,
        vendors: VendorAccounts,
        ledger: WalletLedger,
        publisher: EventPublisher,
        currency: str = "NGN",
    ):
        self.processor = processor
        self.payouts = payouts
        self.vendors = vendors
        self.ledger = ledger
        self.publisher = publisher
        self.currency = currency

    def execute(self, request_id: uuid.UUID, actor: str) -> TransferOutcome:
        with TRANSFER_DURATION_SECONDS.time():
            return self._execute(request_id, actor)

    def _preflight(self, request: PayoutRequest) -> Vendor:
        if request.status != PayoutStatus.APPROVED:
            raise ConflictError(f"Payout request {request.id} is {request.status}, expected approved")
        if request.transfer_reference:
            raise ConflictError(
                f"Payout request {request.id} already has transfer {request.transfer_reference}; reconcile it first"
            )
        vendor = self.vendors.get(request.vendor_id)
        missing = [field for field in REQUIRED_BANK_FIELDS if not getattr(vendor, field)]
        if missing:
            raise ValidationError(f"Vendor bank details are incomplete: missing {', '.join(missing)}")
        balance = self.ledger.get_balance(vendor.id)
        if balance < request.amount:
            raise ConflictError(f"Wallet balance {balance} is below the payout amount {request.amount}")
        return vendor

    def _execute(self, request_id: uuid.UUID, actor: str) -> TransferOutcome:
        request = self.payouts.get(request_id)
        vendor = self._preflight(request)

        try:
            claim_token = self.payouts.claim_for_transfer(request_id)
        except ConflictError:
            TRANSFERS_TOTAL.labels(outcome="claim_lost").inc()
            raise

        log = logger.bind(payout_request_id=str(request_id), vendor_id=str(vendor.id), amount=request.amount)
        stage = "recipient"
        try:
            recipient_code = self._resolve_recipient(vendor)
            stage = "transfer"
            transfer = self.processor.initiate_transfer(
                amount_minor=request.amount,
                recipient_code=recipient_code,
                reference=new_transfer_reference(request_id),
                reason=f"Vendor payout {request_id}",
            )
        except ExternalProcessorError as e:
            self.payouts.release_claim(request_id, claim_token)
            TRANSFERS_TOTAL.labels(outcome=f"{stage}_rejected").inc()
            log.warning("payout_transfer_failed", stage=stage, error=e.message, raw=e.raw)
            self.publisher.publish(
                "payout.transfer_failed",
                str(vendor.id),
                {**event_payload(request), "stage": stage, "error": e.message},
            )
            raise
        except Exception:
            # nothing was sent yet
            self.payouts.release_claim(request_id, claim_token)
            raise

        log = log.bind(transfer_code=transfer.transfer_code, transfer_reference=transfer.reference)
        try:
            self.payouts.mark_paid(
                request_id,
                transfer_reference=transfer.reference,
                transfer_code=transfer.transfer_code,
                reviewer=actor,
                claim_token=claim_token,
            )
        except Exception as e:
            TRANSFERS_TOTAL.labels(outcome="partial_failure").inc()
            PARTIAL_FAILURES_TOTAL.inc()
            stamped = self._stamp_best_effort(request_id, claim_token, transfer.reference, transfer.transfer_code)
            log.critical("payout_transfer_not_recorded", error=str(e), reference_stamped=stamped)
            raise PartialFailureError(
                "Transfer was initiated but the payout could not be recorded",
                reference=transfer.reference,
                transfer_code=transfer.transfer_code,
                cause=e,
            ) from e

        TRANSFERS_TOTAL.labels(outcome="success").inc()
        log.info("payout_transfer_completed", transfer_status=transfer.status)
        return TransferOutcome(
            payout_request_id=request_id,
            transfer_code=transfer.transfer_code,
            reference=transfer.reference,
            status=transfer.status,
            amount=request.amount,
        )

    def _resolve_recipient(self, vendor: Vendor) -> str:
        if vendor.recipient_code:
            return vendor.recipient_code
        recipient = self.processor.create_transfer_recipient(
            name=vendor.account_name,
            account_number=vendor.account_number,
            bank_code=vendor.bank_code,
            currency=self.currency,
            metadata={"vendor_id": str(vendor.id)},
        )
        RECIPIENTS_CREATED_TOTAL.inc()
        logger.info("transfer_recipient_created", vendor_id=str(vendor.id), recipient_code=recipient.recipient_code)
        if not self.vendors.cache_recipient_code(vendor, recipient.recipient_code):
            # the recipient was built from bank details the vendor has since replaced
            raise ConflictError(f"Bank details for vendor {vendor.id} changed during the transfer; retry it")
        return recipient.recipient_code

    def _stamp_best_effort(self, request_id, claim_token, reference, transfer_code) -> bool:
        try:
            return self.payouts.stamp_transfer(request_id, claim_token, reference, transfer_code)
        except SQLAlchemyError as e:
            logger.error("payout_transfer_stamp_failed", payout_request_id=str(request_id), error=str(e))
            return False
