"""Payout Request Manager: the withdrawal state machine.

    pending --approve--> approved --mark_paid--> paid
       |                    |
       +--reject/cancel     +--reject
           (rejected/cancelled)

Every transition is one conditional UPDATE on the current status, so two
racing callers cannot both pass the same precondition. `mark_paid` moves the
request and writes the ledger debit in the same transaction.
"""

import uuid
from datetime import timedelta
from typing import Any, Iterable, Optional

import structlog
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from libs.py_common.db import utcnow
from libs.py_common.errors import ConflictError, NotFoundError, ValidationError
from libs.py_common.kafka import EventPublisher
from services.wallet.ledger import WalletLedger

from .metrics import PAYOUT_TRANSITIONS_TOTAL
from .models import PayoutRequest, PayoutStatus

logger = structlog.get_logger(__name__)

MAX_LIST_LIMIT = 500


def event_payload(request: PayoutRequest) -> dict[str, Any]:
    return {
        "payout_request_id": str(request.id),
        "vendor_id": str(request.vendor_id),
        "amount": request.amount,
        "status": request.status,
        "reviewed_by": request.reviewed_by,
        "rejection_reason": request.rejection_reason,
        "transfer_reference": request.transfer_reference,
        "transfer_code": request.transfer_code,
    }


class PayoutRequestManager:
    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: WalletLedger,
        publisher: EventPublisher,
        claim_ttl_seconds: int = 900,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.publisher = publisher
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)

    # --- reads ---
    def get(self, request_id: uuid.UUID) -> PayoutRequest:
        with self.session_factory() as session:
            request = session.get(PayoutRequest, request_id)
        if request is None:
            raise NotFoundError(f"Payout request {request_id} not found")
        return request

    def list_for_vendor(self, vendor_id: uuid.UUID, limit: int = 50) -> list[PayoutRequest]:
        with self.session_factory() as session:
            statement = (
                select(PayoutRequest)
                .where(PayoutRequest.vendor_id == vendor_id)
                .order_by(PayoutRequest.requested_at.desc())
                .limit(min(max(limit, 1), MAX_LIST_LIMIT))
            )
            return list(session.exec(statement).all())

    def list_all(self, status: Optional[str] = None, limit: int = 100) -> list[PayoutRequest]:
        if status is not None and status not in PayoutStatus.ALL:
            raise ValidationError(f"Unknown payout status: {status}")
        statement = select(PayoutRequest)
        if status is not None:
            statement = statement.where(PayoutRequest.status == status)
        statement = statement.order_by(PayoutRequest.requested_at.desc()).limit(min(max(limit, 1), MAX_LIST_LIMIT))
        with self.session_factory() as session:
            return list(session.exec(statement).all())

    def outstanding_amount(self, vendor_id: uuid.UUID) -> int:
        with self.session_factory() as session:
            total = session.exec(
                select(func.coalesce(func.sum(PayoutRequest.amount), 0))
                .where(PayoutRequest.vendor_id == vendor_id)
                .where(PayoutRequest.status.in_(PayoutStatus.OUTSTANDING))
            ).one()
        return int(total)

    def available_balance(self, vendor_id: uuid.UUID) -> int:
        return self.ledger.get_balance(vendor_id) - self.outstanding_amount(vendor_id)

    # --- transitions ---
    def create(self, vendor_id: uuid.UUID, amount: int) -> PayoutRequest:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Payout amount must be a positive integer in minor units")
        # Check-then-insert: two concurrent creates can both pass. The transfer's
        # balance pre-check and the non-negative wallet debit still bound the loss.
        available = self.available_balance(vendor_id)
        if amount > available:
            raise ConflictError(f"Requested amount {amount} exceeds available balance {available}")

        request = PayoutRequest(vendor_id=vendor_id, amount=amount, status=PayoutStatus.PENDING)
        with self.session_factory() as session, session.begin():
            session.add(request)
        PAYOUT_TRANSITIONS_TOTAL.labels(to_status=PayoutStatus.PENDING).inc()
        logger.info("payout_requested", payout_request_id=str(request.id), vendor_id=str(vendor_id), amount=amount)
        self._publish("payout.requested", request)
        return request

    def approve(self, request_id: uuid.UUID, reviewer: str) -> PayoutRequest:
        request = self._transition(request_id, (PayoutStatus.PENDING,), PayoutStatus.APPROVED, reviewer)
        self._publish("payout.approved", request)
        return request

    def reject(self, request_id: uuid.UUID, reason: Optional[str], reviewer: str) -> PayoutRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        request = self._transition(
            request_id,
            (PayoutStatus.PENDING, PayoutStatus.APPROVED),
            PayoutStatus.REJECTED,
            reviewer,
            values={"rejection_reason": reason.strip()},
            # an orchestrator run may be mid-transfer, or money already left
            conditions=[self._no_live_claim(), PayoutRequest.transfer_reference.is_(None)],
        )
        self._publish("payout.rejected", request)
        return request

    def cancel(self, request_id: uuid.UUID, vendor_id: uuid.UUID) -> PayoutRequest:
        current = self.get(request_id)
        if current.vendor_id != vendor_id:
            raise NotFoundError(f"Payout request {request_id} not found")
        request = self._transition(request_id, (PayoutStatus.PENDING,), PayoutStatus.CANCELLED, str(vendor_id))
        self._publish("payout.cancelled", request)
        return request

    def mark_paid(
        self,
        request_id: uuid.UUID,
        transfer_reference: str,
        transfer_code: Optional[str] = None,
        reviewer: str = "system",
        claim_token: Optional[str] = None,
    ) -> PayoutRequest:
        """Moves an approved request to paid and debits the wallet in one transaction."""
        current = self.get(request_id)
        if current.status != PayoutStatus.APPROVED:
            raise ConflictError(f"Payout request {request_id} is {current.status}, expected approved")

        self.ledger.ensure_wallet(current.vendor_id)
        statement = (
            update(PayoutRequest)
            .where(PayoutRequest.id == request_id)
            .where(PayoutRequest.status == PayoutStatus.APPROVED)
        )
        if claim_token is not None:
            statement = statement.where(PayoutRequest.claim_token == claim_token)
        statement = statement.values(
            status=PayoutStatus.PAID,
            transfer_reference=transfer_reference,
            transfer_code=transfer_code,
            reviewed_at=utcnow(),
            reviewed_by=reviewer,
            claim_token=None,
            claimed_at=None,
        ).execution_options(synchronize_session=False)

        try:
            with self.session_factory() as session, session.begin():
                result = session.exec(statement)
                if result.rowcount == 0:
                    raise ConflictError(f"Payout request {request_id} is no longer approved")
                self.ledger.record_debit(
                    session, current.vendor_id, current.amount, request_id, reference=transfer_reference
                )
                request = session.get(PayoutRequest, request_id)
        except IntegrityError as e:
            raise ConflictError(f"Payout request {request_id} has already been debited") from e

        # committed from here on; nothing below may fail the call
        PAYOUT_TRANSITIONS_TOTAL.labels(to_status=PayoutStatus.PAID).inc()
        logger.info(
            "payout_marked_paid",
            payout_request_id=str(request_id),
            transfer_reference=transfer_reference,
            amount=request.amount,
        )
        self._publish("payout.paid", request)
        return request

    def _publish(self, event_type: str, request: PayoutRequest) -> None:
        """Emits a payout event after commit; a feed failure is logged, never raised."""
        try:
            self.publisher.publish(event_type, str(request.vendor_id), event_payload(request))
        except Exception as e:
            logger.error(
                "payout_event_not_published",
                event_type=event_type,
                payout_request_id=str(request.id),
                error=str(e),
            )

    # --- transfer lease ---
    def _no_live_claim(self):
        return or_(PayoutRequest.claim_token.is_(None), PayoutRequest.claimed_at < utcnow() - self.claim_ttl)

    def claim_for_transfer(self, request_id: uuid.UUID) -> str:
        """Takes the transfer lease on an approved request; ConflictError if another run holds it."""
        token = uuid.uuid4().hex
        with self.session_factory() as session, session.begin():
            result = session.exec(
                update(PayoutRequest)
                .where(PayoutRequest.id == request_id)
                .where(PayoutRequest.status == PayoutStatus.APPROVED)
                .where(PayoutRequest.transfer_reference.is_(None))
                .where(self._no_live_claim())
                .values(claim_token=token, claimed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        if result.rowcount == 0:
            raise ConflictError(f"Payout request {request_id} is already being transferred or is not approved")
        logger.info("payout_transfer_claimed", payout_request_id=str(request_id))
        return token

    def release_claim(self, request_id: uuid.UUID, claim_token: str) -> None:
        with self.session_factory() as session, session.begin():
            session.exec(
                update(PayoutRequest)
                .where(PayoutRequest.id == request_id)
                .where(PayoutRequest.claim_token == claim_token)
                .values(claim_token=None, claimed_at=None)
                .execution_options(synchronize_session=False)
            )

    def stamp_transfer(self, request_id: uuid.UUID, claim_token: str, transfer_reference: str,
                       transfer_code: Optional[str]) -> bool:
        """Records an initiated transfer on a still-approved request so it cannot be claimed again."""
        with self.session_factory() as session, session.begin():
            result = session.exec(
                update(PayoutRequest)
                .where(PayoutRequest.id == request_id)
                .where(PayoutRequest.claim_token == claim_token)
                .values(transfer_reference=transfer_reference, transfer_code=transfer_code)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    def _transition(
        self,
        request_id: uuid.UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        reviewer: str,
        values: Optional[dict[str, Any]] = None,
        conditions: Iterable = (),
    ) -> PayoutRequest:
        statement = (
            update(PayoutRequest)
            .where(PayoutRequest.id == request_id)
            .where(PayoutRequest.status.in_(from_statuses))
        )
        for condition in conditions:
            statement = statement.where(condition)
        statement = statement.values(
            status=to_status, reviewed_at=utcnow(), reviewed_by=reviewer, **(values or {})
        ).execution_options(synchronize_session=False)

        with self.session_factory() as session, session.begin():
            result = session.exec(statement)

        if result.rowcount == 0:
            current = self.get(request_id)
            if current.status in from_statuses:
                raise ConflictError(f"Payout request {request_id} has a transfer in progress")
            raise ConflictError(
                f"Payout request {request_id} is {current.status}, expected {' or '.join(from_statuses)}"
            )

        request = self.get(request_id)
        PAYOUT_TRANSITIONS_TOTAL.labels(to_status=to_status).inc()
        logger.info(
            "payout_status_changed",
            payout_request_id=str(request_id),
            to_status=to_status,
            reviewed_by=reviewer,
        )
        return request
