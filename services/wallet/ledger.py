"""Wallet Ledger: append-only vendor balance movements.

The ledger is the source of truth; `Wallet.balance` is a cache that is only
ever changed in the same transaction as the `LedgerTransaction` insert, so
`balance == sum(credits) - sum(debits)` holds for every committed state.

`credit`/`debit` own their transaction. `record_credit`/`record_debit` join a
transaction the caller already opened, for compound changes such as
"order paid + credit" or "payout paid + debit".
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session, select

from libs.py_common.db import utcnow
from libs.py_common.errors import ConflictError, ValidationError

from .metrics import (
    LEDGER_AMOUNT_MINOR_TOTAL,
    LEDGER_ENTRIES_TOTAL,
    LEDGER_RECONCILE_MISMATCH_TOTAL,
    LEDGER_REPLAYS_TOTAL,
)
from .models import LedgerKind, LedgerTransaction, Wallet, order_credit_key, payout_debit_key

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BalanceReport:
    vendor_id: uuid.UUID
    cached_balance: int
    ledger_balance: int
    credits: int
    debits: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance


def _require_positive(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer in minor units")


class WalletLedger:
    def __init__(self, session_factory: sessionmaker, currency: str = "NGN"):
        self.session_factory = session_factory
        self.currency = currency

    def ensure_wallet(self, vendor_id: uuid.UUID) -> None:
        """Creates the vendor's wallet row if missing, in its own transaction.

        Run this before a compound transaction so an IntegrityError inside it can
        only come from a duplicate ledger entry.
        """
        with self.session_factory() as session:
            if session.get(Wallet, vendor_id) is not None:
                return
            session.add(Wallet(vendor_id=vendor_id, balance=0, currency=self.currency))
            try:
                session.commit()
                logger.info("wallet_created", vendor_id=str(vendor_id))
            except IntegrityError:
                session.rollback()
                logger.debug("wallet_created_concurrently", vendor_id=str(vendor_id))

    # --- caller-owned transaction ---
    def record_credit(
        self,
        session: Session,
        vendor_id: uuid.UUID,
        amount: int,
        order_id: uuid.UUID,
        reference: Optional[str] = None,
    ) -> LedgerTransaction:
        _require_positive(amount)
        entry = LedgerTransaction(
            vendor_id=vendor_id,
            order_id=order_id,
            amount=amount,
            kind=LedgerKind.ORDER_CREDIT,
            reference=reference,
            description=f"Payment for order {order_id}",
            idempotency_key=order_credit_key(order_id),
        )
        session.add(entry)
        session.flush()  # a duplicate idempotency key fails here, before the balance moves
        self._apply(session, vendor_id, amount)
        self._count(entry)
        return entry

    def record_debit(
        self,
        session: Session,
        vendor_id: uuid.UUID,
        amount: int,
        payout_request_id: uuid.UUID,
        reference: Optional[str] = None,
    ) -> LedgerTransaction:
        _require_positive(amount)
        entry = LedgerTransaction(
            vendor_id=vendor_id,
            payout_request_id=payout_request_id,
            amount=amount,
            kind=LedgerKind.PAYOUT_DEBIT,
            reference=reference,
            description=f"Payout {payout_request_id}",
            idempotency_key=payout_debit_key(payout_request_id),
        )
        session.add(entry)
        session.flush()
        self._apply(session, vendor_id, -amount)
        self._count(entry)
        return entry

    def _apply(self, session: Session, vendor_id: uuid.UUID, delta: int) -> None:
        result = session.exec(
            update(Wallet)
            .where(Wallet.vendor_id == vendor_id)
            .where(Wallet.balance + delta >= 0)
            .values(balance=Wallet.balance + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        if delta > 0 and session.get(Wallet, vendor_id) is None:
            session.add(Wallet(vendor_id=vendor_id, balance=delta, currency=self.currency))
            session.flush()
            return
        raise ConflictError("Insufficient wallet balance")

    @staticmethod
    def _count(entry: LedgerTransaction) -> None:
        LEDGER_ENTRIES_TOTAL.labels(kind=entry.kind).inc()
        LEDGER_AMOUNT_MINOR_TOTAL.labels(kind=entry.kind).inc(entry.amount)
        logger.info(
            "ledger_entry_recorded",
            kind=entry.kind,
            vendor_id=str(entry.vendor_id),
            amount=entry.amount,
            idempotency_key=entry.idempotency_key,
        )

    # --- self-contained operations ---
    def credit(
        self, vendor_id: uuid.UUID, amount: int, order_id: uuid.UUID, reference: Optional[str] = None
    ) -> LedgerTransaction:
        """Credits an order payment once; a repeat for the same order returns the first entry."""
        _require_positive(amount)
        key = order_credit_key(order_id)
        existing = self.find_by_key(key)
        if existing is not None:
            LEDGER_REPLAYS_TOTAL.labels(kind=LedgerKind.ORDER_CREDIT).inc()
            return existing

        self.ensure_wallet(vendor_id)
        try:
            with self.session_factory() as session, session.begin():
                return self.record_credit(session, vendor_id, amount, order_id, reference)
        except IntegrityError:
            existing = self.find_by_key(key)
            if existing is None:
                raise
            LEDGER_REPLAYS_TOTAL.labels(kind=LedgerKind.ORDER_CREDIT).inc()
            logger.info("ledger_credit_replayed", order_id=str(order_id))
            return existing

    def debit(
        self, vendor_id: uuid.UUID, amount: int, payout_request_id: uuid.UUID, reference: Optional[str] = None
    ) -> LedgerTransaction:
        _require_positive(amount)
        key = payout_debit_key(payout_request_id)
        if self.find_by_key(key) is not None:
            LEDGER_REPLAYS_TOTAL.labels(kind=LedgerKind.PAYOUT_DEBIT).inc()
            raise ConflictError(f"Payout {payout_request_id} has already been debited")

        self.ensure_wallet(vendor_id)
        try:
            with self.session_factory() as session, session.begin():
                return self.record_debit(session, vendor_id, amount, payout_request_id, reference)
        except IntegrityError as e:
            LEDGER_REPLAYS_TOTAL.labels(kind=LedgerKind.PAYOUT_DEBIT).inc()
            raise ConflictError(f"Payout {payout_request_id} has already been debited") from e

    # --- reads ---
    def find_by_key(self, idempotency_key: str) -> Optional[LedgerTransaction]:
        with self.session_factory() as session:
            return session.exec(
                select(LedgerTransaction).where(LedgerTransaction.idempotency_key == idempotency_key)
            ).first()

    def get_balance(self, vendor_id: uuid.UUID) -> int:
        with self.session_factory() as session:
            wallet = session.get(Wallet, vendor_id)
            return wallet.balance if wallet else 0

    def list_transactions(self, vendor_id: uuid.UUID, limit: int = 50, offset: int = 0) -> list[LedgerTransaction]:
        with self.session_factory() as session:
            statement = (
                select(LedgerTransaction)
                .where(LedgerTransaction.vendor_id == vendor_id)
                .order_by(LedgerTransaction.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(session.exec(statement).all())

    def reconcile(self, vendor_id: uuid.UUID) -> BalanceReport:
        """Recomputes the balance from the ledger and compares it with the cached one."""
        with self.session_factory() as session:
            credit_sum = func.coalesce(
                func.sum(case((LedgerTransaction.kind == LedgerKind.ORDER_CREDIT, LedgerTransaction.amount), else_=0)), 0
            )
            debit_sum = func.coalesce(
                func.sum(case((LedgerTransaction.kind == LedgerKind.PAYOUT_DEBIT, LedgerTransaction.amount), else_=0)), 0
            )
            credits, debits = session.exec(
                select(credit_sum, debit_sum).where(LedgerTransaction.vendor_id == vendor_id)
            ).one()
            wallet = session.get(Wallet, vendor_id)

        report = BalanceReport(
            vendor_id=vendor_id,
            cached_balance=wallet.balance if wallet else 0,
            ledger_balance=int(credits) - int(debits),
            credits=int(credits),
            debits=int(debits),
        )
        if not report.consistent:
            LEDGER_RECONCILE_MISMATCH_TOTAL.inc()
            logger.critical(
                "wallet_balance_mismatch",
                vendor_id=str(vendor_id),
                cached_balance=report.cached_balance,
                ledger_balance=report.ledger_balance,
            )
        return report
