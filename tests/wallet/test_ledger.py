import random
import uuid

import pytest
from sqlmodel import select

from libs.py_common.errors import ConflictError, ValidationError
from services.wallet.models import LedgerKind, LedgerTransaction, Wallet


def test_credit_creates_wallet_and_entry(ledger, session_factory):
    vendor_id, order_id = uuid.uuid4(), uuid.uuid4()

    entry = ledger.credit(vendor_id, 500000, order_id, reference="order_ref_1")

    assert entry.kind == LedgerKind.ORDER_CREDIT
    assert entry.amount == 500000
    assert entry.idempotency_key == f"order_credit:{order_id}"
    assert ledger.get_balance(vendor_id) == 500000
    with session_factory() as session:
        assert session.get(Wallet, vendor_id).balance == 500000


def test_credit_is_idempotent_per_order(ledger, session_factory):
    vendor_id, order_id = uuid.uuid4(), uuid.uuid4()

    first = ledger.credit(vendor_id, 500000, order_id)
    second = ledger.credit(vendor_id, 500000, order_id)

    assert second.id == first.id
    assert ledger.get_balance(vendor_id) == 500000
    with session_factory() as session:
        entries = session.exec(select(LedgerTransaction).where(LedgerTransaction.order_id == order_id)).all()
    assert len(entries) == 1


@pytest.mark.parametrize("amount", [0, -100])
def test_credit_rejects_non_positive_amount(ledger, amount):
    with pytest.raises(ValidationError):
        ledger.credit(uuid.uuid4(), amount, uuid.uuid4())


def test_debit_rejects_non_positive_amount(ledger):
    with pytest.raises(ValidationError):
        ledger.debit(uuid.uuid4(), 0, uuid.uuid4())


def test_debit_twice_for_same_payout_conflicts(ledger):
    vendor_id, payout_id = uuid.uuid4(), uuid.uuid4()
    ledger.credit(vendor_id, 10000, uuid.uuid4())

    ledger.debit(vendor_id, 4000, payout_id)
    with pytest.raises(ConflictError):
        ledger.debit(vendor_id, 4000, payout_id)

    assert ledger.get_balance(vendor_id) == 6000


def test_debit_beyond_balance_conflicts_and_leaves_no_entry(ledger, session_factory):
    vendor_id, payout_id = uuid.uuid4(), uuid.uuid4()
    ledger.credit(vendor_id, 1000, uuid.uuid4())

    with pytest.raises(ConflictError):
        ledger.debit(vendor_id, 1001, payout_id)

    assert ledger.get_balance(vendor_id) == 1000
    with session_factory() as session:
        assert session.exec(
            select(LedgerTransaction).where(LedgerTransaction.payout_request_id == payout_id)
        ).first() is None


def test_balance_matches_ledger_after_mixed_sequence(ledger):
    vendor_id = uuid.uuid4()
    rng = random.Random(7)
    expected = 0
    for _ in range(30):
        if expected > 0 and rng.random() < 0.4:
            amount = rng.randint(1, expected)
            ledger.debit(vendor_id, amount, uuid.uuid4())
            expected -= amount
        else:
            amount = rng.randint(1, 50000)
            ledger.credit(vendor_id, amount, uuid.uuid4())
            expected += amount

    report = ledger.reconcile(vendor_id)

    assert report.consistent
    assert report.cached_balance == expected
    assert report.ledger_balance == report.credits - report.debits == expected


def test_reconcile_flags_tampered_cache(ledger, session_factory):
    vendor_id = uuid.uuid4()
    ledger.credit(vendor_id, 2500, uuid.uuid4())
    with session_factory() as session, session.begin():
        session.get(Wallet, vendor_id).balance = 9999

    report = ledger.reconcile(vendor_id)

    assert not report.consistent
    assert report.ledger_balance == 2500


def test_list_transactions_newest_first(ledger):
    vendor_id = uuid.uuid4()
    ledger.credit(vendor_id, 100, uuid.uuid4())
    ledger.credit(vendor_id, 200, uuid.uuid4())
    ledger.debit(vendor_id, 50, uuid.uuid4())

    entries = ledger.list_transactions(vendor_id)

    assert [e.kind for e in entries][0] == LedgerKind.PAYOUT_DEBIT
    assert len(entries) == 3
    assert ledger.list_transactions(vendor_id, limit=1, offset=2)[0].amount == 100


def test_get_balance_of_unknown_vendor_is_zero(ledger):
    assert ledger.get_balance(uuid.uuid4()) == 0


def test_ensure_wallet_is_idempotent(ledger, session_factory):
    vendor_id = uuid.uuid4()
    ledger.ensure_wallet(vendor_id)
    ledger.ensure_wallet(vendor_id)

    with session_factory() as session:
        wallets = session.exec(select(Wallet).where(Wallet.vendor_id == vendor_id)).all()
    assert len(wallets) == 1
    assert wallets[0].balance == 0
