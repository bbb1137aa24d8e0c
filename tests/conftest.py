import json
import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from libs.py_common.config import Settings
from libs.py_common.db import create_db_engine, create_session_factory, init_db
from libs.py_common.errors import ProcessorRejectedError
from libs.py_common.processor import (
    Bank,
    CheckoutInit,
    PaymentProcessor,
    Recipient,
    ResolvedAccount,
    TransferResult,
)
from services.payments.deps import PaymentsContainer
from services.payments.models import Order
from services.payments.webhook import compute_signature
from services.payouts.deps import PayoutsContainer
from services.payouts.models import PayoutRequest, PayoutStatus, Vendor
from services.wallet.ledger import WalletLedger

WEBHOOK_SECRET = "whsec_test_secret"


class FakeProcessor(PaymentProcessor):
    """In-memory processor double; set the fail_* attributes to an exception to make a call fail."""

    def __init__(self):
        self.initialized = []
        self.recipients = []
        self.transfers = []
        self.fail_initialize = None
        self.fail_recipient = None
        self.fail_transfer = None
        self.transfer_status = "success"

    def initialize_transaction(self, email, amount_minor, reference, metadata=None, callback_url=None):
        self.initialized.append({"email": email, "amount_minor": amount_minor, "reference": reference,
                                 "metadata": metadata})
        if self.fail_initialize:
            raise self.fail_initialize
        return CheckoutInit(
            authorization_url=f"https://checkout.paystack.com/{reference}", access_code="ac_test", reference=reference
        )

    def create_transfer_recipient(self, name, account_number, bank_code, currency, metadata=None):
        self.recipients.append({"name": name, "account_number": account_number, "bank_code": bank_code,
                                "currency": currency})
        if self.fail_recipient:
            raise self.fail_recipient
        return Recipient(recipient_code=f"RCP_{len(self.recipients)}", name=name)

    def initiate_transfer(self, amount_minor, recipient_code, reference, reason):
        self.transfers.append({"amount_minor": amount_minor, "recipient_code": recipient_code,
                               "reference": reference, "reason": reason})
        if self.fail_transfer:
            raise self.fail_transfer
        return TransferResult(
            transfer_code=f"TRF_{len(self.transfers)}", reference=reference, status=self.transfer_status,
            amount=amount_minor,
        )

    def list_banks(self, currency):
        return [Bank(name="Access Bank", code="044"), Bank(name="Guaranty Trust Bank", code="058")]

    def resolve_account(self, account_number, bank_code):
        if account_number == "0000000000":
            raise ProcessorRejectedError(
                "Could not resolve account name. Check parameters or try again.",
                raw={"status": False, "message": "Could not resolve account name. Check parameters or try again."},
                upstream_status=422,
            )
        return ResolvedAccount(account_name="ADAEZE OKAFOR", account_number=account_number)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event_type, key, payload):
        self.events.append((event_type, key, payload))

    @property
    def event_types(self):
        return [event[0] for event in self.events]


def signed_webhook(payload, secret=WEBHOOK_SECRET):
    raw_body = json.dumps(payload).encode("utf-8")
    return raw_body, compute_signature(raw_body, secret)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        paystack_secret_key="sk_test_secret",
        paystack_webhook_secret=WEBHOOK_SECRET,
        callback_url="https://marketplace.test/orders/callback",
        kafka_bootstrap_servers="",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def ledger(session_factory):
    return WalletLedger(session_factory)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def payments_container(settings, session_factory, processor):
    return PaymentsContainer.build(settings, session_factory, processor)


@pytest.fixture
def payouts_container(settings, session_factory, processor, publisher):
    return PayoutsContainer.build(settings, session_factory, processor, publisher)


@pytest.fixture
def payments_client(payments_container):
    from services.payments.main import create_app

    return TestClient(create_app(payments_container))


@pytest.fixture
def payouts_client(payouts_container):
    from services.payouts.main import create_app

    return TestClient(create_app(payouts_container))


@pytest.fixture
def make_order(session_factory):
    def _make_order(total_amount="5000.00", customer_id="customer-1", vendor_id=None, **fields):
        order = Order(
            vendor_id=vendor_id or uuid.uuid4(),
            customer_id=customer_id,
            customer_email=fields.pop("customer_email", "buyer@example.com"),
            total_amount=Decimal(total_amount),
            **fields,
        )
        with session_factory() as session, session.begin():
            session.add(order)
        return order

    return _make_order


@pytest.fixture
def make_vendor(session_factory):
    def _make_vendor(**fields):
        values = {
            "business_name": "Mama Put Kitchen",
            "bank_name": "Access Bank",
            "bank_code": "044",
            "account_number": "0123456789",
            "account_name": "MAMA PUT KITCHEN",
        }
        values.update(fields)
        vendor = Vendor(**values)
        with session_factory() as session, session.begin():
            session.add(vendor)
        return vendor

    return _make_vendor


@pytest.fixture
def approved_request(session_factory, ledger, make_vendor):
    """A funded vendor with an approved payout request."""

    def _approved_request(amount=300000, balance=1000000, **vendor_fields):
        vendor = make_vendor(**vendor_fields)
        if balance:
            ledger.credit(vendor.id, balance, uuid.uuid4())
        request = PayoutRequest(vendor_id=vendor.id, amount=amount, status=PayoutStatus.APPROVED,
                                reviewed_by="admin-1")
        with session_factory() as session, session.begin():
            session.add(request)
        return vendor, request

    return _approved_request


def actor_headers(actor_id, role):
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}
