from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from libs.py_common.config import Settings, get_settings
from libs.py_common.db import create_db_engine, create_session_factory
from libs.py_common.kafka import EventPublisher, create_event_publisher
from libs.py_common.paystack import PaystackClient
from libs.py_common.processor import PaymentProcessor
from services.wallet.ledger import WalletLedger

from .requests import PayoutRequestManager
from .transfers import TransferOrchestrator
from .vendors import VendorAccounts


@dataclass
class PayoutsContainer:
    """Everything the payouts routes and worker need, built once per process."""

    settings: Settings
    session_factory: sessionmaker
    ledger: WalletLedger
    vendors: VendorAccounts
    payouts: PayoutRequestManager
    orchestrator: TransferOrchestrator

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: sessionmaker,
        processor: PaymentProcessor,
        publisher: EventPublisher,
    ) -> "PayoutsContainer":
        ledger = WalletLedger(session_factory, currency=settings.currency)
        vendors = VendorAccounts(session_factory)
        payouts = PayoutRequestManager(
            session_factory, ledger, publisher, claim_ttl_seconds=settings.transfer_claim_ttl_seconds
        )
        orchestrator = TransferOrchestrator(
            processor, payouts, vendors, ledger, publisher, currency=settings.currency
        )
        return cls(
            settings=settings,
            session_factory=session_factory,
            ledger=ledger,
            vendors=vendors,
            payouts=payouts,
            orchestrator=orchestrator,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PayoutsContainer":
        settings = settings or get_settings()
        engine = create_db_engine(settings.database_url, echo=settings.database_echo)
        return cls.build(
            settings,
            create_session_factory(engine),
            PaystackClient.from_settings(settings),
            create_event_publisher(settings),
        )


def get_container(request: Request) -> PayoutsContainer:
    return request.app.state.container
