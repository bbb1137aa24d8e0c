from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from libs.py_common.config import Settings, get_settings
from libs.py_common.db import create_db_engine, create_session_factory
from libs.py_common.paystack import PaystackClient
from libs.py_common.processor import PaymentProcessor
from services.wallet.ledger import WalletLedger

from .initiator import OrderPaymentInitiator
from .webhook import PaymentWebhookProcessor


@dataclass
class PaymentsContainer:
    settings: Settings
    session_factory: sessionmaker
    processor: PaymentProcessor
    ledger: WalletLedger
    webhook: PaymentWebhookProcessor
    initiator: OrderPaymentInitiator

    @classmethod
    def build(cls, settings: Settings, session_factory: sessionmaker, processor: PaymentProcessor) -> "PaymentsContainer":
        ledger = WalletLedger(session_factory, currency=settings.currency)
        return cls(
            settings=settings,
            session_factory=session_factory,
            processor=processor,
            ledger=ledger,
            webhook=PaymentWebhookProcessor(session_factory, ledger, settings.webhook_secret),
            initiator=OrderPaymentInitiator(session_factory, processor, callback_url=settings.callback_url),
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PaymentsContainer":
        settings = settings or get_settings()
        engine = create_db_engine(settings.database_url, echo=settings.database_echo)
        return cls.build(settings, create_session_factory(engine), PaystackClient.from_settings(settings))


def get_container(request: Request) -> PaymentsContainer:
    return request.app.state.container
