import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from libs.py_common.auth import Actor, get_actor, require_customer
from libs.py_common.errors import ValidationError
from libs.py_common.processor import validate_account_number

from .deps import PaymentsContainer, get_container

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


class InitializePayment(BaseModel):
    order_id: uuid.UUID


class ResolveAccount(BaseModel):
    bank_code: Optional[str] = None
    account_number: Optional[str] = None


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(default=None),
    container: PaymentsContainer = Depends(get_container),
):
    # The signature covers the exact bytes sent, so the body is read raw
    raw_body = await request.body()
    await run_in_threadpool(container.webhook.handle, raw_body, x_paystack_signature)
    return {"received": True}


@router.post("/initialize")
def initialize_payment(
    body: InitializePayment,
    actor: Actor = Depends(require_customer),
    container: PaymentsContainer = Depends(get_container),
):
    session = container.initiator.initiate(body.order_id, actor.id)
    return {"authorization_url": session.checkout_url, "reference": session.reference}


@router.post("/resolve-account")
def resolve_account(
    body: ResolveAccount,
    actor: Actor = Depends(get_actor),
    container: PaymentsContainer = Depends(get_container),
):
    if not body.bank_code or not body.bank_code.strip():
        raise ValidationError("bank_code is required")
    account_number = validate_account_number(body.account_number)
    resolved = container.processor.resolve_account(account_number, body.bank_code.strip())
    return {"account_name": resolved.account_name}


@router.get("/banks")
def list_banks(
    actor: Actor = Depends(get_actor),
    container: PaymentsContainer = Depends(get_container),
):
    banks = container.processor.list_banks(container.settings.currency)
    return {"banks": [{"name": bank.name, "code": bank.code} for bank in banks]}
