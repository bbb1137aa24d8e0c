import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from libs.py_common.auth import Actor, require_admin, require_vendor
from libs.py_common.errors import AuthError
from services.wallet.models import LedgerTransactionRead

from .deps import PayoutsContainer, get_container
from .models import BankDetailsUpdate, PayoutRequestCreate, PayoutRequestRead, VendorBase
from .requests import MAX_LIST_LIMIT
from .worker import execute_transfer

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payouts", tags=["payouts"])
admin_router = APIRouter(prefix="/admin/payouts", tags=["payouts-admin"])
internal_router = APIRouter(prefix="/internal/payouts", tags=["payouts-internal"])


class TransferTrigger(BaseModel):
    request_id: uuid.UUID


class RejectPayout(BaseModel):
    reason: Optional[str] = None


def vendor_id_of(actor: Actor) -> uuid.UUID:
    try:
        return uuid.UUID(actor.id)
    except ValueError as e:
        raise AuthError("Vendor identity is not a valid id") from e


# --- vendor ---
@router.post("/requests", response_model=PayoutRequestRead, status_code=status.HTTP_201_CREATED)
def create_payout_request(
    body: PayoutRequestCreate,
    actor: Actor = Depends(require_vendor),
    container: PayoutsContainer = Depends(get_container),
):
    return container.payouts.create(vendor_id_of(actor), body.amount)


@router.post("/requests/{request_id}/cancel", response_model=PayoutRequestRead)
def cancel_payout_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(require_vendor),
    container: PayoutsContainer = Depends(get_container),
):
    return container.payouts.cancel(request_id, vendor_id_of(actor))


@router.get("/wallet")
def get_wallet(
    limit: int = Query(default=50, ge=1, le=MAX_LIST_LIMIT),
    actor: Actor = Depends(require_vendor),
    container: PayoutsContainer = Depends(get_container),
):
    vendor_id = vendor_id_of(actor)
    balance = container.ledger.get_balance(vendor_id)
    return {
        "vendor_id": str(vendor_id),
        "currency": container.settings.currency,
        "balance": balance,
        "available_balance": balance - container.payouts.outstanding_amount(vendor_id),
        "transactions": [
            LedgerTransactionRead.model_validate(entry).model_dump(mode="json")
            for entry in container.ledger.list_transactions(vendor_id, limit=limit)
        ],
        "requests": [
            PayoutRequestRead.model_validate(request).model_dump(mode="json")
            for request in container.payouts.list_for_vendor(vendor_id, limit=limit)
        ],
    }


@router.put("/bank-details", response_model=VendorBase)
def update_bank_details(
    body: BankDetailsUpdate,
    actor: Actor = Depends(require_vendor),
    container: PayoutsContainer = Depends(get_container),
):
    return container.vendors.update_bank_details(vendor_id_of(actor), body)


# --- admin ---
@router.post("/transfer")
def trigger_transfer(
    body: TransferTrigger,
    actor: Actor = Depends(require_admin),
    container: PayoutsContainer = Depends(get_container),
):
    outcome = container.orchestrator.execute(body.request_id, actor.id)
    return {"ok": True, "transfer": outcome.to_dict()}


@admin_router.get("")
def list_payouts(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=MAX_LIST_LIMIT),
    actor: Actor = Depends(require_admin),
    container: PayoutsContainer = Depends(get_container),
):
    requests = container.payouts.list_all(status=status_filter, limit=limit)
    return {"payouts": [PayoutRequestRead.model_validate(r).model_dump(mode="json") for r in requests]}


@admin_router.post("/{request_id}/approve", response_model=PayoutRequestRead)
def approve_payout(
    request_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    container: PayoutsContainer = Depends(get_container),
):
    return container.payouts.approve(request_id, reviewer=actor.id)


@admin_router.post("/{request_id}/reject", response_model=PayoutRequestRead)
def reject_payout(
    request_id: uuid.UUID,
    body: RejectPayout,
    actor: Actor = Depends(require_admin),
    container: PayoutsContainer = Depends(get_container),
):
    return container.payouts.reject(request_id, body.reason, reviewer=actor.id)


# --- internal ---
@internal_router.post("/{request_id}/retry_transfer", status_code=status.HTTP_202_ACCEPTED)
def retry_transfer(
    request_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    container: PayoutsContainer = Depends(get_container),
):
    """Queues the transfer of an approved payout request on the payouts worker."""
    container.payouts.get(request_id)  # 404 before anything is queued
    logger.info("Received request to retry transfer for payout request", payout_request_id=str(request_id))

    task_name = "services.payouts.worker.execute_transfer"
    try:
        execute_transfer.apply_async(args=[str(request_id), actor.id], queue="payouts")
        logger.info("Transfer task sent to Celery queue", payout_request_id=str(request_id), task_name=task_name)
    except Exception as e:
        logger.error("Failed to send transfer task to Celery", payout_request_id=str(request_id), error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Failed to enqueue transfer task.")

    return {"message": "Transfer retry initiated.", "request_id": str(request_id)}
