import uuid
from unittest.mock import MagicMock, patch

import pytest
from fastapi import status
from sqlalchemy.exc import OperationalError

from conftest import actor_headers
from libs.py_common.errors import ProcessorRejectedError
from services.payouts.models import PayoutStatus, Vendor

ADMIN = actor_headers("admin-1", "admin")


@pytest.fixture
def vendor_headers(make_vendor, ledger):
    vendor = make_vendor()
    ledger.credit(vendor.id, 1000000, uuid.uuid4())
    return vendor, actor_headers(vendor.id, "vendor")


def test_vendor_creates_and_cancels_request(payouts_client, vendor_headers):
    vendor, headers = vendor_headers

    created = payouts_client.post("/payouts/requests", json={"amount": 250000}, headers=headers)
    cancelled = payouts_client.post(f"/payouts/requests/{created.json()['id']}/cancel", headers=headers)

    assert created.status_code == status.HTTP_201_CREATED
    assert created.json()["status"] == PayoutStatus.PENDING
    assert created.json()["vendor_id"] == str(vendor.id)
    assert cancelled.status_code == status.HTTP_200_OK
    assert cancelled.json()["status"] == PayoutStatus.CANCELLED


def test_request_beyond_balance_is_409(payouts_client, vendor_headers):
    _, headers = vendor_headers

    response = payouts_client.post("/payouts/requests", json={"amount": 1000001}, headers=headers)

    assert response.status_code == status.HTTP_409_CONFLICT


def test_zero_amount_is_400(payouts_client, vendor_headers):
    _, headers = vendor_headers

    response = payouts_client.post("/payouts/requests", json={"amount": 0}, headers=headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["kind"] == "validation"


def test_admin_cannot_create_vendor_request(payouts_client):
    response = payouts_client.post("/payouts/requests", json={"amount": 100}, headers=ADMIN)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_wallet_view(payouts_client, vendor_headers):
    _, headers = vendor_headers
    payouts_client.post("/payouts/requests", json={"amount": 400000}, headers=headers)

    response = payouts_client.get("/payouts/wallet", headers=headers)

    body = response.json()
    assert response.status_code == status.HTTP_200_OK
    assert body["balance"] == 1000000
    assert body["available_balance"] == 600000
    assert body["currency"] == "NGN"
    assert len(body["transactions"]) == 1
    assert body["requests"][0]["amount"] == 400000


def test_bank_details_update_clears_recipient(payouts_client, vendor_headers, session_factory):
    vendor, headers = vendor_headers
    with session_factory() as session, session.begin():
        session.get(Vendor, vendor.id).recipient_code = "RCP_old"

    response = payouts_client.put(
        "/payouts/bank-details",
        json={"bank_name": "GTBank", "bank_code": "058", "account_number": "0987654321", "account_name": "MAMA PUT"},
        headers=headers,
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["bank_code"] == "058"
    with session_factory() as session:
        assert session.get(Vendor, vendor.id).recipient_code is None


def test_bank_details_require_ten_digit_account(payouts_client, vendor_headers):
    _, headers = vendor_headers

    response = payouts_client.put(
        "/payouts/bank-details",
        json={"bank_code": "058", "account_number": "09876", "account_name": "MAMA PUT"},
        headers=headers,
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_admin_review_flow(payouts_client, vendor_headers):
    _, headers = vendor_headers
    first = payouts_client.post("/payouts/requests", json={"amount": 1000}, headers=headers).json()
    second = payouts_client.post("/payouts/requests", json={"amount": 2000}, headers=headers).json()

    approved = payouts_client.post(f"/admin/payouts/{first['id']}/approve", headers=ADMIN)
    rejected = payouts_client.post(f"/admin/payouts/{second['id']}/reject", json={"reason": "Duplicate"},
                                   headers=ADMIN)
    again = payouts_client.post(f"/admin/payouts/{first['id']}/approve", headers=ADMIN)
    listed = payouts_client.get("/admin/payouts", params={"status": "approved"}, headers=ADMIN)

    assert approved.json()["status"] == PayoutStatus.APPROVED
    assert approved.json()["reviewed_by"] == "admin-1"
    assert rejected.json()["rejection_reason"] == "Duplicate"
    assert again.status_code == status.HTTP_409_CONFLICT
    assert [p["id"] for p in listed.json()["payouts"]] == [first["id"]]


def test_reject_without_reason_is_400(payouts_client, vendor_headers):
    _, headers = vendor_headers
    created = payouts_client.post("/payouts/requests", json={"amount": 1000}, headers=headers).json()

    response = payouts_client.post(f"/admin/payouts/{created['id']}/reject", json={}, headers=ADMIN)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_list_limit_above_cap_is_400(payouts_client):
    response = payouts_client.get("/admin/payouts", params={"limit": 501}, headers=ADMIN)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_transfer_success(payouts_client, approved_request):
    _, request = approved_request(amount=300000)

    response = payouts_client.post("/payouts/transfer", json={"request_id": str(request.id)}, headers=ADMIN)

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["ok"] is True
    assert body["transfer"]["transfer_code"] == "TRF_1"
    assert body["transfer"]["status"] == "success"
    assert body["transfer"]["reference"].startswith(f"payout_{request.id}_")


def test_transfer_processor_error_includes_raw(payouts_client, approved_request, processor):
    _, request = approved_request(amount=300000)
    raw = {"status": False, "message": "Insufficient balance"}
    processor.fail_transfer = ProcessorRejectedError("Insufficient balance", raw=raw)

    response = payouts_client.post("/payouts/transfer", json={"request_id": str(request.id)}, headers=ADMIN)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "Insufficient balance"
    assert response.json()["raw"] == raw


def test_transfer_partial_failure_is_500_with_reference(payouts_client, approved_request, payouts_container):
    _, request = approved_request(amount=200000)

    with patch.object(payouts_container.payouts, "mark_paid",
                      side_effect=OperationalError("UPDATE", {}, Exception("db gone"))):
        response = payouts_client.post("/payouts/transfer", json={"request_id": str(request.id)}, headers=ADMIN)

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    body = response.json()
    assert body["kind"] == "partial_failure"
    assert body["transfer"]["transfer_code"] == "TRF_1"
    assert body["reference"].startswith(f"payout_{request.id}_")


def test_transfer_requires_admin(payouts_client, approved_request):
    vendor, request = approved_request()

    response = payouts_client.post(
        "/payouts/transfer", json={"request_id": str(request.id)}, headers=actor_headers(vendor.id, "vendor")
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


# Mock the Celery task's apply_async method; the endpoint only enqueues
@patch("services.payouts.routes.execute_transfer.apply_async")
def test_retry_transfer_enqueues_task(mock_apply_async, payouts_client, approved_request):
    mock_apply_async.return_value = MagicMock(id="test_task_id")
    _, request = approved_request()

    response = payouts_client.post(f"/internal/payouts/{request.id}/retry_transfer", headers=ADMIN)

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json() == {"message": "Transfer retry initiated.", "request_id": str(request.id)}
    mock_apply_async.assert_called_once_with(args=[str(request.id), "admin-1"], queue="payouts")


@patch("services.payouts.routes.execute_transfer.apply_async", side_effect=Exception("Celery Broker Down"))
def test_retry_transfer_celery_failure(mock_apply_async, payouts_client, approved_request):
    _, request = approved_request()

    response = payouts_client.post(f"/internal/payouts/{request.id}/retry_transfer", headers=ADMIN)

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json() == {"detail": "Failed to enqueue transfer task."}


@patch("services.payouts.routes.execute_transfer.apply_async")
def test_retry_transfer_unknown_request_is_404(mock_apply_async, payouts_client):
    response = payouts_client.post(f"/internal/payouts/{uuid.uuid4()}/retry_transfer", headers=ADMIN)

    assert response.status_code == status.HTTP_404_NOT_FOUND
    mock_apply_async.assert_not_called()


def test_payouts_health_check(payouts_client):
    response = payouts_client.get("/payouts-health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok", "service": "payouts-api"}


def test_metrics_endpoint(payouts_client):
    response = payouts_client.get("/metrics")
    assert response.status_code == status.HTTP_200_OK
    assert "payouts_transfers_total" in response.text
