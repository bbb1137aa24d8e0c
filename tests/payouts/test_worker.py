import uuid
from unittest.mock import MagicMock, patch

import pytest

from libs.py_common.errors import ConflictError, PartialFailureError, ProcessorRejectedError
from services.payouts.models import PayoutStatus
from services.payouts.transfers import TransferOutcome
from services.payouts.worker import celery_app as payouts_celery_app, execute_transfer


@pytest.fixture
def mock_container():
    container = MagicMock()
    with patch("services.payouts.worker.get_worker_container", return_value=container):
        yield container


def test_task_is_registered_under_stable_name():
    assert "services.payouts.worker.execute_transfer" in payouts_celery_app.tasks


def test_execute_transfer_success(mock_container):
    request_id = uuid.uuid4()
    mock_container.orchestrator.execute.return_value = TransferOutcome(
        payout_request_id=request_id, transfer_code="TRF_1", reference="payout_ref", status="success", amount=5000
    )

    result = execute_transfer(str(request_id), "admin-1")

    assert result == {
        "status": "success",
        "transfer": {"transfer_code": "TRF_1", "reference": "payout_ref", "status": "success"},
    }
    mock_container.orchestrator.execute.assert_called_once_with(request_id, "admin-1")


def test_execute_transfer_processor_rejection_is_not_retried(mock_container):
    mock_container.orchestrator.execute.side_effect = ProcessorRejectedError("Invalid recipient", raw={"status": False})

    result = execute_transfer(str(uuid.uuid4()), "admin-1")

    assert result["status"] == "error"
    assert result["kind"] == "processor"
    assert result["raw"] == {"status": False}
    assert mock_container.orchestrator.execute.call_count == 1


def test_execute_transfer_partial_failure_reports_reference(mock_container):
    mock_container.orchestrator.execute.side_effect = PartialFailureError(
        "Transfer was initiated but the payout could not be recorded", reference="payout_ref", transfer_code="TRF_9"
    )

    result = execute_transfer(str(uuid.uuid4()))

    assert result["status"] == "partial_failure"
    assert result["transfer"] == {"transfer_code": "TRF_9", "reference": "payout_ref"}


def test_execute_transfer_conflict(mock_container):
    mock_container.orchestrator.execute.side_effect = ConflictError("already being transferred")

    result = execute_transfer(str(uuid.uuid4()), "admin-1")

    assert result == {"status": "error", "error": "already being transferred", "kind": "conflict"}


def test_execute_transfer_invalid_id(mock_container):
    result = execute_transfer("not-a-uuid", "admin-1")

    assert result["status"] == "error"
    mock_container.orchestrator.execute.assert_not_called()


def test_execute_transfer_against_real_orchestrator(payouts_container, approved_request, ledger):
    vendor, request = approved_request(amount=300000, balance=1000000)

    with patch("services.payouts.worker.get_worker_container", return_value=payouts_container):
        result = execute_transfer(str(request.id), "admin-1")

    assert result["status"] == "success"
    assert payouts_container.payouts.get(request.id).status == PayoutStatus.PAID
    assert ledger.get_balance(vendor.id) == 700000
