import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from libs.py_common.errors import (
    AuthError,
    ConflictError,
    ExternalProcessorError,
    NotFoundError,
    PartialFailureError,
    ProcessorRejectedError,
    ValidationError,
    register_error_handlers,
)


class Body(BaseModel):
    amount: int


@pytest.fixture
def client():
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/raise/{kind}")
    def raise_error(kind: str):
        errors = {
            "validation": ValidationError("amount must be positive"),
            "auth": AuthError("Invalid signature"),
            "not_found": NotFoundError("Order 1 not found"),
            "conflict": ConflictError("Order already paid"),
            "processor": ProcessorRejectedError("Invalid account", raw={"status": False}, upstream_status=422),
            "partial": PartialFailureError("Recorded nothing", reference="order_1_2_ab", checkout_url="https://pay"),
        }
        raise errors[kind]

    @app.post("/body")
    def body(payload: Body):
        return payload

    return TestClient(app)


@pytest.mark.parametrize("kind, status_code", [
    ("validation", 400),
    ("auth", 401),
    ("not_found", 404),
    ("conflict", 409),
    ("processor", 400),
    ("partial", 500),
])
def test_errors_map_to_status_codes(client, kind, status_code):
    response = client.get(f"/raise/{kind}")
    assert response.status_code == status_code


def test_processor_error_body_carries_raw(client):
    body = client.get("/raise/processor").json()
    assert body == {"error": "Invalid account", "kind": "processor", "raw": {"status": False}}


def test_partial_failure_body_carries_reference(client):
    body = client.get("/raise/partial").json()
    assert body["kind"] == "partial_failure"
    assert body["reference"] == "order_1_2_ab"
    assert body["checkout_url"] == "https://pay"
    assert "transfer" not in body


def test_malformed_body_is_validation_error(client):
    response = client.post("/body", json={"amount": "lots"})

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"
    assert response.json()["details"][0]["loc"] == ["body", "amount"]


def test_processor_rejection_is_processor_error():
    error = ProcessorRejectedError("nope")
    assert isinstance(error, ExternalProcessorError)
    assert error.to_dict() == {"error": "nope", "kind": "processor"}


def test_partial_failure_with_transfer_and_cause():
    error = PartialFailureError("x", reference="payout_1", transfer_code="TRF_1", cause=RuntimeError("db"))
    assert error.to_dict() == {
        "error": "x",
        "kind": "partial_failure",
        "reference": "payout_1",
        "transfer": {"transfer_code": "TRF_1", "reference": "payout_1"},
        "cause": "db",
    }
