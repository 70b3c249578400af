from fastapi.testclient import TestClient

from chargeflow.common.config import settings
from chargeflow.services.gateway.models import AuthorizationStatus
from chargeflow.services.orchestrator.main import create_app

from conftest import FakeBookingStore, FakeGateway, RecordingNotifier, RecordingReconciliation

HEADERS = {"x-api-key": settings.api_key}


def app_client(gateway):
    app = create_app(
        gateway=gateway,
        booking_store=FakeBookingStore(),
        notifier=RecordingNotifier(),
        reconciliation=RecordingReconciliation(),
        run_workers=False,
    )
    return TestClient(app)


def body(reference="BK-1", variant="full"):
    return {
        "reference": reference,
        "amount": 250000,
        "currency": "PHP",
        "variant": variant,
        "selection": {"kind": "gcash"},
        "billing": {"name": "Juan Dela Cruz", "email": "juan@example.com"},
    }


def test_create_authorization_success():
    with app_client(FakeGateway()) as client:
        resp = client.post("/authorizations", json=body(), headers=HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] == "SUCCEEDED"
        assert data["outcome"]["succeeded"] is True
        assert data["intent_id"] == "pi_1"

        fetched = client.get("/authorizations/BK-1", headers=HEADERS)
        assert fetched.json()["attempt_id"] == data["attempt_id"]


def test_missing_api_key_is_rejected():
    with app_client(FakeGateway()) as client:
        resp = client.post("/authorizations", json=body())
        assert resp.status_code == 401


def test_unknown_reference_is_404():
    with app_client(FakeGateway()) as client:
        assert client.get("/authorizations/NOPE", headers=HEADERS).status_code == 404


def test_invalid_amount_is_422():
    with app_client(FakeGateway()) as client:
        payload = body()
        payload["amount"] = 0
        assert client.post("/authorizations", json=payload, headers=HEADERS).status_code == 422


def test_challenge_then_second_attempt_conflicts():
    gateway = FakeGateway(
        attach_status=AuthorizationStatus.AWAITING_CHALLENGE,
        challenge_url="https://acs.test/3ds",
        statuses=[AuthorizationStatus.PROCESSING],
    )
    with app_client(gateway) as client:
        first = client.post("/authorizations", json=body(variant="deposit"), headers=HEADERS)
        assert first.json()["state"] == "AWAITING_CHALLENGE"
        assert first.json()["challenge"]["url"] == "https://acs.test/3ds"

        second = client.post("/authorizations", json=body(), headers=HEADERS)
        assert second.status_code == 409

        ignored = client.post(
            "/authorizations/BK-1/challenge-message", json={"payload": "nope"}, headers=HEADERS
        )
        assert ignored.json() == {"accepted": False}

        cancelled = client.delete("/authorizations/BK-1", headers=HEADERS)
        assert cancelled.json() == {"cancelled": True}
        assert client.get("/authorizations/BK-1", headers=HEADERS).json()["state"] == "CANCELLED"


def test_health_and_metrics():
    with app_client(FakeGateway()) as client:
        assert client.get("/health").json() == {"ok": True}
        metrics = client.get("/metrics")
        assert metrics.status_code == 200
        assert "authorization_attempts_total" in metrics.text
