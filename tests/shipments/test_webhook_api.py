import json
import logging

import pytest
from fastapi.testclient import TestClient

from delhivery_sync.main import app
from delhivery_sync.services.signature_service import compute_signature

client = TestClient(app)

WEBHOOK = "/api/webhooks/delhivery"
SECRET = "whsec-test"


def _post(payload, headers=None):
    body = json.dumps(payload).encode()
    return client.post(WEBHOOK, content=body, headers={"Content-Type": "application/json", **(headers or {})})


def test_webhook_acknowledges_and_reconciles(make_shipment, load_shipment):
    make_shipment(awb="AWB123", status="placed")

    response = _post({"waybill": "AWB123", "status": "Picked Up", "status_datetime": "2024-01-01T10:00:00Z"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Webhook received, processing asynchronously"}
    ship = load_shipment("AWB123")
    assert ship.status == "picked_up"
    assert len(ship.tracking_history) == 1
    assert ship.tracking_history[0]["timestamp"] == "2024-01-01T10:00:00Z"
    assert ship.last_sync_at is not None


def test_duplicate_webhook_keeps_single_history_entry(make_shipment, load_shipment):
    make_shipment(awb="AWB123", status="placed")
    payload = {"waybill": "AWB123", "status": "Picked Up", "status_datetime": "2024-01-01T10:00:00Z"}

    assert _post(payload).status_code == 200
    assert _post(payload).status_code == 200

    ship = load_shipment("AWB123")
    assert ship.status == "picked_up"
    assert len(ship.tracking_history) == 1


def test_unknown_waybill_still_acknowledged(make_shipment, load_shipment, caplog):
    make_shipment(awb="AWB123", status="placed")

    with caplog.at_level(logging.WARNING):
        response = _post({"waybill": "NONEXISTENT", "status": "Picked Up"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert load_shipment("AWB123").status == "placed"
    assert any("NONEXISTENT" in r.getMessage() and r.levelno == logging.WARNING for r in caplog.records)


def test_missing_fields_rejected_without_reconciling(make_shipment, load_shipment, monkeypatch):
    make_shipment(awb="AWB123", status="placed")
    called = []

    async def spy(*args, **kwargs):
        called.append(args)

    monkeypatch.setattr("delhivery_sync.services.reconcile_service.reconcile", spy)

    response = _post({})
    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Missing required fields: waybill and status are required",
    }
    assert _post({"waybill": "AWB123"}).status_code == 400
    assert _post({"status": "Picked Up"}).status_code == 400
    assert called == []


@pytest.mark.parametrize("body", [b"not json", b"[1, 2, 3]"])
def test_malformed_body_rejected(body):
    response = client.post(WEBHOOK, content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON payload"}


def test_signed_webhook_accepted(monkeypatch, make_shipment, load_shipment):
    monkeypatch.setenv("DELHIVERY_WEBHOOK_SECRET", SECRET)
    make_shipment(awb="AWB123", status="placed")
    body = json.dumps({"waybill": "AWB123", "status": "Dispatched"}).encode()

    response = client.post(
        WEBHOOK,
        content=body,
        headers={"Content-Type": "application/json", "x-delhivery-signature": compute_signature(body, SECRET)},
    )

    assert response.status_code == 200
    assert load_shipment("AWB123").status == "out_for_delivery"


def test_bad_signature_rejected_before_validation(monkeypatch, make_shipment, load_shipment):
    monkeypatch.setenv("DELHIVERY_WEBHOOK_SECRET", SECRET)
    make_shipment(awb="AWB123", status="placed")

    response = _post({"waybill": "AWB123", "status": "Delivered"}, headers={"x-delhivery-signature": "0" * 64})
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Invalid webhook signature"}

    # Signature is checked first, so even an empty body gets a 401.
    assert _post({}).status_code == 401
    assert load_shipment("AWB123").status == "placed"


def test_unexpected_error_before_ack_returns_500(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("verifier exploded")

    monkeypatch.setattr("delhivery_sync.services.signature_service.verify_signature", boom)

    response = _post({"waybill": "AWB123", "status": "Picked Up"})
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}


def test_reconcile_failure_does_not_change_response(make_shipment, monkeypatch):
    make_shipment(awb="AWB123", status="placed")

    def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr("delhivery_sync.services.shipments_service.apply_tracking_update", broken)

    response = _post({"waybill": "AWB123", "status": "Picked Up"})
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_health_reports_recent_syncs(make_shipment):
    response = client.get(f"{WEBHOOK}/health")
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["recent_syncs"] == 0
    assert data["last_sync"] is None

    make_shipment(awb="AWB1", status="placed")
    make_shipment(awb="AWB2", status="placed", order_id="ORD-1002")
    make_shipment(awb=None, status="pending_review", order_id="ORD-1003")
    _post({"waybill": "AWB2", "status": "Picked Up", "status_datetime": "T1"})

    data = client.get(f"{WEBHOOK}/health").json()
    assert data["message"] == "Webhook endpoint is active and healthy"
    assert data["recent_syncs"] == 2
    assert data["last_sync"] is not None
    assert data["timestamp"]


def test_logs_list_recent_activity(make_shipment):
    make_shipment(awb="AWB123", status="placed")
    for i, status in enumerate(["Picked Up", "In Transit", "Pending", "Dispatched"]):
        _post({"waybill": "AWB123", "status": status, "status_datetime": f"T{i}"})

    data = client.get(f"{WEBHOOK}/logs").json()
    assert data["success"] is True
    assert data["total"] == 1
    entry = data["shipments"][0]
    assert entry["awb"] == "AWB123"
    assert entry["current_status"] == "out_for_delivery"
    assert entry["events_count"] == 4
    assert [e["status"] for e in entry["recent_events"]] == ["In Transit", "Pending", "Dispatched"]


def test_status_table():
    data = client.get(f"{WEBHOOK}/statuses").json()
    assert len(data) == 12
    by_status = {row["status"]: row for row in data}
    assert by_status["delivered"]["terminal"] is True
    assert by_status["in_transit"]["terminal"] is False
    assert by_status["in_transit"]["label"] == "In Transit"
