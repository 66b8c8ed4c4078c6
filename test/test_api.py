"""HTTP surface, driven through FastAPI's TestClient against the in-memory store."""
import pytest
from fastapi.testclient import TestClient

from docflow.main import create_app
from docflow.memory_store import MemoryStore
from docflow.services import build_services

from _helper import ADMIN, CITY, COURIER, OWNER, SERVICE, RecordingNotifier, sample_payload


@pytest.fixture()
def client():
    services = build_services(MemoryStore(), RecordingNotifier(), require_delivery_info=True)
    return TestClient(create_app(services))


def _delegate(client, city=CITY):
    r = client.post("/admin/delegates", json={"user_id": "user-d1", "name": "Kouassi", "city": city, "service": SERVICE.value})
    assert r.status_code == 201
    return r.json()


def _invoice(client, with_delivery=True):
    payload = sample_payload(with_delivery=with_delivery).model_dump(mode="json")
    r = client.post("/invoices", json={"owner_id": OWNER.id, "payload": payload})
    assert r.status_code == 201
    return r.json()


def _actor(role, actor_id):
    return {"actor": {"role": role, "id": actor_id}}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_full_order_flow(client):
    delegate = _delegate(client)
    invoice = _invoice(client)
    assert invoice["amount"] == 6000

    r = client.post(f"/invoices/{invoice['id']}/confirm", json={"transaction_ref": "wave-1"})
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "confirmed"
    assert body["delegate_id"] == delegate["id"]
    order_id = body["order_id"]

    order = client.get(f"/orders/{order_id}").json()
    assert order["status"] == "assigned"
    assert "delivery_code" not in order

    as_delegate = _actor("delegate", delegate["id"])
    assert client.post(f"/orders/{order_id}/start", json=as_delegate).json()["status"] == "in_progress"
    assert client.post(f"/orders/{order_id}/ready", json=as_delegate).json()["status"] == "ready"
    r = client.post(f"/admin/orders/{order_id}/courier", json={"operator_id": ADMIN.id, "courier_id": COURIER.id})
    assert r.status_code == 200
    r = client.post(f"/orders/{order_id}/ship", json={**as_delegate, "shipping_company": "UTB", "tracking_code": "TRK-1"})
    assert r.json()["status"] == "shipped"

    as_courier = _actor("courier", COURIER.id)
    assert client.post(f"/orders/{order_id}/pickup", json=as_courier).json()["status"] == "in_transit"
    code = client.get(f"/orders/{order_id}/delivery-code", params={"owner_id": OWNER.id}).json()["delivery_code"]
    r = client.post(f"/orders/{order_id}/deliver", json={**as_courier, "code": code})
    assert r.json()["status"] == "delivered"
    r = client.post(f"/orders/{order_id}/complete", json=_actor("owner", OWNER.id))
    assert r.json()["status"] == "completed"

    timeline = client.get(f"/orders/{order_id}/timeline").json()
    assert [e["to_status"] for e in timeline][-1] == "completed"
    assert client.get(f"/orders/{order_id}/earnings").json() == {"order_id": order_id, "delegate_payout": 5000}


def test_confirm_twice_is_already_processed(client):
    invoice = _invoice(client)
    first = client.post(f"/invoices/{invoice['id']}/confirm").json()

    r = client.post(f"/invoices/{invoice['id']}/confirm")

    assert r.status_code == 200
    assert r.json() == {"status": "already_processed", "invoice_id": invoice["id"], "order_id": first["order_id"]}


def test_invoice_lookup_by_reference(client):
    invoice = _invoice(client)

    r = client.get(f"/invoices/by-reference/{invoice['reference']}")

    assert r.status_code == 200
    assert r.json()["id"] == invoice["id"]


def test_not_found(client):
    r = client.get("/orders/missing")
    assert r.status_code == 404
    assert r.json()["status"] == "not_found"
    assert client.post("/invoices/missing/confirm").status_code == 404


def test_invalid_transition_is_conflict(client):
    invoice = _invoice(client)
    order_id = client.post(f"/invoices/{invoice['id']}/confirm").json()["order_id"]

    r = client.post(f"/orders/{order_id}/start", json=_actor("delegate", "del-x"))

    assert r.status_code == 409
    body = r.json()
    assert body["status"] == "invalid_transition"
    assert body["current_status"] == "new"
    assert body["attempted_status"] == "in_progress"


def test_missing_delivery_info_is_unprocessable(client):
    delegate = _delegate(client)
    invoice = _invoice(client, with_delivery=False)
    order_id = client.post(f"/invoices/{invoice['id']}/confirm").json()["order_id"]
    as_delegate = _actor("delegate", delegate["id"])
    client.post(f"/orders/{order_id}/start", json=as_delegate)

    r = client.post(f"/orders/{order_id}/ready", json=as_delegate)

    assert r.status_code == 422
    assert r.json()["error"] == "MissingDeliveryInfo"

    r = client.put(f"/orders/{order_id}/delivery", json={
        **_actor("owner", OWNER.id),
        "delivery": {"recipient_name": "Awa", "recipient_phone": "+2250700000000", "destination_city": "Bouake"},
    })
    assert r.status_code == 200
    assert client.post(f"/orders/{order_id}/ready", json=as_delegate).json()["status"] == "ready"


def test_delivery_code_only_for_owner(client):
    invoice = _invoice(client)
    order_id = client.post(f"/invoices/{invoice['id']}/confirm").json()["order_id"]

    r = client.get(f"/orders/{order_id}/delivery-code", params={"owner_id": "user-999"})

    assert r.status_code == 403


def test_duplicate_delegate_is_conflict(client):
    _delegate(client)

    r = client.post("/admin/delegates", json={"user_id": "user-d2", "city": CITY, "service": SERVICE.value})

    assert r.status_code == 409
    assert r.json()["status"] == "duplicate_delegate"


def test_cities_and_availability(client):
    _delegate(client)
    _delegate(client, city="Abobo")

    cities = client.get("/delegates/cities").json()["cities"]
    assert [c["city"] for c in cities] == ["Abobo", CITY]

    r = client.get("/delegates/availability", params={"city": CITY, "service": SERVICE.value})
    assert r.json() == {"city": CITY, "service": SERVICE.value, "available": True}
    r = client.get("/delegates/availability", params={"city": CITY, "service": "judicial"})
    assert r.json()["available"] is False


def test_batch_dispatch(client):
    invoice = _invoice(client)
    order_id = client.post(f"/invoices/{invoice['id']}/confirm").json()["order_id"]
    _delegate(client)

    r = client.post("/orders/dispatch", json={"order_ids": [order_id, "missing"]})

    assert r.status_code == 200
    body = r.json()
    assert body[order_id]["outcome"] == "assigned"
    assert body["missing"]["outcome"] == "failed"


def test_admin_overrides(client):
    invoice = _invoice(client)
    order_id = client.post(f"/invoices/{invoice['id']}/confirm").json()["order_id"]
    delegate = _delegate(client, city="Yopougon")

    r = client.post(f"/admin/orders/{order_id}/force-assign", json={"operator_id": ADMIN.id, "delegate_id": delegate["id"]})
    assert r.status_code == 200
    assert r.json()["delegate_id"] == delegate["id"]

    r = client.post(f"/admin/orders/{order_id}/force-status", json={"operator_id": ADMIN.id, "status": "ready"})
    assert r.json()["status"] == "ready"
    r = client.post(f"/admin/orders/{order_id}/force-status", json={"operator_id": ADMIN.id, "status": "assigned"})
    assert r.status_code == 409


def test_cancel_invoice_then_expire_sweep(client):
    invoice = _invoice(client)

    assert client.post(f"/invoices/{invoice['id']}/cancel").json()["status"] == "cancelled"
    assert client.post(f"/invoices/{invoice['id']}/confirm").status_code == 409
    assert client.post("/admin/invoices/expire").json() == {"status": "ok", "expired": 0}


def test_metrics_endpoint(client, monkeypatch):
    from docflow import main

    async def backlog():
        return 3

    monkeypatch.setattr(main, "queue_backlog", backlog)

    r = client.get("/metrics")

    assert r.status_code == 200
    assert "notification_queue_backlog 3.0" in r.text
