import json
import pytest
from fastapi.testclient import TestClient
from shopsync.core.exceptions import NetworkError
from shopsync.engine import build_engine
from shopsync.main import create_app
from shopsync.models.entities import Customer
from shopsync.services.webhook_ingestor import compute_signature
from tests.conftest import FakeCloud, FakePos, ts

HEADER = "x-square-hmacsha256-signature"

@pytest.fixture
def sync_engine(test_settings, db_session):
    return build_engine(test_settings, session=db_session, cloud=FakeCloud(), pos=FakePos())

@pytest.fixture
def client(sync_engine):
    app = create_app(lifespan_handler=None)
    app.state.sync_engine = sync_engine
    return TestClient(app)

def post_event(client, settings, payload, signature=None):
    body = json.dumps(payload).encode()
    if signature is None:
        signature = compute_signature(body, settings.POS_WEBHOOK_SIGNATURE_KEY, settings.POS_WEBHOOK_NOTIFICATION_URL)
    return client.post("/webhook", content=body, headers={HEADER: signature})

def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "connected"
    assert set(data["sync"]["domains"]) == {"customers", "inventory", "tickets", "payments", "employees"}

def test_webhook_rejects_bad_signature(client, test_settings):
    response = post_event(client, test_settings, {"type": "customer.updated", "data": {"id": "SQ1"}}, "bad")
    assert response.status_code == 401

def test_webhook_rejects_malformed_payload(client, test_settings):
    response = post_event(client, test_settings, {"type": "customer.updated"})
    assert response.status_code == 400

def test_webhook_imports_new_customer(client, sync_engine, test_settings):
    sync_engine.webhook.import_new_objects = True
    sync_engine.pos.add_customer("SQ1", given_name="Ann", updated_at=ts(1))

    response = post_event(client, test_settings, {
        "type": "customer.created",
        "event_id": "evt-1",
        "data": {"id": "SQ1"},
    })

    assert response.status_code == 200
    assert response.json()["outcome"] == "created"
    assert sync_engine.store.first(Customer, Customer.external_ref == "SQ1") is not None

def test_webhook_upstream_failure_returns_502(client, sync_engine, test_settings):
    sync_engine.webhook.import_new_objects = True
    sync_engine.pos.fail_with = NetworkError("POS unreachable")

    response = post_event(client, test_settings, {"type": "customer.updated", "data": {"id": "SQ1"}})

    assert response.status_code == 502

def test_webhook_without_pos_configuration(test_settings, db_session):
    settings = test_settings.model_copy(update={"POS_ACCESS_TOKEN": None})
    engine = build_engine(settings, session=db_session, cloud=FakeCloud())
    app = create_app(lifespan_handler=None)
    app.state.sync_engine = engine

    response = TestClient(app).post("/webhook", content=b"{}", headers={HEADER: "x"})

    assert response.status_code == 503
