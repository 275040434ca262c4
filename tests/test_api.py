from __future__ import annotations

import base64

import pytest
from fastapi.testclient import TestClient

from conftest import FakeGateway, PNG_BYTES

from careledger import bill_service
from careledger.llm_adapters.gemini_adapter import NotConfigured
from careledger.main import app
from careledger.state import AppState, SessionRegistry
from careledger.store_adapters.local_adapter import LocalDocumentStore, LocalRecordStore

BILL_CLASSIFICATION = {
    "isValid": True,
    "type": "bill",
    "summary": "ER visit",
    "extractedData": {"amount": 532.10, "hospitalName": "Mercy General", "date": "2024-03-02"},
}


@pytest.fixture
def gateway(monkeypatch, tmp_path):
    fake = FakeGateway()
    records = LocalRecordStore(tmp_path)
    documents = LocalDocumentStore(tmp_path)

    def factory(user_id: str) -> AppState:
        return AppState(user_id=user_id, records=records, documents=documents, gateway=fake)

    monkeypatch.setattr(app.state, "sessions", SessionRegistry(factory))
    monkeypatch.setattr(app.state, "gateway", fake)
    return fake


@pytest.fixture
def client(gateway):
    return TestClient(app)


def _start(client, user_id="user-1"):
    resp = client.post("/session/start", json={"user_id": user_id})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_requires_session(client):
    resp = client.get("/bills", params={"user_id": "nobody"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No session. Call /session/start first."


def test_bill_upload_flow(client, gateway):
    _start(client)
    gateway.replies.append(BILL_CLASSIFICATION)

    resp = client.post(
        "/bills",
        params={"user_id": "user-1"},
        files={"file": ("bill.png", PNG_BYTES, "image/png")},
    )
    assert resp.status_code == 200, resp.text
    bill = resp.json()["bill"]
    assert bill["status"] == "pending"
    assert bill["hospital_name"] == "Mercy General"
    assert bill["bill_date"] == "2024-03-02"

    listing = client.get("/bills", params={"user_id": "user-1"}).json()["bills"]
    assert [item["id"] for item in listing] == [bill["id"]]

    summary = client.get("/predictions/summary", params={"user_id": "user-1"}).json()
    assert summary["summary"]["pending_bills"] == 1
    assert summary["active_policy"] is None

    resp = client.patch(f"/bills/{bill['id']}/status", params={"user_id": "user-1"}, json={"status": "paid"})
    assert resp.json()["bill"]["status"] == "paid"

    resp = client.patch("/bills/missing/status", params={"user_id": "user-1"}, json={"status": "paid"})
    assert resp.status_code == 404


def test_manual_bill_validation_error(client):
    _start(client)
    resp = client.post("/bills", params={"user_id": "user-1"}, data={"hospital_name": "City Clinic"})
    assert resp.status_code == 400


def test_recalculate_without_policy_conflicts(client):
    _start(client)
    resp = client.post("/predictions/recalculate", params={"user_id": "user-1"})
    assert resp.status_code == 409


def test_insurance_upload_and_dashboard(client, gateway):
    _start(client)
    gateway.replies.append({"isValid": True, "type": "other"})

    resp = client.post(
        "/insurance",
        params={"user_id": "user-1"},
        data={"document_type": "Policy"},
        files={"file": ("policy.pdf", b"%PDF-1.4 test", "application/pdf")},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["document"]["status"] == "rejected"

    dashboard = client.get("/dashboard", params={"user_id": "user-1"}).json()
    assert dashboard["pending_insurance_documents"] == 0
    assert len(dashboard["spending_trend"]) == 6


def test_chat_and_profile(client, gateway):
    _start(client)
    gateway.replies.append("Hello! How can I help?")

    resp = client.post("/chat", params={"user_id": "user-1"}, json={"message": "hi"})
    assert resp.status_code == 200
    assert resp.json()["reply"]["content"] == "Hello! How can I help?"
    assert len(client.get("/chat", params={"user_id": "user-1"}).json()["messages"]) == 2

    assert client.get("/profile", params={"user_id": "user-1"}).status_code == 404
    resp = client.put("/profile", params={"user_id": "user-1"}, json={"first_name": "Ana"})
    assert resp.json()["profile"]["plan_type"] == "Standard"
    assert client.get("/profile", params={"user_id": "user-1"}).json()["profile"]["first_name"] == "Ana"


def test_ai_invoke_relay(client, gateway):
    gateway.replies.append('{"ok": true}')
    image = base64.b64encode(PNG_BYTES).decode("ascii")

    resp = client.post("/ai/invoke", json={"prompt": "classify", "image": {"data": image, "mimeType": "image/png"}})

    assert resp.status_code == 200
    assert resp.json() == {"text": '{"ok": true}'}
    assert gateway.calls[0]["image"].mime_type == "image/png"


def test_ai_invoke_unconfigured(client, gateway):
    gateway.replies.append(NotConfigured("GEMINI_API_KEY is not configured"))
    resp = client.post("/ai/invoke", json={"prompt": "hello"})
    assert resp.status_code == 503
    assert resp.json()["detail"] == "AI service unavailable"


def test_session_end(client):
    _start(client)
    assert client.post("/session/end", params={"user_id": "user-1"}).status_code == 200
    assert client.post("/session/end", params={"user_id": "user-1"}).status_code == 404


def test_internal_value_errors_are_not_echoed(client, monkeypatch):
    _start(client)

    async def broken_analysis(state, bill_id):
        raise ValueError("unsupported url for local store: https://internal.example/bucket/x.png")

    monkeypatch.setattr(bill_service, "analyze_bill_on_demand", broken_analysis)

    resp = client.post("/bills/b-1/analyze", params={"user_id": "user-1"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "internal error"


def test_input_errors_keep_their_message(client):
    _start(client)
    resp = client.post(
        "/bills",
        params={"user_id": "user-1"},
        files={"file": ("bill.exe", b"MZ", "application/octet-stream")},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Invalid file type.")
