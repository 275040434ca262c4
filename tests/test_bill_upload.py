from __future__ import annotations

import asyncio
from datetime import date

import pytest

from conftest import PNG_BYTES

from careledger import bill_service
from careledger.bill_service import PLACEHOLDER_HOSPITAL, UNREADABLE_FLAG, add_bill
from careledger.config import BILLS_TABLE, INSURANCE_TABLE
from careledger.errors import UploadFailed

SCENARIO_A = {
    "isValid": True,
    "type": "bill",
    "summary": "Emergency room visit",
    "extractedData": {"amount": 532.10, "hospitalName": "Mercy General", "date": "2024-03-02"},
}


def _upload(state, **fields):
    return asyncio.run(add_bill(state, filename="bill.png", content=PNG_BYTES, content_type="image/png", **fields))


def test_scenario_a_file_only_upload_is_patched_from_classification(make_state):
    state = make_state(SCENARIO_A)
    bill = _upload(state)

    assert bill.amount == pytest.approx(532.10)
    assert bill.hospital_name == "Mercy General"
    assert bill.bill_date == date(2024, 3, 2)
    assert bill.status == "pending"
    assert bill.description == "Emergency room visit"
    assert bill.file_url.startswith("local://hospital-bills/user-1/")

    rows = asyncio.run(state.records.select(BILLS_TABLE, {"user_id": "user-1"}))
    assert len(rows) == 1
    assert rows[0]["status"] == "pending"
    assert rows[0]["hospital_name"] == "Mercy General"
    assert state.bills[0].id == bill.id


def test_scenario_b_classifier_network_error_leaves_placeholders_pending(make_state):
    state = make_state(ConnectionError("network error"))
    bill = _upload(state)

    assert bill.status == "pending"
    assert bill.hospital_name == PLACEHOLDER_HOSPITAL
    assert bill.amount == 0
    assert bill.bill_date == date.today()


def test_invalid_document_is_denied_without_patching(make_state):
    state = make_state({"isValid": False, "type": "other", "extractedData": {"amount": 99}})
    bill = _upload(state, description="my upload")

    assert bill.status == "denied"
    assert bill.description == UNREADABLE_FLAG
    assert bill.amount == 0


def test_valid_document_of_wrong_type_is_denied(make_state):
    state = make_state({"isValid": True, "type": "insurance"})
    bill = _upload(state)

    assert bill.status == "denied"
    assert bill.description == "AI Flag: Document appears to be a insurance instead of a hospital bill."


def test_classification_timeout_moves_bill_to_pending(make_state, monkeypatch):
    monkeypatch.setattr(bill_service, "BILL_CLASSIFY_TIMEOUT", 0.01)

    async def hang():
        await asyncio.sleep(1.0)
        return SCENARIO_A

    state = make_state(hang)
    bill = _upload(state)

    assert bill.status == "pending"
    assert bill.hospital_name == PLACEHOLDER_HOSPITAL


@pytest.mark.parametrize(
    "reply",
    [
        SCENARIO_A,
        {"isValid": False},
        {"isValid": True, "type": "other"},
        "not json at all",
        RuntimeError("quota exceeded"),
    ],
)
def test_bill_never_left_processing(make_state, reply):
    state = make_state(reply)
    bill = _upload(state)
    assert bill.status in {"pending", "denied"}


def test_user_description_survives_classification(make_state):
    state = make_state(SCENARIO_A)
    bill = _upload(state, description="Knee x-ray", hospital_name="St. Luke's")

    assert bill.description == "Knee x-ray"
    assert bill.hospital_name == "Mercy General"


def test_storage_failure_aborts_before_insert(make_state, monkeypatch):
    state = make_state(SCENARIO_A)
    attempts = {"count": 0}

    async def broken_upload(bucket, path, content, content_type):
        attempts["count"] += 1
        raise ConnectionError("connection reset by peer")

    monkeypatch.setattr(state.documents, "upload", broken_upload)

    with pytest.raises(UploadFailed) as exc:
        _upload(state)

    assert str(exc.value) == "Network error. Please check your internet connection."
    assert attempts["count"] == 3
    assert asyncio.run(state.records.select(BILLS_TABLE, {})) == []
    assert state.gateway.calls == []


def test_insert_failure_uses_generic_message(make_state, monkeypatch):
    state = make_state(SCENARIO_A)

    async def broken_insert(table, row):
        raise RuntimeError("permission denied for table hospital_bills")

    monkeypatch.setattr(state.records, "insert", broken_insert)

    with pytest.raises(UploadFailed, match="Failed to upload bill. Please try again."):
        _upload(state)


def test_manual_entry_is_inserted_pending_without_ai(make_state):
    state = make_state()
    bill = asyncio.run(
        add_bill(state, hospital_name="City Clinic", bill_date="2024-02-10", amount="$120.00", description="Checkup")
    )

    assert bill.status == "pending"
    assert bill.amount == 120.0
    assert bill.file_url is None
    assert state.gateway.calls == []


def test_manual_entry_requires_core_fields(make_state):
    state = make_state()
    with pytest.raises(ValueError):
        asyncio.run(add_bill(state, hospital_name="City Clinic"))
    with pytest.raises(ValueError):
        asyncio.run(add_bill(state, hospital_name="City Clinic", bill_date="2024-02-10", amount="-5"))


def test_rejects_unsupported_file_type(make_state):
    state = make_state()
    with pytest.raises(ValueError):
        asyncio.run(add_bill(state, filename="bill.exe", content=b"MZ"))


def test_status_change_and_delete(make_state):
    state = make_state(SCENARIO_A)
    bill = _upload(state)

    paid = asyncio.run(bill_service.update_bill_status(state, bill.id, "paid"))
    assert paid.status == "paid"

    with pytest.raises(ValueError):
        asyncio.run(bill_service.update_bill_status(state, bill.id, "archived"))
    with pytest.raises(KeyError):
        asyncio.run(bill_service.update_bill_status(state, "missing", "paid"))

    content, _ = asyncio.run(state.documents.fetch(bill.file_url))
    assert content == PNG_BYTES

    asyncio.run(bill_service.delete_bill(state, bill.id))
    assert state.bills == []
    with pytest.raises(FileNotFoundError):
        asyncio.run(state.documents.fetch(bill.file_url))


def test_on_demand_analysis_uses_active_policy_and_overwrites_columns(make_state):
    analysis = {
        "overview": {"totalAmount": 610.0, "hospitalName": "Mercy General Hospital", "date": "03/04/2024", "summary": "ER"},
        "coveragePrediction": {"estimatedInsuranceCoverage": 488, "estimatedPatientResponsibility": 122, "confidence": "High"},
    }
    state = make_state(SCENARIO_A, analysis)
    asyncio.run(
        state.records.insert(
            INSURANCE_TABLE,
            {
                "user_id": "user-1",
                "file_name": "policy.pdf",
                "file_type": "Policy",
                "status": "approved",
                "analysis_result": {"overview": {"insurerName": "Aetna", "policyNumber": "AET-778"}},
            },
        )
    )
    asyncio.run(state.load())
    bill = _upload(state)

    analyzed = asyncio.run(bill_service.analyze_bill_on_demand(state, bill.id))

    assert analyzed.analysis_result.coverage_prediction.estimated_insurance_coverage == 488
    assert analyzed.amount == 610.0
    assert analyzed.hospital_name == "Mercy General Hospital"
    assert analyzed.bill_date == date(2024, 3, 4)
    assert "Policy: Aetna - AET-778" in state.gateway.calls[1]["prompt"]


def test_on_demand_analysis_requires_file(make_state):
    state = make_state()
    bill = asyncio.run(add_bill(state, hospital_name="City Clinic", bill_date="2024-02-10", amount=50))
    with pytest.raises(ValueError):
        asyncio.run(bill_service.analyze_bill_on_demand(state, bill.id))


def _stored_files(root):
    return [path for path in (root / "storage").rglob("*") if path.is_file()]


def test_insert_landing_after_timeout_is_discarded(make_state, monkeypatch, tmp_path):
    monkeypatch.setattr(bill_service, "INSERT_TIMEOUT", 0.01)
    state = make_state(SCENARIO_A)
    original_insert = state.records.insert

    async def slow_insert(table, row):
        await asyncio.sleep(0.05)
        return await original_insert(table, row)

    monkeypatch.setattr(state.records, "insert", slow_insert)

    async def scenario():
        with pytest.raises(UploadFailed, match="Upload timed out"):
            await add_bill(state, filename="bill.png", content=PNG_BYTES, content_type="image/png")
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert asyncio.run(state.records.select(BILLS_TABLE, {})) == []
    assert state.bills == []
    assert state.gateway.calls == []
    assert _stored_files(tmp_path) == []


def test_insert_failure_removes_stored_file(make_state, monkeypatch, tmp_path):
    state = make_state(SCENARIO_A)

    async def broken_insert(table, row):
        raise RuntimeError("permission denied for table hospital_bills")

    monkeypatch.setattr(state.records, "insert", broken_insert)

    with pytest.raises(UploadFailed):
        _upload(state)
    assert _stored_files(tmp_path) == []


def _held_reply(release, reply):
    async def _reply():
        await release.wait()
        return reply

    return _reply


async def _wait_for_classifier(state):
    while not state.gateway.calls:
        await asyncio.sleep(0)


def test_bill_deleted_during_classification_stays_deleted(make_state):
    state = make_state()

    async def scenario():
        release = asyncio.Event()
        state.gateway.replies.append(_held_reply(release, SCENARIO_A))
        upload = asyncio.ensure_future(
            add_bill(state, filename="bill.png", content=PNG_BYTES, content_type="image/png")
        )
        await _wait_for_classifier(state)
        await bill_service.delete_bill(state, state.bills[0].id)
        release.set()
        return await upload

    bill = asyncio.run(scenario())

    assert bill.status == "pending"
    assert state.bills == []
    assert asyncio.run(state.records.select(BILLS_TABLE, {})) == []
    with pytest.raises(KeyError):
        asyncio.run(bill_service.update_bill_status(state, bill.id, "paid"))


def test_concurrent_status_updates_resolve_to_last_write(make_state):
    state = make_state(SCENARIO_A)
    bill = _upload(state)

    async def scenario():
        return await asyncio.gather(
            bill_service.update_bill_status(state, bill.id, "paid"),
            bill_service.update_bill_status(state, bill.id, "denied"),
        )

    first, second = asyncio.run(scenario())

    assert (first.status, second.status) == ("paid", "denied")
    rows = asyncio.run(state.records.select(BILLS_TABLE, {"id": bill.id}))
    assert rows[0]["status"] == "denied"
    assert state.find_bill(bill.id).status == "denied"


def test_classifier_patch_racing_user_status_change_is_last_write_wins(make_state):
    state = make_state()

    async def scenario():
        release = asyncio.Event()
        state.gateway.replies.append(_held_reply(release, SCENARIO_A))
        upload = asyncio.ensure_future(
            add_bill(state, filename="bill.png", content=PNG_BYTES, content_type="image/png")
        )
        await _wait_for_classifier(state)
        paid = await bill_service.update_bill_status(state, state.bills[0].id, "paid")
        release.set()
        return paid, await upload

    paid, patched = asyncio.run(scenario())

    assert paid.status == "paid"
    assert patched.status == "pending"
    rows = asyncio.run(state.records.select(BILLS_TABLE, {"id": patched.id}))
    assert rows[0]["status"] == "pending"
    assert rows[0]["hospital_name"] == "Mercy General"
    assert state.find_bill(patched.id).status == "pending"
