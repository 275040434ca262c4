from __future__ import annotations

import asyncio

import pytest

from conftest import FakeGateway, PNG_BYTES

from careledger.config import BILLS_BUCKET, BILLS_TABLE, INSURANCE_TABLE
from careledger.errors import NoActivePolicy
from careledger.recalculate import recalculate_all

POLICY_ANALYSIS = {
    "overview": {"insurerName": "Aetna", "policyNumber": "AET-778"},
    "financials": {"coinsuranceRate": {"inNetwork": "20%"}},
}


def _analysis(total, insurance, patient):
    return {
        "overview": {"totalAmount": total, "hospitalName": "Mercy General", "summary": "Recalculated"},
        "coveragePrediction": {
            "estimatedInsuranceCoverage": insurance,
            "estimatedPatientResponsibility": patient,
            "confidence": "Medium",
        },
    }


async def _seed(state, with_files, without_files=1, policy_status="approved"):
    if policy_status is not None:
        await state.records.insert(
            INSURANCE_TABLE,
            {
                "user_id": state.user_id,
                "file_name": "policy.pdf",
                "file_type": "Policy",
                "status": policy_status,
                "analysis_result": POLICY_ANALYSIS,
            },
        )
    for index in range(with_files):
        path = f"{state.user_id}/bill-{index}.png"
        await state.documents.upload(BILLS_BUCKET, path, PNG_BYTES, "image/png")
        await state.records.insert(
            BILLS_TABLE,
            {
                "user_id": state.user_id,
                "hospital_name": f"Hospital {index}",
                "bill_date": "2024-03-02",
                "amount": 100,
                "status": "pending",
                "file_url": await state.documents.get_public_url(BILLS_BUCKET, path),
            },
        )
    for index in range(without_files):
        await state.records.insert(
            BILLS_TABLE,
            {
                "user_id": state.user_id,
                "hospital_name": f"Manual {index}",
                "bill_date": "2024-02-01",
                "amount": 40,
                "status": "pending",
            },
        )
    await state.load()


def test_scenario_d_skips_bill_without_file_and_reports_progress(make_state):
    state = make_state(_analysis(500, 400, 100), _analysis(300, 240, 60))
    asyncio.run(_seed(state, with_files=2))
    progress: list[tuple[int, int]] = []

    report = asyncio.run(recalculate_all(state, progress=lambda current, total: progress.append((current, total))))

    assert progress == [(1, 3), (2, 3), (3, 3)]
    assert report.processed == 3
    assert report.total == 3
    assert report.updated == 2
    assert report.failed_bill_ids == []
    analyzed = [bill for bill in state.bills if bill.analysis_result is not None]
    assert len(analyzed) == 2
    assert all(bill.file_url for bill in analyzed)
    assert all("Policy: Aetna - AET-778" in call["prompt"] for call in state.gateway.calls)


def test_per_bill_failure_does_not_abort_the_loop(make_state):
    state = make_state(ConnectionError("network error"), _analysis(300, 240, 60))
    asyncio.run(_seed(state, with_files=2, without_files=0))

    report = asyncio.run(recalculate_all(state))

    assert report.processed == 2
    assert report.updated == 1
    assert len(report.failed_bill_ids) == 1


def test_unreadable_stored_file_is_reported(make_state):
    state = make_state(_analysis(300, 240, 60))
    asyncio.run(_seed(state, with_files=2, without_files=0))
    missing = state.bills[0]
    asyncio.run(state.documents.remove(BILLS_BUCKET, [missing.file_url.split(f"{BILLS_BUCKET}/", 1)[1]]))

    report = asyncio.run(recalculate_all(state))

    assert report.failed_bill_ids == [missing.id]
    assert report.updated == 1


def test_bills_are_analyzed_one_at_a_time(make_state):
    async def slow_reply():
        await asyncio.sleep(0.01)
        return _analysis(100, 80, 20)

    state = make_state(slow_reply, slow_reply, slow_reply)
    asyncio.run(_seed(state, with_files=3, without_files=0))

    asyncio.run(recalculate_all(state))

    assert isinstance(state.gateway, FakeGateway)
    assert state.gateway.max_in_flight == 1
    assert len(state.gateway.calls) == 3


def test_requires_an_analyzed_policy(make_state):
    state = make_state()
    asyncio.run(_seed(state, with_files=1, policy_status=None))

    with pytest.raises(NoActivePolicy):
        asyncio.run(recalculate_all(state))


def test_falls_back_to_any_analyzed_policy(make_state):
    state = make_state(_analysis(100, 80, 20))
    asyncio.run(_seed(state, with_files=1, without_files=0, policy_status="pending"))

    report = asyncio.run(recalculate_all(state))

    assert report.updated == 1
