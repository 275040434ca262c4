"""Dashboard summary: spending trend, outstanding amounts and recent activity."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable

from careledger.models import Bill, InsuranceDocument

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

TREND_MONTHS = 6
RECENT_ACTIVITY_LIMIT = 4


def _month_key(year: int, month: int) -> str:
	return f"{_MONTHS[month - 1]} {year}"


def monthly_spending(bills: Iterable[Bill], today: date | None = None) -> list[dict[str, Any]]:
	"""Bill totals for the last six calendar months (oldest first), zero-filled."""

	today = today or date.today()
	totals: dict[str, float] = {}
	for offset in range(TREND_MONTHS - 1, -1, -1):
		index = today.year * 12 + (today.month - 1) - offset
		totals[_month_key(index // 12, index % 12 + 1)] = 0.0

	for bill in bills:
		key = _month_key(bill.bill_date.year, bill.bill_date.month)
		if key in totals:
			totals[key] += bill.display_amount()

	return [{"name": name, "amount": round(amount, 2)} for name, amount in totals.items()]


def _upload_day(doc: InsuranceDocument) -> date:
	if doc.upload_date:
		try:
			return datetime.fromisoformat(doc.upload_date.replace("Z", "+00:00")).date()
		except ValueError:
			pass
	if doc.created_at is not None:
		return doc.created_at.date()
	return datetime.now(timezone.utc).date()


def recent_activity(
	bills: Iterable[Bill],
	docs: Iterable[InsuranceDocument],
	limit: int = RECENT_ACTIVITY_LIMIT,
) -> list[dict[str, Any]]:
	items: list[dict[str, Any]] = []
	for doc in docs:
		outcome = {"approved": "success", "rejected": "error"}.get(doc.status, "pending")
		items.append({"type": "insurance", "text": doc.file_name, "date": _upload_day(doc), "status": outcome})
	for bill in bills:
		items.append(
			{
				"type": "bill",
				"text": f"Bill for {bill.display_hospital_name()}",
				"date": bill.bill_date,
				"status": "success" if bill.status == "paid" else "pending",
			}
		)
	items.sort(key=lambda item: item["date"], reverse=True)
	return [{**item, "date": item["date"].isoformat()} for item in items[:limit]]


def build_dashboard(
	bills: list[Bill],
	docs: list[InsuranceDocument],
	today: date | None = None,
) -> dict[str, Any]:
	trend = monthly_spending(bills, today)
	return {
		"spending_trend": trend,
		"total_last_six_months": round(sum(item["amount"] for item in trend), 2),
		"pending_bills_total": round(sum(bill.display_amount() for bill in bills if bill.status == "pending"), 2),
		"pending_insurance_documents": sum(1 for doc in docs if doc.status == "pending"),
		"recent_activity": recent_activity(bills, docs),
	}
