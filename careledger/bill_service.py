"""Hospital bill upload, classification patching and management."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from careledger.analyzer import analyze_bill
from careledger.classifier import classify_document, is_service_failure
from careledger.config import (
	BILL_ANALYSIS_TIMEOUT,
	BILL_CLASSIFY_TIMEOUT,
	BILLS_BUCKET,
	BILLS_TABLE,
	FETCH_TIMEOUT,
	INSERT_TIMEOUT,
	SIGNED_URL_TTL,
)
from careledger.errors import AnalysisFailed, InvalidInput, UploadFailed, user_facing_message
from careledger.files import (
	content_type_for,
	fetch_stored_file,
	remove_stored_file,
	store_upload,
	validate_upload,
)
from careledger.insurance_service import policy_context
from careledger.models import (
	BILL_STATUSES,
	Bill,
	BillAnalysisResult,
	ClassificationResult,
	coerce_amount,
)
from careledger.retry import with_timeout
from careledger.state import AppState

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_HOSPITAL = "Pending AI Extraction"
UPLOAD_FALLBACK = "Failed to upload bill. Please try again."
UNREADABLE_FLAG = "AI Flag: Potential invalid or unreadable document"

_DATE_FORMATS = ("%m/%d/%Y", "%m-%d-%Y", "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y")


def normalize_date(value: Any) -> str | None:
	"""Return ``value`` as ``YYYY-MM-DD`` when it can be read as a date, else None."""

	if isinstance(value, datetime):
		return value.date().isoformat()
	if isinstance(value, date):
		return value.isoformat()
	text = str(value or "").strip()
	if not text:
		return None
	try:
		return date.fromisoformat(text[:10]).isoformat()
	except ValueError:
		pass
	for fmt in _DATE_FORMATS:
		try:
			return datetime.strptime(text, fmt).date().isoformat()
		except ValueError:
			continue
	return None


def wrong_type_flag(kind: str) -> str:
	return f"AI Flag: Document appears to be a {kind} instead of a hospital bill."


def classification_changes(result: ClassificationResult, keep_description: bool) -> dict[str, Any]:
	"""Column patch for a classifier verdict; always moves the bill out of ``processing``."""

	if not result.is_valid:
		return {"status": "denied", "description": UNREADABLE_FLAG}
	if result.type is not None and result.type != "bill":
		return {"status": "denied", "description": wrong_type_flag(result.type)}

	changes: dict[str, Any] = {"status": "pending"}
	extracted = result.extracted_data
	if extracted is not None:
		if extracted.amount is not None and extracted.amount >= 0:
			changes["amount"] = extracted.amount
		if extracted.hospital_name:
			changes["hospital_name"] = extracted.hospital_name
		bill_date = normalize_date(extracted.date)
		if bill_date:
			changes["bill_date"] = bill_date
	if result.summary and not keep_description:
		changes["description"] = result.summary
	return changes


def analysis_changes(analysis: BillAnalysisResult) -> dict[str, Any]:
	"""Attach ``analysis`` and overwrite the primitive columns it covers."""

	changes: dict[str, Any] = {"analysis_result": analysis.model_dump(by_alias=True, mode="json")}
	overview = analysis.overview
	if overview.total_amount is not None and overview.total_amount >= 0:
		changes["amount"] = overview.total_amount
	if overview.hospital_name:
		changes["hospital_name"] = overview.hospital_name
	bill_date = normalize_date(overview.date)
	if bill_date:
		changes["bill_date"] = bill_date
	if overview.summary:
		changes["description"] = overview.summary
	return changes


def list_bills(state: AppState) -> list[Bill]:
	return list(state.bills)


async def _apply(state: AppState, bill: Bill, changes: dict[str, Any]) -> Bill:
	"""Persist ``changes`` after insert; a failed write is logged, never raised.

	A row deleted while enrichment was running stays deleted: the cache is left
	alone and the patched copy is only returned to the caller.
	"""

	try:
		updated = await state.records.update(BILLS_TABLE, bill.id, changes)
	except Exception as exc:
		LOGGER.error("Unable to update bill %s: %s", bill.id, exc)
		result = Bill.model_validate({**bill.model_dump(mode="json"), **changes})
		if any(cached.id == bill.id for cached in state.bills):
			state.put_bill(result)
		return result
	if updated is None:
		LOGGER.info("Bill %s was deleted before its update landed", bill.id)
		return Bill.model_validate({**bill.model_dump(mode="json"), **changes})
	result = Bill.model_validate(updated)
	state.put_bill(result)
	return result


async def _discard_late_insert(state: AppState, row: dict[str, Any]) -> None:
	"""Delete a bill row whose insert completed after the upload was abandoned."""

	LOGGER.warning("Discarding bill %s inserted after its upload was abandoned", row.get("id"))
	try:
		await state.records.delete(BILLS_TABLE, row["id"])
	except Exception as exc:
		LOGGER.error("Unable to discard late bill %s: %s", row.get("id"), exc)
	await remove_stored_file(state.documents, row.get("file_url"), BILLS_BUCKET)


async def _classify_and_patch(
	state: AppState,
	bill: Bill,
	content: bytes,
	mime_type: str,
	keep_description: bool,
) -> Bill:
	try:
		result = await with_timeout(
			classify_document(state.gateway, content, mime_type),
			BILL_CLASSIFY_TIMEOUT,
			"Document classification timed out",
		)
	except Exception as exc:
		LOGGER.warning("Classification of bill %s failed, marking pending: %s", bill.id, exc)
		return await _apply(state, bill, {"status": "pending"})

	if is_service_failure(result):
		LOGGER.warning("Classifier unavailable for bill %s, marking pending", bill.id)
		return await _apply(state, bill, {"status": "pending"})

	return await _apply(state, bill, classification_changes(result, keep_description))


async def add_bill(
	state: AppState,
	*,
	hospital_name: str | None = None,
	bill_date: str | date | None = None,
	amount: Any = None,
	description: str | None = None,
	filename: str | None = None,
	content: bytes | None = None,
	content_type: str | None = None,
) -> Bill:
	"""Create a bill, optionally from an uploaded file.

	With a file the manual fields are optional: the file is stored, the row is
	inserted as ``processing`` with placeholders and the classifier verdict
	moves it to ``pending`` or ``denied``. Without a file the hospital name,
	date and amount are required and the row starts ``pending``.
	"""

	has_file = content is not None
	hospital_name = (hospital_name or "").strip() or None
	description = (description or "").strip()

	parsed_amount = coerce_amount(amount)
	if amount not in (None, "") and parsed_amount is None:
		raise InvalidInput("amount must be numeric")
	if parsed_amount is not None and parsed_amount < 0:
		raise InvalidInput("amount must not be negative")

	parsed_date = normalize_date(bill_date)
	if bill_date not in (None, "") and parsed_date is None:
		raise InvalidInput("bill_date must be a valid date")

	if has_file:
		validate_upload(filename or "", content or b"")
		mime = content_type_for(filename or "", content_type)
	elif not hospital_name or parsed_date is None or parsed_amount is None:
		raise InvalidInput("hospital_name, bill_date and amount are required when no file is attached")

	file_url = None
	try:
		if has_file:
			file_url = await store_upload(state.documents, BILLS_BUCKET, state.user_id, filename or "", content, mime)
		row = {
			"user_id": state.user_id,
			"hospital_name": hospital_name or PLACEHOLDER_HOSPITAL,
			"bill_date": parsed_date or date.today().isoformat(),
			"amount": parsed_amount or 0,
			"description": description,
			"file_url": file_url,
			"status": "processing" if has_file else "pending",
		}
		inserted = await with_timeout(
			state.records.insert(BILLS_TABLE, row),
			INSERT_TIMEOUT,
			"Database insert timed out",
			on_late=lambda late_row: _discard_late_insert(state, late_row),
		)
	except Exception as exc:
		LOGGER.error("Add bill failed: %s", exc)
		await remove_stored_file(state.documents, file_url, BILLS_BUCKET)
		raise UploadFailed(user_facing_message(exc, UPLOAD_FALLBACK)) from exc

	bill = Bill.model_validate(inserted)
	state.put_bill(bill)
	if not has_file:
		return bill
	return await _classify_and_patch(state, bill, content, mime, keep_description=bool(description))


async def update_bill_status(state: AppState, bill_id: str, status: str) -> Bill:
	if status not in BILL_STATUSES:
		raise InvalidInput(f"status must be one of {', '.join(BILL_STATUSES)}")
	state.find_bill(bill_id)
	updated = await state.records.update(BILLS_TABLE, bill_id, {"status": status})
	if updated is None:
		raise KeyError(f"Unknown bill id '{bill_id}'")
	bill = Bill.model_validate(updated)
	state.put_bill(bill)
	return bill


async def update_bill_analysis(state: AppState, bill_id: str, analysis: BillAnalysisResult) -> Bill:
	"""Store a fresh analysis and realign the primitive columns with its overview."""

	state.find_bill(bill_id)
	updated = await state.records.update(BILLS_TABLE, bill_id, analysis_changes(analysis))
	if updated is None:
		raise KeyError(f"Unknown bill id '{bill_id}'")
	bill = Bill.model_validate(updated)
	state.put_bill(bill)
	return bill


async def analyze_bill_on_demand(state: AppState, bill_id: str) -> Bill:
	"""Run the detailed bill analyzer against the active policy and persist the result."""

	bill = state.find_bill(bill_id)
	if not bill.file_url:
		raise InvalidInput("Bill has no attached file to analyze")

	content, mime = await with_timeout(
		fetch_stored_file(state.documents, bill.file_url, BILLS_BUCKET, SIGNED_URL_TTL),
		FETCH_TIMEOUT,
		"File download timed out",
	)
	analysis = await with_timeout(
		analyze_bill(state.gateway, content, mime, policy_context(state)),
		BILL_ANALYSIS_TIMEOUT,
		"AI analysis timed out",
	)
	if analysis is None:
		raise AnalysisFailed("Analysis Failed")
	return await update_bill_analysis(state, bill_id, analysis)


async def delete_bill(state: AppState, bill_id: str) -> None:
	bill = state.find_bill(bill_id)
	await state.records.delete(BILLS_TABLE, bill_id)
	await remove_stored_file(state.documents, bill.file_url, BILLS_BUCKET)
	state.drop_bill(bill_id)
	LOGGER.info("Deleted bill %s", bill_id)
