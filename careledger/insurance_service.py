"""Insurance document upload, auto-approval and management."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from careledger.analyzer import analyze_insurance, format_insurance_context
from careledger.classifier import classify_document, is_service_failure
from careledger.config import (
	FETCH_TIMEOUT,
	INSERT_TIMEOUT,
	INSURANCE_ANALYSIS_TIMEOUT,
	INSURANCE_BUCKET,
	INSURANCE_CLASSIFY_TIMEOUT,
	INSURANCE_TABLE,
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
from careledger.models import (
	DOCUMENT_STATUSES,
	ClassificationResult,
	ExtractedData,
	InsuranceAnalysisResult,
	InsuranceDocument,
)
from careledger.retry import with_timeout
from careledger.state import AppState

LOGGER = logging.getLogger(__name__)

UPLOAD_FALLBACK = "Failed to upload document. Please try again."
MAX_SMART_STEM = 120

_SEPARATORS = re.compile(r"[\\/]+")


def active_policy(docs: list[InsuranceDocument]) -> InsuranceDocument | None:
	"""Most recent approved document with an analysis, else any analyzed document."""

	for doc in docs:
		if doc.status == "approved" and doc.analysis_result:
			return doc
	for doc in docs:
		if doc.analysis_result:
			return doc
	return None


def policy_context(state: AppState) -> str:
	"""Context block for bill analysis built from the active policy, or ``""``."""

	policy = active_policy(state.insurance_docs)
	if policy is None:
		return ""
	return format_insurance_context(policy.analysis())


def smart_file_name(file_name: str, file_type: str, extracted: ExtractedData | None) -> tuple[str, str]:
	"""Derive a readable name such as ``UHC Medical Policy - 12345.pdf`` from extracted fields.

	Best-effort and cosmetic: falls back to the originals when nothing useful
	was extracted and makes no uniqueness promise.
	"""

	if extracted is None:
		return file_name, file_type

	smart_type = extracted.document_type or file_type
	parts = [part for part in (extracted.provider, extracted.coverage_type, extracted.document_type) if part]
	if not parts:
		return file_name, smart_type

	stem = " ".join(parts)
	if extracted.policy_number:
		stem = f"{stem} - {extracted.policy_number}"
	stem = _SEPARATORS.sub(" ", stem).strip()[:MAX_SMART_STEM].rstrip()
	ext = Path(file_name).suffix
	return f"{stem}{ext}", smart_type


def list_documents(state: AppState) -> list[InsuranceDocument]:
	return list(state.insurance_docs)


async def _apply(state: AppState, doc: InsuranceDocument, changes: dict[str, Any]) -> InsuranceDocument:
	"""Persist ``changes`` after insert; failures are logged and a deleted row is not revived."""

	try:
		updated = await state.records.update(INSURANCE_TABLE, doc.id, changes)
	except Exception as exc:
		LOGGER.error("Unable to update insurance document %s: %s", doc.id, exc)
		result = InsuranceDocument.model_validate({**doc.model_dump(mode="json"), **changes})
		if any(cached.id == doc.id for cached in state.insurance_docs):
			state.put_document(result)
		return result
	if updated is None:
		LOGGER.info("Insurance document %s was deleted before its update landed", doc.id)
		return InsuranceDocument.model_validate({**doc.model_dump(mode="json"), **changes})
	result = InsuranceDocument.model_validate(updated)
	state.put_document(result)
	return result


async def _discard_late_insert(state: AppState, row: dict[str, Any]) -> None:
	LOGGER.warning("Discarding insurance document %s inserted after its upload was abandoned", row.get("id"))
	try:
		await state.records.delete(INSURANCE_TABLE, row["id"])
	except Exception as exc:
		LOGGER.error("Unable to discard late insurance document %s: %s", row.get("id"), exc)
	await remove_stored_file(state.documents, row.get("file_url"), INSURANCE_BUCKET)


async def _detailed_or_fallback(
	state: AppState,
	content: bytes,
	mime_type: str,
	classification: ClassificationResult,
) -> dict[str, Any]:
	try:
		analysis = await with_timeout(
			analyze_insurance(state.gateway, content, mime_type),
			INSURANCE_ANALYSIS_TIMEOUT,
			"Detailed analysis timed out",
		)
	except Exception as exc:
		LOGGER.warning("Detailed insurance analysis unavailable: %s", exc)
		analysis = None
	if analysis is None:
		LOGGER.info("Falling back to the classification payload as the stored analysis")
		return classification.model_dump(by_alias=True, mode="json")
	return analysis.model_dump(by_alias=True, mode="json")


async def upload_document(
	state: AppState,
	document_type: str,
	filename: str,
	content: bytes,
	content_type: str | None = None,
) -> InsuranceDocument:
	"""Store an insurance document, classify it and auto-approve genuine policies.

	Storage or insert failures raise ``UploadFailed``. Once the row exists the
	AI enrichment never raises: it ends in ``approved``, ``rejected`` or, when
	the classifier itself is unavailable, ``pending``.
	"""

	if not document_type or not document_type.strip():
		raise InvalidInput("document_type is required")
	validate_upload(filename, content)
	mime = content_type_for(filename, content_type)

	file_url = None
	try:
		file_url = await store_upload(state.documents, INSURANCE_BUCKET, state.user_id, filename, content, mime)
		row = {
			"user_id": state.user_id,
			"file_name": filename,
			"file_type": document_type.strip(),
			"file_url": file_url,
			"file_size": len(content),
			"status": "pending",
			"upload_date": datetime.now(timezone.utc).isoformat(),
		}
		inserted = await with_timeout(
			state.records.insert(INSURANCE_TABLE, row),
			INSERT_TIMEOUT,
			"Database insert timed out",
			on_late=lambda late_row: _discard_late_insert(state, late_row),
		)
	except Exception as exc:
		LOGGER.error("Insurance upload failed: %s", exc)
		await remove_stored_file(state.documents, file_url, INSURANCE_BUCKET)
		raise UploadFailed(user_facing_message(exc, UPLOAD_FALLBACK)) from exc

	doc = InsuranceDocument.model_validate(inserted)
	state.put_document(doc)

	try:
		classification = await with_timeout(
			classify_document(state.gateway, content, mime),
			INSURANCE_CLASSIFY_TIMEOUT,
			"AI analysis timed out",
		)
	except Exception as exc:
		LOGGER.warning("Classification of %s failed, leaving it pending: %s", doc.id, exc)
		return doc

	if is_service_failure(classification):
		LOGGER.warning("Classifier unavailable for %s, leaving it pending", doc.id)
		return doc

	if not classification.is_valid or classification.type != "insurance":
		LOGGER.info("Rejecting %s (valid=%s, type=%s)", doc.id, classification.is_valid, classification.type)
		return await _apply(state, doc, {"status": "rejected"})

	smart_name, smart_type = smart_file_name(doc.file_name, doc.file_type, classification.extracted_data)
	analysis = await _detailed_or_fallback(state, content, mime, classification)
	return await _apply(
		state,
		doc,
		{
			"status": "approved",
			"file_name": smart_name,
			"file_type": smart_type,
			"analysis_result": analysis,
		},
	)


async def update_document_status(state: AppState, doc_id: str, status: str) -> InsuranceDocument:
	if status not in DOCUMENT_STATUSES:
		raise InvalidInput(f"status must be one of {', '.join(DOCUMENT_STATUSES)}")
	state.find_document(doc_id)
	updated = await state.records.update(INSURANCE_TABLE, doc_id, {"status": status})
	if updated is None:
		raise KeyError(f"Unknown insurance document id '{doc_id}'")
	doc = InsuranceDocument.model_validate(updated)
	state.put_document(doc)
	return doc


async def update_document_analysis(
	state: AppState,
	doc_id: str,
	analysis: InsuranceAnalysisResult,
) -> InsuranceDocument:
	state.find_document(doc_id)
	payload = analysis.model_dump(by_alias=True, mode="json")
	updated = await state.records.update(INSURANCE_TABLE, doc_id, {"analysis_result": payload})
	if updated is None:
		raise KeyError(f"Unknown insurance document id '{doc_id}'")
	doc = InsuranceDocument.model_validate(updated)
	state.put_document(doc)
	return doc


async def analyze_document_on_demand(state: AppState, doc_id: str) -> InsuranceDocument:
	"""Re-run the insurance analyzer on a stored document and persist the result."""

	doc = state.find_document(doc_id)
	if not doc.file_url:
		raise InvalidInput("Document has no stored file to analyze")

	content, mime = await with_timeout(
		fetch_stored_file(state.documents, doc.file_url, INSURANCE_BUCKET, SIGNED_URL_TTL),
		FETCH_TIMEOUT,
		"File download timed out",
	)
	analysis = await with_timeout(
		analyze_insurance(state.gateway, content, mime),
		INSURANCE_ANALYSIS_TIMEOUT,
		"AI analysis timed out",
	)
	if analysis is None:
		raise AnalysisFailed("Analysis Failed")
	return await update_document_analysis(state, doc_id, analysis)


async def delete_document(state: AppState, doc_id: str) -> None:
	doc = state.find_document(doc_id)
	await state.records.delete(INSURANCE_TABLE, doc_id)
	await remove_stored_file(state.documents, doc.file_url, INSURANCE_BUCKET)
	state.drop_document(doc_id)
	LOGGER.info("Deleted insurance document %s", doc_id)
