"""Coarse document classification through the model gateway."""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any

from careledger.llm_adapters.base import ModelGateway
from careledger.models import ClassificationResult, InlineImage
from careledger.prompts import CLASSIFICATION_PROMPT

LOGGER = logging.getLogger(__name__)

PROCESSING_FAILED = "AI processing failed. Please try again later."
INVALID_FORMAT = "AI analysis completed but returned invalid format."

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
	return _FENCE_PATTERN.sub("", text or "").strip()


def parse_model_json(text: str) -> dict[str, Any]:
	"""Decode a model reply that should hold a single JSON object."""

	payload = json.loads(strip_code_fences(text))
	if not isinstance(payload, dict):
		raise ValueError("model reply is not a JSON object")
	return payload


def inline_document(content: bytes, mime_type: str) -> InlineImage:
	return InlineImage(data=base64.b64encode(content).decode("ascii"), mime_type=mime_type or "image/jpeg")


def _failed(summary: str) -> ClassificationResult:
	return ClassificationResult(is_valid=False, type="other", summary=summary)


def is_service_failure(result: ClassificationResult) -> bool:
	"""True when the gateway itself failed, as opposed to a negative verdict."""

	return not result.is_valid and result.summary == PROCESSING_FAILED


async def classify_document(gateway: ModelGateway, content: bytes, mime_type: str) -> ClassificationResult:
	"""Label a document as bill, insurance or other.

	Never raises: gateway failures and unparseable replies come back as an
	``is_valid=False`` result whose summary describes what went wrong.
	"""

	try:
		text = await gateway.invoke(CLASSIFICATION_PROMPT, image=inline_document(content, mime_type))
	except Exception as exc:
		LOGGER.error("Classification call failed: %s", exc)
		return _failed(PROCESSING_FAILED)

	try:
		return ClassificationResult.model_validate(parse_model_json(text))
	except ValueError as exc:
		LOGGER.warning("Classification reply could not be parsed: %s", exc)
		return _failed(INVALID_FORMAT)
