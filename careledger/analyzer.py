"""Detailed bill and insurance analysis through the model gateway.

Both analyzers return a validated result or ``None``; callers decide how to
degrade when no analysis is available.
"""

from __future__ import annotations

import logging
from typing import Any

from careledger.classifier import inline_document, parse_model_json
from careledger.llm_adapters.base import ModelGateway
from careledger.models import (
	BillAnalysisResult,
	CoveragePrediction,
	InsuranceAnalysisResult,
)
from careledger.prompts import BILL_ANALYSIS_PROMPT, INSURANCE_ANALYSIS_PROMPT

LOGGER = logging.getLogger(__name__)

NO_CONTEXT_NOTE = "No insurance policy context is available for this user."


def _na(value: Any) -> str:
	if value is None or (isinstance(value, str) and not value.strip()):
		return "N/A"
	return str(value)


def format_insurance_context(result: InsuranceAnalysisResult | dict[str, Any] | None) -> str:
	"""Render a stored policy analysis as the plain-text context block for bill analysis."""

	if result is None:
		return ""
	if not isinstance(result, InsuranceAnalysisResult):
		result = InsuranceAnalysisResult.model_validate(result)

	overview = result.overview
	fin = result.financials

	coverage = "\n".join(
		f"- {_na(item.type)}: Limit {_na(item.limit)}, Deductible {_na(item.deductible)}, Copay {_na(item.copay)}"
		for item in result.coverage
	) or "No specific coverage details found."
	benefits = "\n".join(
		f"- {_na(item.category)}: {_na(item.description)}" for item in result.benefits if item.covered
	) or "No specific benefits listed."
	exclusions = "\n".join(
		f"- {_na(item.item)}: {_na(item.reason)}" for item in result.exclusions
	) or "No specific exclusions listed."

	lines = [
		f"Policy: {overview.insurer_name or 'Unknown Insurer'} - {_na(overview.policy_number)}",
		f"Effective Date: {_na(overview.effective_date)}",
		f"Expiration Date: {_na(overview.expiration_date)}",
		"",
		"Financials:",
		f"- Deductible: Individual {_na(fin.deductible.individual)}, Family {_na(fin.deductible.family)}",
		f"- Out-of-Pocket Max: Individual {_na(fin.out_of_pocket_max.individual)}, Family {_na(fin.out_of_pocket_max.family)}",
		f"- Co-insurance: In-Network {_na(fin.coinsurance_rate.in_network)}, Out-of-Network {_na(fin.coinsurance_rate.out_of_network)}",
		f"- Copays: PCP {_na(fin.copay.pcp)}, Specialist {_na(fin.copay.specialist)}, ER {_na(fin.copay.er)}",
		"",
		"Coverage Details:",
		coverage,
		"",
		"Benefits:",
		benefits,
		"",
		"Exclusions:",
		exclusions,
	]
	return "\n".join(lines)


def build_bill_prompt(insurance_context: str = "") -> str:
	if insurance_context.strip():
		return f"{BILL_ANALYSIS_PROMPT}\n\nInsurance Policy Context:\n{insurance_context.strip()}"
	return f"{BILL_ANALYSIS_PROMPT}\n\n{NO_CONTEXT_NOTE}"


async def analyze_bill(
	gateway: ModelGateway,
	content: bytes,
	mime_type: str,
	insurance_context: str = "",
) -> BillAnalysisResult | None:
	"""Return the structured bill breakdown, or None when the call or parse fails."""

	try:
		text = await gateway.invoke(build_bill_prompt(insurance_context), image=inline_document(content, mime_type))
		return BillAnalysisResult.model_validate(parse_model_json(text))
	except Exception as exc:
		LOGGER.error("Detailed bill analysis failed: %s", exc)
		return None


async def analyze_insurance(gateway: ModelGateway, content: bytes, mime_type: str) -> InsuranceAnalysisResult | None:
	"""Return the structured policy breakdown, or None when the call or parse fails."""

	try:
		text = await gateway.invoke(INSURANCE_ANALYSIS_PROMPT, image=inline_document(content, mime_type))
		return InsuranceAnalysisResult.model_validate(parse_model_json(text))
	except Exception as exc:
		LOGGER.error("Detailed insurance analysis failed: %s", exc)
		return None


def is_coverage_not_applicable(prediction: CoveragePrediction | None) -> bool:
	"""A ``Low`` confidence zero-dollar estimate means no usable policy, not a real $0."""

	if prediction is None:
		return False
	return prediction.confidence == "Low" and (prediction.estimated_insurance_coverage or 0) == 0
