"""Shared data models for CareLedger's backend services.

Record models mirror the relational columns. Extraction models mirror the JSON
the generative model is asked to produce; they keep its camelCase keys as
aliases and validate leniently because the provider does not guarantee the
shape.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

BillStatus = Literal["pending", "processing", "paid", "denied"]
DocumentStatus = Literal["pending", "approved", "rejected"]
DocumentKind = Literal["bill", "insurance", "other"]
Confidence = Literal["Low", "Medium", "High"]
Sender = Literal["user", "bot"]

BILL_STATUSES: tuple[str, ...] = ("pending", "processing", "paid", "denied")
DOCUMENT_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected")

# Policy figures come back as numbers or as prose ("$1,500", "20% after deductible").
PolicyFigure = Union[int, float, str, None]


def coerce_amount(value: Any) -> float | None:
	"""Best-effort conversion of a model-produced money value to a float."""

	if value is None or isinstance(value, bool):
		return None
	if isinstance(value, (int, float)):
		return float(value)
	text = str(value).replace("$", "").replace(",", "").strip()
	if not text:
		return None
	try:
		return float(text)
	except ValueError:
		return None


def _object_items(value: Any) -> list[dict[str, Any]]:
	if not isinstance(value, list):
		return []
	return [item for item in value if isinstance(item, dict)]


def _object_or_empty(value: Any) -> dict[str, Any]:
	return value if isinstance(value, dict) else {}


def _normalize_level(value: Any) -> str:
	text = str(value or "").strip().capitalize()
	return text if text in {"Low", "Medium", "High"} else "Low"


class _Extraction(BaseModel):
	"""Base for payloads produced by the generative model."""

	model_config = ConfigDict(
		alias_generator=to_camel,
		populate_by_name=True,
		extra="ignore",
		coerce_numbers_to_str=True,
	)

	@model_validator(mode="before")
	@classmethod
	def _drop_nulls(cls, data: Any) -> Any:
		# Explicit nulls fall back to field defaults.
		if isinstance(data, dict):
			return {key: value for key, value in data.items() if value is not None}
		return data


# --- Classification -------------------------------------------------------


class ExtractedData(_Extraction):
	"""Coarse fields pulled out during classification."""

	amount: float | None = None
	date: str | None = None
	hospital_name: str | None = None
	document_type: str | None = None
	policy_number: str | None = None
	coverage_type: str | None = None
	provider: str | None = None

	@field_validator("amount", mode="before")
	@classmethod
	def _coerce_amount(cls, value: Any) -> float | None:
		return coerce_amount(value)


class ClassificationResult(_Extraction):
	"""Verdict returned by the document classifier."""

	is_valid: bool = False
	type: DocumentKind | None = None
	summary: str = ""
	extracted_data: ExtractedData | None = None

	@field_validator("is_valid", mode="before")
	@classmethod
	def _truthy(cls, value: Any) -> bool:
		if isinstance(value, str):
			return value.strip().lower() in {"true", "yes", "1"}
		return bool(value)

	@field_validator("type", mode="before")
	@classmethod
	def _normalize_type(cls, value: Any) -> str | None:
		if value is None:
			return None
		text = str(value).strip().lower()
		if not text:
			return None
		return text if text in {"bill", "insurance", "other"} else "other"

	@field_validator("extracted_data", mode="before")
	@classmethod
	def _object_or_none(cls, value: Any) -> dict[str, Any] | None:
		return value if isinstance(value, dict) else None


# --- Bill analysis --------------------------------------------------------


class BillOverview(_Extraction):
	patient_name: str | None = None
	hospital_name: str | None = None
	date: str | None = None
	total_amount: float | None = None
	summary: str = ""

	@field_validator("total_amount", mode="before")
	@classmethod
	def _coerce_amount(cls, value: Any) -> float | None:
		return coerce_amount(value)


class ServiceLine(_Extraction):
	name: str = ""
	code: str | None = None
	charge: float | None = None

	@field_validator("charge", mode="before")
	@classmethod
	def _coerce_amount(cls, value: Any) -> float | None:
		return coerce_amount(value)


class CoveragePrediction(_Extraction):
	estimated_insurance_coverage: float | None = None
	estimated_patient_responsibility: float | None = None
	confidence: Confidence = "Low"
	reasoning: str = ""

	@field_validator("estimated_insurance_coverage", "estimated_patient_responsibility", mode="before")
	@classmethod
	def _coerce_amounts(cls, value: Any) -> float | None:
		return coerce_amount(value)

	@field_validator("confidence", mode="before")
	@classmethod
	def _normalize_confidence(cls, value: Any) -> str:
		return _normalize_level(value)


class Scheme(_Extraction):
	name: str = ""
	value: str | None = None
	description: str = ""


class BillAnalysisResult(_Extraction):
	"""Structured breakdown of a hospital bill and its coverage prediction."""

	overview: BillOverview = Field(default_factory=BillOverview)
	services: list[ServiceLine] = Field(default_factory=list)
	coverage_prediction: CoveragePrediction | None = None
	schemes: list[Scheme] = Field(default_factory=list)

	@field_validator("overview", mode="before")
	@classmethod
	def _overview_object(cls, value: Any) -> dict[str, Any]:
		return _object_or_empty(value)

	@field_validator("services", "schemes", mode="before")
	@classmethod
	def _list_objects(cls, value: Any) -> list[dict[str, Any]]:
		return _object_items(value)

	@field_validator("coverage_prediction", mode="before")
	@classmethod
	def _prediction_object(cls, value: Any) -> dict[str, Any] | None:
		return value if isinstance(value, dict) else None


# --- Insurance analysis ---------------------------------------------------


class InsuranceOverview(_Extraction):
	policy_number: str | None = None
	insurer_name: str | None = None
	policy_holder: str | None = None
	effective_date: str | None = None
	expiration_date: str | None = None
	summary: str = ""


class TierAmounts(_Extraction):
	individual: PolicyFigure = None
	family: PolicyFigure = None


class CoinsuranceRate(_Extraction):
	in_network: PolicyFigure = None
	out_of_network: PolicyFigure = None


class Copay(_Extraction):
	pcp: PolicyFigure = None
	specialist: PolicyFigure = None
	er: PolicyFigure = None


class Financials(_Extraction):
	deductible: TierAmounts = Field(default_factory=TierAmounts)
	out_of_pocket_max: TierAmounts = Field(default_factory=TierAmounts)
	coinsurance_rate: CoinsuranceRate = Field(default_factory=CoinsuranceRate)
	copay: Copay = Field(default_factory=Copay)

	@field_validator("deductible", "out_of_pocket_max", "coinsurance_rate", "copay", mode="before")
	@classmethod
	def _objects(cls, value: Any) -> dict[str, Any]:
		return _object_or_empty(value)


class CoverageItem(_Extraction):
	type: str = ""
	limit: PolicyFigure = None
	deductible: PolicyFigure = None
	copay: PolicyFigure = None


class Benefit(_Extraction):
	category: str = ""
	description: str = ""
	covered: bool = False

	@field_validator("covered", mode="before")
	@classmethod
	def _truthy(cls, value: Any) -> bool:
		if isinstance(value, str):
			return value.strip().lower() in {"true", "yes", "covered", "1"}
		return bool(value)


class Exclusion(_Extraction):
	item: str = ""
	reason: str = ""


class Recommendation(_Extraction):
	title: str = ""
	description: str = ""
	priority: Confidence = "Low"

	@field_validator("priority", mode="before")
	@classmethod
	def _normalize_priority(cls, value: Any) -> str:
		return _normalize_level(value)


class InsuranceAnalysisResult(_Extraction):
	"""Structured breakdown of an insurance policy document."""

	overview: InsuranceOverview = Field(default_factory=InsuranceOverview)
	financials: Financials = Field(default_factory=Financials)
	coverage: list[CoverageItem] = Field(default_factory=list)
	benefits: list[Benefit] = Field(default_factory=list)
	exclusions: list[Exclusion] = Field(default_factory=list)
	recommendations: list[Recommendation] = Field(default_factory=list)

	@field_validator("overview", "financials", mode="before")
	@classmethod
	def _objects(cls, value: Any) -> dict[str, Any]:
		return _object_or_empty(value)

	@field_validator("coverage", "benefits", "exclusions", "recommendations", mode="before")
	@classmethod
	def _list_objects(cls, value: Any) -> list[dict[str, Any]]:
		return _object_items(value)


# --- Persisted records ----------------------------------------------------


class Bill(BaseModel):
	"""A row of ``hospital_bills``."""

	id: str
	user_id: str
	hospital_name: str = ""
	bill_date: date
	amount: float = 0.0
	description: str = ""
	file_url: str | None = None
	status: BillStatus = "pending"
	analysis_result: BillAnalysisResult | None = None
	created_at: datetime | None = None
	updated_at: datetime | None = None

	@field_validator("amount", mode="before")
	@classmethod
	def _amount_or_zero(cls, value: Any) -> float:
		return coerce_amount(value) or 0.0

	@field_validator("hospital_name", "description", mode="before")
	@classmethod
	def _text_or_empty(cls, value: Any) -> str:
		return "" if value is None else str(value)

	@field_validator("status", mode="before")
	@classmethod
	def _status_or_pending(cls, value: Any) -> str:
		return value or "pending"

	@field_validator("analysis_result", mode="before")
	@classmethod
	def _analysis_object(cls, value: Any) -> dict[str, Any] | BillAnalysisResult | None:
		if isinstance(value, (dict, BillAnalysisResult)):
			return value
		return None

	def display_amount(self) -> float:
		if self.analysis_result and self.analysis_result.overview.total_amount is not None:
			return self.analysis_result.overview.total_amount
		return self.amount

	def display_hospital_name(self) -> str:
		if self.analysis_result and self.analysis_result.overview.hospital_name:
			return self.analysis_result.overview.hospital_name
		return self.hospital_name


class InsuranceDocument(BaseModel):
	"""A row of ``insurance_documents``."""

	id: str
	user_id: str
	file_name: str
	file_type: str
	file_url: str = ""
	file_size: int = 0
	status: DocumentStatus = "pending"
	analysis_result: dict[str, Any] | None = None
	upload_date: str | None = None
	created_at: datetime | None = None
	updated_at: datetime | None = None

	@field_validator("status", mode="before")
	@classmethod
	def _status_or_pending(cls, value: Any) -> str:
		return value or "pending"

	@field_validator("analysis_result", mode="before")
	@classmethod
	def _analysis_object(cls, value: Any) -> dict[str, Any] | None:
		return value if isinstance(value, dict) and value else None

	def analysis(self) -> InsuranceAnalysisResult | None:
		if not self.analysis_result:
			return None
		return InsuranceAnalysisResult.model_validate(self.analysis_result)


class ChatMessage(BaseModel):
	id: str
	user_id: str
	content: str
	sender: Sender
	created_at: datetime | None = None


class Profile(BaseModel):
	id: str
	email: str = ""
	first_name: str | None = None
	last_name: str | None = None
	phone: str | None = None
	address: str | None = None
	date_of_birth: str | None = None
	member_id: str = ""
	plan_type: str | None = None
	created_at: datetime | None = None
	updated_at: datetime | None = None


# --- Derived payloads -----------------------------------------------------


class CostLine(BaseModel):
	"""Per-bill row of the cost prediction table."""

	id: str
	hospital: str
	bill_date: date
	amount: float
	patient_resp: float | None = None
	insurance_resp: float | None = None
	confidence: str = "None"
	reasoning: str | None = None
	is_not_applicable: bool = False
	status: Literal["Analyzed", "Pending Analysis"]


class CostSummary(BaseModel):
	total_billed: float = 0.0
	estimated_insurance: float = 0.0
	estimated_patient: float = 0.0
	bills_analyzed: int = 0
	pending_bills: int = 0
	lines: list[CostLine] = Field(default_factory=list)


class RecalculationReport(BaseModel):
	processed: int = 0
	total: int = 0
	updated: int = 0
	failed_bill_ids: list[str] = Field(default_factory=list)


class InlineImage(BaseModel):
	"""Base64 document payload forwarded to the generative model."""

	model_config = ConfigDict(populate_by_name=True)

	data: str
	mime_type: str = Field(default="image/jpeg", alias="mimeType")


# --- Request payloads -----------------------------------------------------


class SessionStartRequest(BaseModel):
	user_id: str


class StatusUpdateRequest(BaseModel):
	status: str


class ChatRequest(BaseModel):
	message: str


class ProfileUpdateRequest(BaseModel):
	email: str | None = None
	first_name: str | None = None
	last_name: str | None = None
	phone: str | None = None
	address: str | None = None
	date_of_birth: str | None = None
	plan_type: str | None = None


class InvokeRequest(BaseModel):
	"""Relay payload: a prompt, optional rolling history, optional document."""

	prompt: str
	history: str | None = None
	image: InlineImage | None = None
