"""Configuration flags and operational budgets for the CareLedger backend."""

from __future__ import annotations

import os
from typing import Final


def _get_bool(env_var: str, default: bool) -> bool:
	value = os.getenv(env_var)
	if value is None:
		return default
	return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_float(env_var: str, default: float) -> float:
	value = os.getenv(env_var)
	if value is None or not value.strip():
		return default
	try:
		return float(value)
	except ValueError:
		return default


USE_SUPABASE: Final[bool] = _get_bool("USE_SUPABASE", False)

SUPABASE_URL: Final[str] = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY: Final[str] = os.getenv("SUPABASE_KEY", "")

GEMINI_MODEL: Final[str] = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

LOCAL_STORE_ROOT: Final[str] = os.getenv("LOCAL_STORE_ROOT", "data/store")
LOG_LEVEL: Final[str] = os.getenv("CARELEDGER_LOG_LEVEL", "INFO").upper()

BILLS_BUCKET: Final[str] = "hospital-bills"
INSURANCE_BUCKET: Final[str] = "insurance-documents"

BILLS_TABLE: Final[str] = "hospital_bills"
INSURANCE_TABLE: Final[str] = "insurance_documents"
CHAT_TABLE: Final[str] = "chat_messages"
PROFILES_TABLE: Final[str] = "profiles"

# Budgets are in seconds.
UPLOAD_TIMEOUT: Final[float] = _get_float("CARELEDGER_UPLOAD_TIMEOUT", 30.0)
UPLOAD_RETRIES: Final[int] = 3
RETRY_INITIAL_DELAY: Final[float] = _get_float("CARELEDGER_RETRY_DELAY", 1.0)
INSERT_TIMEOUT: Final[float] = 10.0
BILL_CLASSIFY_TIMEOUT: Final[float] = 20.0
INSURANCE_CLASSIFY_TIMEOUT: Final[float] = 25.0
BILL_ANALYSIS_TIMEOUT: Final[float] = 25.0
INSURANCE_ANALYSIS_TIMEOUT: Final[float] = 30.0
CHAT_TIMEOUT: Final[float] = 30.0
FETCH_TIMEOUT: Final[float] = 30.0
SIGNED_URL_TTL: Final[int] = 3600
