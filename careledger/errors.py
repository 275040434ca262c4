"""Exception types shared by the CareLedger orchestrators."""

from __future__ import annotations


class OperationTimeout(TimeoutError):
	"""Raised when an awaited operation exceeds its time budget."""


class UploadFailed(RuntimeError):
	"""Raised when an upload aborts before its record exists.

	The message is safe to show to end users; the provider error is chained.
	"""


class NoActivePolicy(LookupError):
	"""Raised when recalculation is requested without an analyzed insurance policy."""


class AnalysisFailed(RuntimeError):
	"""Raised when an on-demand detailed analysis produced no usable result."""


class InvalidInput(ValueError):
	"""Raised when caller-supplied data is rejected; the message is safe to return."""


def user_facing_message(exc: BaseException, fallback: str) -> str:
	"""Map a raw storage/database error onto a short category message."""

	message = str(exc) or ""
	lowered = message.lower()
	if isinstance(exc, TimeoutError) or "timed out" in lowered:
		return "Upload timed out. Please check your connection and try again."
	if "aborted" in lowered:
		return "Upload was interrupted. Please try again."
	if "network" in lowered or "connection" in lowered:
		return "Network error. Please check your internet connection."
	return fallback
