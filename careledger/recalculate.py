"""Re-run detailed bill analysis for every bill against the active policy."""

from __future__ import annotations

import logging
from typing import Callable

from careledger.analyzer import analyze_bill, format_insurance_context
from careledger.bill_service import update_bill_analysis
from careledger.config import BILL_ANALYSIS_TIMEOUT, BILLS_BUCKET, FETCH_TIMEOUT, SIGNED_URL_TTL
from careledger.errors import NoActivePolicy
from careledger.files import fetch_stored_file
from careledger.insurance_service import active_policy
from careledger.models import RecalculationReport
from careledger.retry import with_timeout
from careledger.state import AppState

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


async def recalculate_all(state: AppState, progress: ProgressCallback | None = None) -> RecalculationReport:
	"""Best-effort re-analysis of all bills, one at a time.

	Bills without a stored file count as processed but are not analyzed. A
	failure on one bill is logged and the loop moves on; failed bills are
	reported, not retried. ``progress`` receives ``(current, total)`` after
	every bill.
	"""

	policy = active_policy(state.insurance_docs)
	if policy is None:
		raise NoActivePolicy("Please upload and approve an insurance policy first.")

	context = format_insurance_context(policy.analysis())
	bills = list(state.bills)
	report = RecalculationReport(total=len(bills))
	LOGGER.info("Recalculating %s bills against policy %s", len(bills), policy.id)

	for bill in bills:
		if bill.file_url:
			try:
				content, mime = await with_timeout(
					fetch_stored_file(state.documents, bill.file_url, BILLS_BUCKET, SIGNED_URL_TTL),
					FETCH_TIMEOUT,
					"File download timed out",
				)
				analysis = await with_timeout(
					analyze_bill(state.gateway, content, mime, context),
					BILL_ANALYSIS_TIMEOUT,
					"AI analysis timed out",
				)
				if analysis is None:
					report.failed_bill_ids.append(bill.id)
				else:
					await update_bill_analysis(state, bill.id, analysis)
					report.updated += 1
			except Exception as exc:
				LOGGER.error("Failed to re-analyze bill %s: %s", bill.id, exc)
				report.failed_bill_ids.append(bill.id)
		else:
			LOGGER.debug("Skipping bill %s without a stored file", bill.id)

		report.processed += 1
		if progress is not None:
			progress(report.processed, report.total)

	LOGGER.info("Recalculation finished: %s/%s updated", report.updated, report.total)
	return report
