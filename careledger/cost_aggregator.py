"""Fold bills into cost-prediction totals."""

from __future__ import annotations

from typing import Iterable

from careledger.analyzer import is_coverage_not_applicable
from careledger.models import Bill, CostLine, CostSummary


def aggregate_costs(bills: Iterable[Bill]) -> CostSummary:
	"""Summarize billed, insurer-estimated and patient-estimated amounts.

	Bills with a coverage prediction contribute their analyzed figures; others
	contribute only their raw amount to ``total_billed``. Missing numbers count
	as zero. Pure: the same bills always give the same summary.
	"""

	summary = CostSummary()
	for bill in bills:
		analysis = bill.analysis_result
		prediction = analysis.coverage_prediction if analysis is not None else None

		if prediction is not None:
			billed = analysis.overview.total_amount or 0.0
			insurance = prediction.estimated_insurance_coverage or 0.0
			patient = prediction.estimated_patient_responsibility or 0.0
			summary.total_billed += billed
			summary.estimated_insurance += insurance
			summary.estimated_patient += patient
			summary.bills_analyzed += 1
			summary.lines.append(
				CostLine(
					id=bill.id,
					hospital=bill.display_hospital_name(),
					bill_date=bill.bill_date,
					amount=billed,
					patient_resp=patient,
					insurance_resp=insurance,
					confidence=prediction.confidence,
					reasoning=prediction.reasoning,
					is_not_applicable=is_coverage_not_applicable(prediction),
					status="Analyzed",
				)
			)
			continue

		summary.pending_bills += 1
		summary.total_billed += bill.amount or 0.0
		summary.lines.append(
			CostLine(
				id=bill.id,
				hospital=bill.display_hospital_name(),
				bill_date=bill.bill_date,
				amount=bill.amount or 0.0,
				status="Pending Analysis",
			)
		)

	return summary
