from __future__ import annotations

import logging
from typing import Sequence

from .material_repository import MaterialRepository
from .models.comparison import JobComparison, SheetComparison, variance_percent
from .models.item import MaterialItem
from .models.workbook import WorkbookStatus

logger = logging.getLogger(__name__)


def _sum(items: Sequence[MaterialItem], field: str) -> float:
    return sum(getattr(item, field) or 0.0 for item in items)


class ComparisonEngine:
    """Proposal (first locked version) against actuals (current working version).

    Sheets pair up by exact name. A proposal sheet with no working
    counterpart reports zero actuals; a working sheet with no proposal
    counterpart is excluded from every total and only named in the result.
    """

    def __init__(self, store: MaterialRepository) -> None:
        self._store = store

    def compare_job_materials(self, job_id: str) -> JobComparison:
        versions = self._store.list_versions(job_id)
        proposal = next((v for v in versions if v.status is WorkbookStatus.locked), None)
        working = next((v for v in versions if v.status is WorkbookStatus.working), None)

        if proposal is None:
            return JobComparison(
                job_id=job_id,
                has_baseline=False,
                working_version_number=working.version_number if working else None,
            )

        working_sheets = {s.name: s for s in self._store.list_sheets(working.id)} if working else {}
        sheets = []
        matched_names = set()
        for proposal_sheet in self._store.list_sheets(proposal.id):
            proposal_items = self._store.list_items(proposal_sheet.id)
            actual_sheet = working_sheets.get(proposal_sheet.name)
            actual_items = self._store.list_items(actual_sheet.id) if actual_sheet else []
            if actual_sheet is not None:
                matched_names.add(proposal_sheet.name)
            sheets.append(
                SheetComparison(
                    sheet_name=proposal_sheet.name,
                    matched=actual_sheet is not None,
                    proposal_items=proposal_items,
                    actual_items=actual_items,
                    proposal_total_cost=_sum(proposal_items, "extended_cost"),
                    actual_total_cost=_sum(actual_items, "extended_cost"),
                    proposal_total_price=_sum(proposal_items, "extended_price"),
                    actual_total_price=_sum(actual_items, "extended_price"),
                )
            )

        proposal_cost = sum(s.proposal_total_cost for s in sheets)
        actual_cost = sum(s.actual_total_cost for s in sheets)
        proposal_price = sum(s.proposal_total_price for s in sheets)
        actual_price = sum(s.actual_total_price for s in sheets)
        excluded = [name for name in working_sheets if name not in matched_names]

        logger.debug(
            "Compared job materials",
            extra={
                "job_id": job_id,
                "proposal_version": proposal.version_number,
                "sheets_count": len(sheets),
                "excluded_sheets_count": len(excluded),
            },
        )
        return JobComparison(
            job_id=job_id,
            has_baseline=True,
            proposal_version_number=proposal.version_number,
            working_version_number=working.version_number if working else None,
            sheets=sheets,
            excluded_sheet_names=excluded,
            proposal_total_cost=proposal_cost,
            actual_total_cost=actual_cost,
            proposal_total_price=proposal_price,
            actual_total_price=actual_price,
            cost_variance=actual_cost - proposal_cost,
            price_variance=actual_price - proposal_price,
            cost_variance_percent=variance_percent(actual_cost - proposal_cost, proposal_cost),
            price_variance_percent=variance_percent(actual_price - proposal_price, proposal_price),
        )


__all__ = ["ComparisonEngine"]
