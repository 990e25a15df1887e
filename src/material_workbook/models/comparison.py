from __future__ import annotations

from typing import Sequence

from pydantic import BaseModel, Field, computed_field

from .item import MaterialItem


def variance_percent(variance: float, proposal_total: float) -> float:
    if proposal_total == 0:
        return 0.0
    return variance / proposal_total * 100


class SheetComparison(BaseModel):
    sheet_name: str
    matched: bool
    proposal_items: Sequence[MaterialItem] = Field(default_factory=list)
    actual_items: Sequence[MaterialItem] = Field(default_factory=list)
    proposal_total_cost: float = 0.0
    actual_total_cost: float = 0.0
    proposal_total_price: float = 0.0
    actual_total_price: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def proposal_item_count(self) -> int:
        return len(self.proposal_items)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def actual_item_count(self) -> int:
        return len(self.actual_items)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cost_variance(self) -> float:
        return self.actual_total_cost - self.proposal_total_cost

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price_variance(self) -> float:
        return self.actual_total_price - self.proposal_total_price

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cost_variance_percent(self) -> float:
        return variance_percent(self.cost_variance, self.proposal_total_cost)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price_variance_percent(self) -> float:
        return variance_percent(self.price_variance, self.proposal_total_price)


class JobComparison(BaseModel):
    """Proposal-vs-actuals for one job.

    Sheets that exist only in the working version are left out of every
    total and listed by name in ``excluded_sheet_names``. Without a locked
    baseline ``has_baseline`` is false and all totals and variances are None.
    """

    job_id: str
    has_baseline: bool
    proposal_version_number: int | None = None
    working_version_number: int | None = None
    sheets: Sequence[SheetComparison] = Field(default_factory=list)
    excluded_sheet_names: Sequence[str] = Field(default_factory=list)
    proposal_total_cost: float | None = None
    actual_total_cost: float | None = None
    proposal_total_price: float | None = None
    actual_total_price: float | None = None
    cost_variance: float | None = None
    price_variance: float | None = None
    cost_variance_percent: float | None = None
    price_variance_percent: float | None = None


__all__ = ["SheetComparison", "JobComparison", "variance_percent"]
