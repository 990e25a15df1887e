from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ItemStatus(str, Enum):
    """Fulfillment progression. Any status may follow any other."""

    not_ordered = "not_ordered"
    ordered = "ordered"
    received = "received"
    ready_for_job = "ready_for_job"
    pull_from_shop = "pull_from_shop"
    at_job = "at_job"
    installed = "installed"


DEFAULT_CATEGORY = "Uncategorized"


class MaterialItem(BaseModel):
    id: str
    sheet_id: str
    category: str = DEFAULT_CATEGORY
    name: str
    usage: str | None = None
    sku: str | None = None
    quantity: float | None = 1.0
    length: str | None = None
    color: str | None = None
    unit_cost: float | None = None
    # Decimal fraction, 0.35 == 35%.
    markup: float | None = None
    unit_price: float | None = None
    extended_cost: float | None = None
    extended_price: float | None = None
    taxable: bool = True
    status: ItemStatus = ItemStatus.not_ordered
    notes: str | None = None
    order_index: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def markup_percent(self) -> float | None:
        if self.markup is None:
            return None
        return self.markup * 100


__all__ = ["MaterialItem", "ItemStatus", "DEFAULT_CATEGORY", "utc_now"]
