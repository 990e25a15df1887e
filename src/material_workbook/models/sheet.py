from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from .item import utc_now


class MaterialSheet(BaseModel):
    id: str
    workbook_id: str
    name: str
    order_index: int = 0
    is_option: bool = False
    description: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class SheetLabor(BaseModel):
    id: str
    sheet_id: str
    description: str
    estimated_hours: float = 0.0
    hourly_rate: float = 0.0
    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_labor_cost(self) -> float:
        return self.estimated_hours * self.hourly_rate


class CategoryMarkup(BaseModel):
    id: str
    sheet_id: str
    category: str
    markup: float
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["MaterialSheet", "SheetLabor", "CategoryMarkup"]
