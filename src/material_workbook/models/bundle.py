from __future__ import annotations

from datetime import datetime
from typing import Sequence

from pydantic import BaseModel, Field

from .item import ItemStatus, utc_now


class MaterialBundle(BaseModel):
    id: str
    job_id: str
    name: str
    description: str | None = None
    status: ItemStatus = ItemStatus.not_ordered
    item_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def item_count(self) -> int:
        return len(self.item_ids)


class BundleMembershipChange(BaseModel):
    """Outcome of an add/remove call. Ids that were already in the requested
    state are reported as ``unchanged`` instead of raising."""

    bundle: MaterialBundle
    changed: Sequence[str] = Field(default_factory=list)
    unchanged: Sequence[str] = Field(default_factory=list)


class BundleStatusChange(BaseModel):
    bundle: MaterialBundle
    updated_item_ids: Sequence[str] = Field(default_factory=list)


__all__ = ["MaterialBundle", "BundleMembershipChange", "BundleStatusChange"]
