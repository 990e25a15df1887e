from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping

from pydantic import BaseModel, Field

from .item import utc_now


class WorkbookStatus(str, Enum):
    working = "working"
    locked = "locked"


class WorkbookVersion(BaseModel):
    id: str
    job_id: str
    version_number: int
    status: WorkbookStatus = WorkbookStatus.working
    locked_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_locked(self) -> bool:
        return self.status is WorkbookStatus.locked


@dataclass
class ForkResult:
    locked: WorkbookVersion
    working: WorkbookVersion
    # old id -> new id, for sheets and items respectively
    sheet_ids: Mapping[str, str] = field(default_factory=dict)
    item_ids: Mapping[str, str] = field(default_factory=dict)


__all__ = ["WorkbookStatus", "WorkbookVersion", "ForkResult"]
