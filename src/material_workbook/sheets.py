from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Sequence

from .errors import ConflictError, NotFoundError, ValidationError
from .ledger import parse_amount
from .material_repository import MaterialRepository
from .models.item import MaterialItem, utc_now
from .models.sheet import MaterialSheet, SheetLabor
from .versions import require_working_version

logger = logging.getLogger(__name__)


class SheetDirectory:
    """Named, ordered partitions of the items in one workbook version."""

    def __init__(self, store: MaterialRepository, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def get_sheet(self, sheet_id: str) -> MaterialSheet:
        sheet = self._store.get_sheet(sheet_id)
        if sheet is None:
            raise NotFoundError(f"Sheet {sheet_id} not found")
        return sheet

    def list_sheets(self, version_id: str) -> Sequence[MaterialSheet]:
        return self._store.list_sheets(version_id)

    def list_sheet_items(self, sheet_id: str) -> Sequence[MaterialItem]:
        self.get_sheet(sheet_id)
        return self._store.list_items(sheet_id)

    def add_sheet(
        self,
        version_id: str,
        name: str,
        *,
        description: str | None = None,
        is_option: bool = False,
    ) -> MaterialSheet:
        require_working_version(self._store, version_id)
        name = self._clean_name(version_id, name)
        existing = self._store.list_sheets(version_id)
        order_index = max((s.order_index for s in existing), default=-1) + 1
        sheet = self._store.create_sheet(
            workbook_id=version_id,
            name=name,
            order_index=order_index,
            is_option=is_option,
            description=description,
        )
        logger.info("Added sheet", extra={"version_id": version_id, "sheet_id": sheet.id, "sheet_name": name})
        return sheet

    def rename_sheet(self, sheet_id: str, name: str) -> MaterialSheet:
        sheet = self.get_sheet(sheet_id)
        require_working_version(self._store, sheet.workbook_id)
        name = self._clean_name(sheet.workbook_id, name, exclude=sheet.id)
        return self._store.save_sheet(sheet.model_copy(update={"name": name, "updated_at": self._clock()}))

    def delete_sheet(self, sheet_id: str) -> None:
        sheet = self.get_sheet(sheet_id)
        require_working_version(self._store, sheet.workbook_id)
        self._store.delete_sheet(sheet_id)
        logger.info("Deleted sheet", extra={"sheet_id": sheet_id, "sheet_name": sheet.name})

    def get_sheet_labor(self, sheet_id: str) -> SheetLabor | None:
        self.get_sheet(sheet_id)
        return self._store.get_labor(sheet_id)

    def set_sheet_labor(
        self,
        sheet_id: str,
        *,
        description: str,
        estimated_hours: Any = 0,
        hourly_rate: Any = 0,
        notes: str | None = None,
    ) -> SheetLabor:
        sheet = self.get_sheet(sheet_id)
        require_working_version(self._store, sheet.workbook_id)
        description = (description or "").strip()
        if not description:
            raise ValidationError("Labor description cannot be blank", field="description")
        fields = {
            "estimated_hours": parse_amount(estimated_hours, field="estimated_hours") or 0.0,
            "hourly_rate": parse_amount(hourly_rate, field="hourly_rate") or 0.0,
            "notes": notes,
        }

        existing = self._store.get_labor(sheet_id)
        if existing is None:
            return self._store.create_labor(sheet_id=sheet_id, description=description, **fields)
        return self._store.save_labor(
            existing.model_copy(update={"description": description, "updated_at": self._clock(), **fields})
        )

    def delete_sheet_labor(self, sheet_id: str) -> None:
        sheet = self.get_sheet(sheet_id)
        require_working_version(self._store, sheet.workbook_id)
        labor = self._store.get_labor(sheet_id)
        if labor is None:
            raise NotFoundError(f"Sheet {sheet_id} has no labor row")
        self._store.delete_labor(labor.id)

    def _clean_name(self, version_id: str, name: str, *, exclude: str | None = None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Sheet name cannot be blank", field="name")
        for sheet in self._store.list_sheets(version_id):
            if sheet.name == name and sheet.id != exclude:
                raise ConflictError(f"Sheet {name!r} already exists in this version")
        return name


__all__ = ["SheetDirectory"]
