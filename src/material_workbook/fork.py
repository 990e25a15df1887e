from __future__ import annotations

import logging
from typing import Any, Dict

from .material_repository import MaterialRepository
from .models.item import MaterialItem
from .models.sheet import CategoryMarkup, MaterialSheet, SheetLabor
from .models.workbook import WorkbookVersion

logger = logging.getLogger(__name__)


def sheet_copy_fields(sheet: MaterialSheet) -> Dict[str, Any]:
    return {
        "name": sheet.name,
        "order_index": sheet.order_index,
        "is_option": sheet.is_option,
        "description": sheet.description,
    }


def item_copy_fields(item: MaterialItem) -> Dict[str, Any]:
    return {
        "category": item.category,
        "name": item.name,
        "usage": item.usage,
        "sku": item.sku,
        "quantity": item.quantity,
        "length": item.length,
        "color": item.color,
        "unit_cost": item.unit_cost,
        "markup": item.markup,
        "unit_price": item.unit_price,
        "extended_cost": item.extended_cost,
        "extended_price": item.extended_price,
        "taxable": item.taxable,
        "status": item.status,
        "notes": item.notes,
        "order_index": item.order_index,
    }


def labor_copy_fields(labor: SheetLabor) -> Dict[str, Any]:
    return {
        "description": labor.description,
        "estimated_hours": labor.estimated_hours,
        "hourly_rate": labor.hourly_rate,
        "notes": labor.notes,
    }


def markup_copy_fields(markup: CategoryMarkup) -> Dict[str, Any]:
    return {"category": markup.category, "markup": markup.markup}


class ForkEngine:
    """Deep-copies the sheets of one version into another.

    Every record is rebuilt from an explicit field list; identifiers, owner
    references and timestamps never carry over.
    """

    def __init__(self, store: MaterialRepository) -> None:
        self._store = store

    def copy_version(
        self, source: WorkbookVersion, target: WorkbookVersion
    ) -> tuple[Dict[str, str], Dict[str, str]]:
        """Copy sheets, items, labor rows and category markups.

        Returns (old sheet id -> new sheet id, old item id -> new item id).
        Must run inside the caller's transaction.
        """
        sheet_ids: Dict[str, str] = {}
        item_ids: Dict[str, str] = {}

        for sheet in self._store.list_sheets(source.id):
            new_sheet = self._store.create_sheet(workbook_id=target.id, **sheet_copy_fields(sheet))
            sheet_ids[sheet.id] = new_sheet.id

            for item in self._store.list_items(sheet.id):
                new_item = self._store.create_item(sheet_id=new_sheet.id, **item_copy_fields(item))
                item_ids[item.id] = new_item.id

            labor = self._store.get_labor(sheet.id)
            if labor is not None:
                self._store.create_labor(sheet_id=new_sheet.id, **labor_copy_fields(labor))

            for markup in self._store.list_category_markups(sheet.id):
                self._store.upsert_category_markup(sheet_id=new_sheet.id, **markup_copy_fields(markup))

        logger.info(
            "Copied workbook version",
            extra={
                "source_version_id": source.id,
                "target_version_id": target.id,
                "sheets_count": len(sheet_ids),
                "items_count": len(item_ids),
            },
        )
        return sheet_ids, item_ids


__all__ = [
    "ForkEngine",
    "sheet_copy_fields",
    "item_copy_fields",
    "labor_copy_fields",
    "markup_copy_fields",
]
