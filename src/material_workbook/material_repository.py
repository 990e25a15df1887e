from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Iterable, Protocol, Sequence

from .models.bundle import MaterialBundle
from .models.item import MaterialItem
from .models.sheet import CategoryMarkup, MaterialSheet, SheetLabor
from .models.workbook import WorkbookStatus, WorkbookVersion


class MaterialRepository(Protocol):
    """Record storage the engine runs against.

    ``create_*`` calls assign identifiers and timestamps; ``save_*`` calls
    overwrite a whole record. Implementations own referential integrity:
    deleting a sheet drops its items, labor row and category markups, and
    deleting an item drops it from every bundle. At most one ``working``
    version may exist per job.
    """

    def transaction(self) -> AbstractContextManager[None]:
        ...

    # Workbook versions
    def create_version(self, *, job_id: str, version_number: int, status: WorkbookStatus) -> WorkbookVersion:
        ...

    def get_version(self, version_id: str) -> WorkbookVersion | None:
        ...

    def list_versions(self, job_id: str) -> Sequence[WorkbookVersion]:
        ...

    def save_version(self, version: WorkbookVersion) -> WorkbookVersion:
        ...

    # Sheets
    def create_sheet(self, *, workbook_id: str, name: str, order_index: int, **fields: Any) -> MaterialSheet:
        ...

    def get_sheet(self, sheet_id: str) -> MaterialSheet | None:
        ...

    def list_sheets(self, workbook_id: str) -> Sequence[MaterialSheet]:
        ...

    def save_sheet(self, sheet: MaterialSheet) -> MaterialSheet:
        ...

    def delete_sheet(self, sheet_id: str) -> None:
        ...

    # Items
    def create_item(self, *, sheet_id: str, name: str, **fields: Any) -> MaterialItem:
        ...

    def get_item(self, item_id: str) -> MaterialItem | None:
        ...

    def list_items(self, sheet_id: str) -> Sequence[MaterialItem]:
        ...

    def save_item(self, item: MaterialItem) -> MaterialItem:
        ...

    def delete_item(self, item_id: str) -> None:
        ...

    # Per-sheet labor and category markups
    def get_labor(self, sheet_id: str) -> SheetLabor | None:
        ...

    def create_labor(self, *, sheet_id: str, description: str, **fields: Any) -> SheetLabor:
        ...

    def save_labor(self, labor: SheetLabor) -> SheetLabor:
        ...

    def delete_labor(self, labor_id: str) -> None:
        ...

    def list_category_markups(self, sheet_id: str) -> Sequence[CategoryMarkup]:
        ...

    def upsert_category_markup(self, *, sheet_id: str, category: str, markup: float) -> CategoryMarkup:
        ...

    # Bundles
    def create_bundle(
        self, *, job_id: str, name: str, description: str | None = None, item_ids: Sequence[str] = ()
    ) -> MaterialBundle:
        ...

    def get_bundle(self, bundle_id: str) -> MaterialBundle | None:
        ...

    def list_bundles(self, job_id: str) -> Sequence[MaterialBundle]:
        ...

    def save_bundle(self, bundle: MaterialBundle) -> MaterialBundle:
        ...

    def delete_bundle(self, bundle_id: str) -> None:
        ...

    def add_bundle_items(self, bundle_id: str, item_ids: Iterable[str]) -> list[str]:
        """Add members, returning only the ids that were not already present."""
        ...

    def remove_bundle_items(self, bundle_id: str, item_ids: Iterable[str]) -> list[str]:
        """Remove members, returning only the ids that were actually present."""
        ...


__all__ = ["MaterialRepository"]
