from __future__ import annotations

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, Sequence, TypeVar

from pydantic import BaseModel

from .errors import NotFoundError, StateError
from .models.bundle import MaterialBundle
from .models.item import MaterialItem, utc_now
from .models.sheet import CategoryMarkup, MaterialSheet, SheetLabor
from .models.workbook import WorkbookStatus, WorkbookVersion

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class WorkbookStore:
    """In-memory record store for dev and tests.

    Writes inside ``transaction()`` are rolled back as a whole when the
    block raises.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._versions: Dict[str, WorkbookVersion] = {}
        self._sheets: Dict[str, MaterialSheet] = {}
        self._items: Dict[str, MaterialItem] = {}
        self._labor: Dict[str, SheetLabor] = {}
        self._markups: Dict[str, CategoryMarkup] = {}
        self._bundles: Dict[str, MaterialBundle] = {}

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                logger.warning("Rolled back store transaction")
                raise

    # Workbook versions

    def create_version(self, *, job_id: str, version_number: int, status: WorkbookStatus) -> WorkbookVersion:
        with self._lock:
            if status is WorkbookStatus.working:
                self._check_single_working(job_id)
            now = self._clock()
            version = WorkbookVersion(
                id=self._generate_id("wb"),
                job_id=job_id,
                version_number=version_number,
                status=status,
                created_at=now,
                updated_at=now,
            )
            self._versions[version.id] = version
            return _copy(version)

    def get_version(self, version_id: str) -> WorkbookVersion | None:
        with self._lock:
            return _copy_or_none(self._versions.get(version_id))

    def list_versions(self, job_id: str) -> list[WorkbookVersion]:
        with self._lock:
            versions = [v for v in self._versions.values() if v.job_id == job_id]
            return [_copy(v) for v in sorted(versions, key=lambda v: (v.version_number, v.created_at))]

    def save_version(self, version: WorkbookVersion) -> WorkbookVersion:
        with self._lock:
            self._require(self._versions, version.id, "Workbook version")
            if version.status is WorkbookStatus.working:
                self._check_single_working(version.job_id, exclude=version.id)
            self._versions[version.id] = _copy(version)
            return _copy(version)

    # Sheets

    def create_sheet(self, *, workbook_id: str, name: str, order_index: int, **fields: Any) -> MaterialSheet:
        with self._lock:
            self._require(self._versions, workbook_id, "Workbook version")
            now = self._clock()
            sheet = MaterialSheet(
                id=self._generate_id("sheet"),
                workbook_id=workbook_id,
                name=name,
                order_index=order_index,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self._sheets[sheet.id] = sheet
            return _copy(sheet)

    def get_sheet(self, sheet_id: str) -> MaterialSheet | None:
        with self._lock:
            return _copy_or_none(self._sheets.get(sheet_id))

    def list_sheets(self, workbook_id: str) -> list[MaterialSheet]:
        with self._lock:
            sheets = [s for s in self._sheets.values() if s.workbook_id == workbook_id]
            return [_copy(s) for s in sorted(sheets, key=lambda s: s.order_index)]

    def save_sheet(self, sheet: MaterialSheet) -> MaterialSheet:
        with self._lock:
            self._require(self._sheets, sheet.id, "Sheet")
            self._sheets[sheet.id] = _copy(sheet)
            return _copy(sheet)

    def delete_sheet(self, sheet_id: str) -> None:
        with self._lock:
            for item_id in [i.id for i in self._items.values() if i.sheet_id == sheet_id]:
                self.delete_item(item_id)
            for table in (self._labor, self._markups):
                for record_id in [r.id for r in table.values() if r.sheet_id == sheet_id]:
                    del table[record_id]
            self._sheets.pop(sheet_id, None)

    # Items

    def create_item(self, *, sheet_id: str, name: str, **fields: Any) -> MaterialItem:
        with self._lock:
            self._require(self._sheets, sheet_id, "Sheet")
            now = self._clock()
            item = MaterialItem(
                id=self._generate_id("item"),
                sheet_id=sheet_id,
                name=name,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self._items[item.id] = item
            return _copy(item)

    def get_item(self, item_id: str) -> MaterialItem | None:
        with self._lock:
            return _copy_or_none(self._items.get(item_id))

    def list_items(self, sheet_id: str) -> list[MaterialItem]:
        with self._lock:
            items = [i for i in self._items.values() if i.sheet_id == sheet_id]
            return [_copy(i) for i in sorted(items, key=lambda i: (i.category, i.order_index))]

    def save_item(self, item: MaterialItem) -> MaterialItem:
        with self._lock:
            self._require(self._items, item.id, "Item")
            self._items[item.id] = _copy(item)
            return _copy(item)

    def delete_item(self, item_id: str) -> None:
        with self._lock:
            self._items.pop(item_id, None)
            for bundle in self._bundles.values():
                if item_id in bundle.item_ids:
                    bundle.item_ids.remove(item_id)

    # Per-sheet labor and category markups

    def get_labor(self, sheet_id: str) -> SheetLabor | None:
        with self._lock:
            for labor in self._labor.values():
                if labor.sheet_id == sheet_id:
                    return _copy(labor)
            return None

    def create_labor(self, *, sheet_id: str, description: str, **fields: Any) -> SheetLabor:
        with self._lock:
            self._require(self._sheets, sheet_id, "Sheet")
            if self.get_labor(sheet_id) is not None:
                raise StateError(f"Sheet {sheet_id} already has a labor row")
            now = self._clock()
            labor = SheetLabor(
                id=self._generate_id("labor"),
                sheet_id=sheet_id,
                description=description,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self._labor[labor.id] = labor
            return _copy(labor)

    def save_labor(self, labor: SheetLabor) -> SheetLabor:
        with self._lock:
            self._require(self._labor, labor.id, "Labor row")
            self._labor[labor.id] = _copy(labor)
            return _copy(labor)

    def delete_labor(self, labor_id: str) -> None:
        with self._lock:
            self._labor.pop(labor_id, None)

    def list_category_markups(self, sheet_id: str) -> list[CategoryMarkup]:
        with self._lock:
            markups = [m for m in self._markups.values() if m.sheet_id == sheet_id]
            return [_copy(m) for m in sorted(markups, key=lambda m: m.category)]

    def upsert_category_markup(self, *, sheet_id: str, category: str, markup: float) -> CategoryMarkup:
        with self._lock:
            self._require(self._sheets, sheet_id, "Sheet")
            now = self._clock()
            for existing in self._markups.values():
                if existing.sheet_id == sheet_id and existing.category == category:
                    existing.markup = markup
                    existing.updated_at = now
                    return _copy(existing)
            record = CategoryMarkup(
                id=self._generate_id("markup"),
                sheet_id=sheet_id,
                category=category,
                markup=markup,
                created_at=now,
                updated_at=now,
            )
            self._markups[record.id] = record
            return _copy(record)

    # Bundles

    def create_bundle(
        self, *, job_id: str, name: str, description: str | None = None, item_ids: Sequence[str] = ()
    ) -> MaterialBundle:
        with self._lock:
            now = self._clock()
            bundle = MaterialBundle(
                id=self._generate_id("bundle"),
                job_id=job_id,
                name=name,
                description=description,
                created_at=now,
                updated_at=now,
            )
            for item_id in item_ids:
                self._require(self._items, item_id, "Item")
                if item_id not in bundle.item_ids:
                    bundle.item_ids.append(item_id)
            self._bundles[bundle.id] = bundle
            return _copy(bundle)

    def get_bundle(self, bundle_id: str) -> MaterialBundle | None:
        with self._lock:
            return _copy_or_none(self._bundles.get(bundle_id))

    def list_bundles(self, job_id: str) -> list[MaterialBundle]:
        with self._lock:
            bundles = [b for b in self._bundles.values() if b.job_id == job_id]
            return [_copy(b) for b in sorted(bundles, key=lambda b: b.created_at)]

    def save_bundle(self, bundle: MaterialBundle) -> MaterialBundle:
        with self._lock:
            self._require(self._bundles, bundle.id, "Bundle")
            self._bundles[bundle.id] = _copy(bundle)
            return _copy(bundle)

    def delete_bundle(self, bundle_id: str) -> None:
        with self._lock:
            self._bundles.pop(bundle_id, None)

    def add_bundle_items(self, bundle_id: str, item_ids: Iterable[str]) -> list[str]:
        with self._lock:
            bundle = self._require(self._bundles, bundle_id, "Bundle")
            added = []
            for item_id in item_ids:
                self._require(self._items, item_id, "Item")
                if item_id not in bundle.item_ids:
                    bundle.item_ids.append(item_id)
                    added.append(item_id)
            if added:
                bundle.updated_at = self._clock()
            return added

    def remove_bundle_items(self, bundle_id: str, item_ids: Iterable[str]) -> list[str]:
        with self._lock:
            bundle = self._require(self._bundles, bundle_id, "Bundle")
            removed = []
            for item_id in item_ids:
                if item_id in bundle.item_ids:
                    bundle.item_ids.remove(item_id)
                    removed.append(item_id)
            if removed:
                bundle.updated_at = self._clock()
            return removed

    def _check_single_working(self, job_id: str, *, exclude: str | None = None) -> None:
        for version in self._versions.values():
            if (
                version.job_id == job_id
                and version.status is WorkbookStatus.working
                and version.id != exclude
            ):
                raise StateError(f"Job {job_id} already has working version {version.id}")

    def _require(self, table: Dict[str, RecordT], record_id: str, label: str) -> RecordT:
        record = table.get(record_id)
        if record is None:
            raise NotFoundError(f"{label} {record_id} not found")
        return record

    def _snapshot(self) -> tuple[Dict[str, Any], ...]:
        return copy.deepcopy(
            (self._versions, self._sheets, self._items, self._labor, self._markups, self._bundles)
        )

    def _restore(self, snapshot: tuple[Dict[str, Any], ...]) -> None:
        (
            self._versions,
            self._sheets,
            self._items,
            self._labor,
            self._markups,
            self._bundles,
        ) = snapshot

    def _generate_id(self, prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _copy(record: RecordT) -> RecordT:
    return record.model_copy(deep=True)


def _copy_or_none(record: RecordT | None) -> RecordT | None:
    return None if record is None else _copy(record)


__all__ = ["WorkbookStore"]
