from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Sequence, Type, TypeVar

from google.api_core import exceptions as api_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel

from .errors import ConflictError, NotFoundError, StateError
from .models.bundle import MaterialBundle
from .models.item import MaterialItem, utc_now
from .models.sheet import CategoryMarkup, MaterialSheet, SheetLabor
from .models.workbook import WorkbookStatus, WorkbookVersion

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

VERSIONS = "material_workbooks"
SHEETS = "material_sheets"
ITEMS = "material_items"
LABOR = "material_sheet_labor"
MARKUPS = "material_category_markups"
BUNDLES = "material_bundles"
# One document per job naming its working version. Commits that move it carry
# a precondition, so two instances cannot both fork the same version.
HEADS = "material_workbook_heads"


class FirestoreWorkbookStore:
    """Firestore-backed record store for production use.

    Inside ``transaction()`` every write is queued on one ``WriteBatch`` and
    committed atomically when the block exits cleanly. Reads made inside the
    block see the queued writes. Reads are not isolated; the working-version
    head document is what keeps two concurrent forks from both committing.
    """

    def __init__(
        self,
        project_id: str | None = None,
        *,
        client: Any = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = client or firestore.Client(project=project_id)
        self._clock = clock
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "batch", None) is not None:
            # Nested blocks join the outer batch.
            yield
            return

        self._local.batch = self._db.batch()
        self._local.pending = {}
        self._local.heads = {}
        try:
            yield
        except BaseException:
            logger.warning(
                "Discarded Firestore batch",
                extra={"pending_writes": len(self._local.pending)},
            )
            raise
        else:
            batch = self._local.batch
            self._queue_heads(batch)
            try:
                batch.commit()
            except (api_exceptions.Conflict, api_exceptions.FailedPrecondition) as exc:
                logger.warning(
                    "Firestore batch rejected by a concurrent write",
                    extra={"pending_writes": len(self._local.pending), "error": str(exc)},
                )
                raise ConflictError("Workbook was changed concurrently; reload and retry") from exc
            logger.info(
                "Committed Firestore batch",
                extra={"writes": len(self._local.pending)},
            )
        finally:
            self._local.batch = None
            self._local.pending = {}
            self._local.heads = {}

    # Workbook versions

    def create_version(self, *, job_id: str, version_number: int, status: WorkbookStatus) -> WorkbookVersion:
        now = self._clock()
        version = WorkbookVersion(
            id=self._new_id(VERSIONS),
            job_id=job_id,
            version_number=version_number,
            status=status,
            created_at=now,
            updated_at=now,
        )
        with self.transaction():
            if status is WorkbookStatus.working:
                self._move_working_head(job_id, expected=None, new=version.id)
            self._put(VERSIONS, version)
        logger.info(
            "Created workbook version",
            extra={"job_id": job_id, "version_id": version.id, "version_number": version_number},
        )
        return version

    def get_version(self, version_id: str) -> WorkbookVersion | None:
        return self._get(VERSIONS, WorkbookVersion, version_id)

    def list_versions(self, job_id: str) -> list[WorkbookVersion]:
        versions = self._list(VERSIONS, WorkbookVersion, "job_id", job_id)
        return sorted(versions, key=lambda v: (v.version_number, v.created_at))

    def save_version(self, version: WorkbookVersion) -> WorkbookVersion:
        with self.transaction():
            existing = self._require(VERSIONS, version.id, "Workbook version")
            if existing.status is not version.status:
                if version.status is WorkbookStatus.working:
                    self._move_working_head(version.job_id, expected=None, new=version.id)
                else:
                    self._move_working_head(version.job_id, expected=version.id, new=None)
            self._put(VERSIONS, version)
        return version

    # Sheets

    def create_sheet(self, *, workbook_id: str, name: str, order_index: int, **fields: Any) -> MaterialSheet:
        now = self._clock()
        sheet = MaterialSheet(
            id=self._new_id(SHEETS),
            workbook_id=workbook_id,
            name=name,
            order_index=order_index,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._put(SHEETS, sheet)
        return sheet

    def get_sheet(self, sheet_id: str) -> MaterialSheet | None:
        return self._get(SHEETS, MaterialSheet, sheet_id)

    def list_sheets(self, workbook_id: str) -> list[MaterialSheet]:
        return sorted(self._list(SHEETS, MaterialSheet, "workbook_id", workbook_id), key=lambda s: s.order_index)

    def save_sheet(self, sheet: MaterialSheet) -> MaterialSheet:
        self._require(SHEETS, sheet.id, "Sheet")
        self._put(SHEETS, sheet)
        return sheet

    def delete_sheet(self, sheet_id: str) -> None:
        with self.transaction():
            for item in self._list(ITEMS, MaterialItem, "sheet_id", sheet_id):
                self.delete_item(item.id)
            for labor in self._list(LABOR, SheetLabor, "sheet_id", sheet_id):
                self._delete(LABOR, labor.id)
            for markup in self._list(MARKUPS, CategoryMarkup, "sheet_id", sheet_id):
                self._delete(MARKUPS, markup.id)
            self._delete(SHEETS, sheet_id)

    # Items

    def create_item(self, *, sheet_id: str, name: str, **fields: Any) -> MaterialItem:
        now = self._clock()
        item = MaterialItem(
            id=self._new_id(ITEMS),
            sheet_id=sheet_id,
            name=name,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._put(ITEMS, item)
        return item

    def get_item(self, item_id: str) -> MaterialItem | None:
        return self._get(ITEMS, MaterialItem, item_id)

    def list_items(self, sheet_id: str) -> list[MaterialItem]:
        items = self._list(ITEMS, MaterialItem, "sheet_id", sheet_id)
        return sorted(items, key=lambda i: (i.category, i.order_index))

    def save_item(self, item: MaterialItem) -> MaterialItem:
        self._require(ITEMS, item.id, "Item")
        self._put(ITEMS, item)
        return item

    def delete_item(self, item_id: str) -> None:
        with self.transaction():
            for bundle in self._list(BUNDLES, MaterialBundle, "item_ids", item_id, op="array_contains"):
                bundle.item_ids = [i for i in bundle.item_ids if i != item_id]
                self._put(BUNDLES, bundle)
            self._delete(ITEMS, item_id)

    # Per-sheet labor and category markups

    def get_labor(self, sheet_id: str) -> SheetLabor | None:
        rows = self._list(LABOR, SheetLabor, "sheet_id", sheet_id)
        return rows[0] if rows else None

    def create_labor(self, *, sheet_id: str, description: str, **fields: Any) -> SheetLabor:
        if self.get_labor(sheet_id) is not None:
            raise StateError(f"Sheet {sheet_id} already has a labor row")
        now = self._clock()
        labor = SheetLabor(
            id=self._new_id(LABOR),
            sheet_id=sheet_id,
            description=description,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._put(LABOR, labor)
        return labor

    def save_labor(self, labor: SheetLabor) -> SheetLabor:
        self._require(LABOR, labor.id, "Labor row")
        self._put(LABOR, labor)
        return labor

    def delete_labor(self, labor_id: str) -> None:
        self._delete(LABOR, labor_id)

    def list_category_markups(self, sheet_id: str) -> list[CategoryMarkup]:
        markups = self._list(MARKUPS, CategoryMarkup, "sheet_id", sheet_id)
        return sorted(markups, key=lambda m: m.category)

    def upsert_category_markup(self, *, sheet_id: str, category: str, markup: float) -> CategoryMarkup:
        now = self._clock()
        for existing in self.list_category_markups(sheet_id):
            if existing.category == category:
                record = existing.model_copy(update={"markup": markup, "updated_at": now})
                break
        else:
            record = CategoryMarkup(
                id=self._new_id(MARKUPS),
                sheet_id=sheet_id,
                category=category,
                markup=markup,
                created_at=now,
                updated_at=now,
            )
        self._put(MARKUPS, record)
        return record

    # Bundles

    def create_bundle(
        self, *, job_id: str, name: str, description: str | None = None, item_ids: Sequence[str] = ()
    ) -> MaterialBundle:
        now = self._clock()
        bundle = MaterialBundle(
            id=self._new_id(BUNDLES),
            job_id=job_id,
            name=name,
            description=description,
            item_ids=list(dict.fromkeys(item_ids)),
            created_at=now,
            updated_at=now,
        )
        self._put(BUNDLES, bundle)
        logger.info("Created bundle", extra={"job_id": job_id, "bundle_id": bundle.id})
        return bundle

    def get_bundle(self, bundle_id: str) -> MaterialBundle | None:
        return self._get(BUNDLES, MaterialBundle, bundle_id)

    def list_bundles(self, job_id: str) -> list[MaterialBundle]:
        return sorted(self._list(BUNDLES, MaterialBundle, "job_id", job_id), key=lambda b: b.created_at)

    def save_bundle(self, bundle: MaterialBundle) -> MaterialBundle:
        self._require(BUNDLES, bundle.id, "Bundle")
        self._put(BUNDLES, bundle)
        return bundle

    def delete_bundle(self, bundle_id: str) -> None:
        self._delete(BUNDLES, bundle_id)

    def add_bundle_items(self, bundle_id: str, item_ids: Iterable[str]) -> list[str]:
        bundle = self._require(BUNDLES, bundle_id, "Bundle")
        added = [i for i in dict.fromkeys(item_ids) if i not in bundle.item_ids]
        if added:
            bundle.item_ids = [*bundle.item_ids, *added]
            bundle.updated_at = self._clock()
            self._put(BUNDLES, bundle)
        return added

    def remove_bundle_items(self, bundle_id: str, item_ids: Iterable[str]) -> list[str]:
        bundle = self._require(BUNDLES, bundle_id, "Bundle")
        removed = [i for i in dict.fromkeys(item_ids) if i in bundle.item_ids]
        if removed:
            bundle.item_ids = [i for i in bundle.item_ids if i not in removed]
            bundle.updated_at = self._clock()
            self._put(BUNDLES, bundle)
        return removed

    # Document plumbing

    def _move_working_head(self, job_id: str, *, expected: str | None, new: str | None) -> None:
        """Point the job's head at ``new``; it must currently name ``expected``.

        Only valid inside ``transaction()``. The head document is written once,
        at commit, conditioned on the update time seen by the first read.
        """
        heads = self._local.heads
        if job_id in heads:
            current, update_time = heads[job_id]
        else:
            snapshot = self._db.collection(HEADS).document(job_id).get()
            data = snapshot.to_dict() if snapshot.exists else None
            current = data.get("working_version_id") if data else None
            update_time = snapshot.update_time if snapshot.exists else None

        if current != expected:
            if expected is None:
                raise StateError(f"Job {job_id} already has working version {current}")
            raise ConflictError(f"Working version of job {job_id} changed from {expected} to {current}")
        heads[job_id] = (new, update_time)

    def _queue_heads(self, batch: Any) -> None:
        for job_id, (version_id, update_time) in self._local.heads.items():
            doc_ref = self._db.collection(HEADS).document(job_id)
            data = {"working_version_id": version_id, "updated_at": self._clock()}
            if update_time is None:
                batch.create(doc_ref, data)
            else:
                batch.update(doc_ref, data, option=self._db.write_option(last_update_time=update_time))

    def _require(self, collection: str, doc_id: str, label: str) -> Any:
        model = _MODELS[collection]
        record = self._get(collection, model, doc_id)
        if record is None:
            raise NotFoundError(f"{label} {doc_id} not found")
        return record

    def _new_id(self, collection: str) -> str:
        return self._db.collection(collection).document().id

    def _pending(self) -> dict[tuple[str, str], dict[str, Any] | None] | None:
        if getattr(self._local, "batch", None) is None:
            return None
        return self._local.pending

    def _put(self, collection: str, record: BaseModel) -> None:
        doc_id = getattr(record, "id")
        data = _to_firestore_dict(record)
        doc_ref = self._db.collection(collection).document(doc_id)
        pending = self._pending()
        if pending is None:
            doc_ref.set(data)
        else:
            self._local.batch.set(doc_ref, data)
            pending[(collection, doc_id)] = data

    def _delete(self, collection: str, doc_id: str) -> None:
        doc_ref = self._db.collection(collection).document(doc_id)
        pending = self._pending()
        if pending is None:
            doc_ref.delete()
        else:
            self._local.batch.delete(doc_ref)
            pending[(collection, doc_id)] = None

    def _get(self, collection: str, model: Type[RecordT], doc_id: str) -> RecordT | None:
        pending = self._pending()
        if pending is not None and (collection, doc_id) in pending:
            data = pending[(collection, doc_id)]
            return None if data is None else _from_firestore_dict(model, doc_id, data)

        doc = self._db.collection(collection).document(doc_id).get()
        if not doc.exists:
            return None
        return _from_firestore_dict(model, doc.id, doc.to_dict())

    def _list(
        self,
        collection: str,
        model: Type[RecordT],
        field: str,
        value: Any,
        *,
        op: str = "==",
    ) -> list[RecordT]:
        query = self._db.collection(collection).where(filter=FieldFilter(field, op, value))
        found = {doc.id: doc.to_dict() for doc in query.stream()}

        for (pending_collection, doc_id), data in (self._pending() or {}).items():
            if pending_collection != collection:
                continue
            if data is not None and _matches(data.get(field), op, value):
                found[doc_id] = data
            else:
                found.pop(doc_id, None)

        return [_from_firestore_dict(model, doc_id, data) for doc_id, data in found.items()]


_MODELS: dict[str, Type[BaseModel]] = {
    VERSIONS: WorkbookVersion,
    SHEETS: MaterialSheet,
    ITEMS: MaterialItem,
    LABOR: SheetLabor,
    MARKUPS: CategoryMarkup,
    BUNDLES: MaterialBundle,
}


def _matches(stored: Any, op: str, value: Any) -> bool:
    if op == "array_contains":
        return isinstance(stored, list) and value in stored
    return stored == value


def _to_firestore_dict(record: BaseModel) -> dict[str, Any]:
    data = record.model_dump(exclude={"id"})
    return {key: value.value if isinstance(value, Enum) else value for key, value in data.items()}


def _from_firestore_dict(model: Type[RecordT], doc_id: str, data: dict[str, Any]) -> RecordT:
    return model.model_validate({**data, "id": doc_id})


__all__ = ["FirestoreWorkbookStore"]
