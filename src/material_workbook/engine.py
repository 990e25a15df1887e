from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from .bundles import BundleManager
from .comparison import ComparisonEngine
from .errors import NotFoundError
from .firestore_workbook_store import FirestoreWorkbookStore
from .fork import ForkEngine
from .ledger import ItemLedger
from .material_repository import MaterialRepository
from .models.bundle import BundleMembershipChange, BundleStatusChange, MaterialBundle
from .models.comparison import JobComparison
from .models.item import MaterialItem, utc_now
from .models.sheet import MaterialSheet, SheetLabor
from .models.workbook import ForkResult, WorkbookVersion
from .pubsub_client import MaterialEventPublisher
from .settings import Settings
from .sheets import SheetDirectory
from .versions import VersionLocks, VersionManager
from .workbook_store import WorkbookStore

logger = logging.getLogger(__name__)


class MaterialWorkbookEngine:
    """Entry point the surrounding application talks to.

    Item and sheet writes and ``lock_and_fork`` all take the owning
    version's exclusive lock, so a fork never observes a half-applied edit.
    Concurrent edits to the same item resolve last-write-wins.
    """

    def __init__(
        self,
        store: MaterialRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
        publisher: MaterialEventPublisher | None = None,
    ) -> None:
        self.store = store
        self._publisher = publisher
        self._locks = VersionLocks()
        self.ledger = ItemLedger(store, clock=clock)
        self.sheets = SheetDirectory(store, clock=clock)
        self.bundles = BundleManager(store, clock=clock)
        self.comparison = ComparisonEngine(store)
        self.versions = VersionManager(
            store,
            fork=ForkEngine(store),
            bundles=self.bundles,
            locks=self._locks,
            clock=clock,
        )

    # Workbook versions

    def start_workbook(self, job_id: str) -> WorkbookVersion:
        return self.versions.start_workbook(job_id)

    def get_working_version(self, job_id: str) -> WorkbookVersion | None:
        return self.versions.get_working_version(job_id)

    def get_proposal_version(self, job_id: str) -> WorkbookVersion | None:
        return self.versions.get_proposal_version(job_id)

    def list_versions(self, job_id: str) -> Sequence[WorkbookVersion]:
        return self.versions.list_versions(job_id)

    def lock_and_fork(self, job_id: str) -> ForkResult:
        result = self.versions.lock_and_fork(job_id)
        if self._publisher is not None:
            self._publish(self._publisher.publish_workbook_locked, job_id=job_id, result=result)
        return result

    # Sheets

    def list_sheets(self, version_id: str) -> Sequence[MaterialSheet]:
        return self.sheets.list_sheets(version_id)

    def list_sheet_items(self, sheet_id: str) -> Sequence[MaterialItem]:
        return self.sheets.list_sheet_items(sheet_id)

    def add_sheet(self, version_id: str, name: str, **fields: Any) -> MaterialSheet:
        with self._locks.hold(version_id):
            return self.sheets.add_sheet(version_id, name, **fields)

    def rename_sheet(self, sheet_id: str, name: str) -> MaterialSheet:
        with self._locks.hold(self._version_of_sheet(sheet_id)):
            return self.sheets.rename_sheet(sheet_id, name)

    def delete_sheet(self, sheet_id: str) -> None:
        with self._locks.hold(self._version_of_sheet(sheet_id)):
            self.sheets.delete_sheet(sheet_id)

    def get_sheet_labor(self, sheet_id: str) -> SheetLabor | None:
        return self.sheets.get_sheet_labor(sheet_id)

    def set_sheet_labor(self, sheet_id: str, **fields: Any) -> SheetLabor:
        with self._locks.hold(self._version_of_sheet(sheet_id)):
            return self.sheets.set_sheet_labor(sheet_id, **fields)

    def delete_sheet_labor(self, sheet_id: str) -> None:
        with self._locks.hold(self._version_of_sheet(sheet_id)):
            self.sheets.delete_sheet_labor(sheet_id)

    # Items

    def get_item(self, item_id: str) -> MaterialItem:
        return self.ledger.get_item(item_id)

    def add_item(self, sheet_id: str, name: str, **fields: Any) -> MaterialItem:
        with self._locks.hold(self._version_of_sheet(sheet_id)):
            return self.ledger.add_item(sheet_id, name, **fields)

    def edit_item_field(self, item_id: str, field: str, value: Any) -> MaterialItem:
        with self._locks.hold(self._version_of_item(item_id)):
            return self.ledger.edit_item_field(item_id, field, value)

    def delete_item(self, item_id: str) -> None:
        with self._locks.hold(self._version_of_item(item_id)):
            self.ledger.delete_item(item_id)

    def apply_category_markup(self, sheet_id: str, category: str, percent: Any) -> list[MaterialItem]:
        with self._locks.hold(self._version_of_sheet(sheet_id)):
            return self.ledger.apply_category_markup(sheet_id, category, percent)

    # Comparison

    def compare_job_materials(self, job_id: str) -> JobComparison:
        return self.comparison.compare_job_materials(job_id)

    # Bundles

    def get_bundle(self, bundle_id: str) -> MaterialBundle:
        return self.bundles.get_bundle(bundle_id)

    def list_bundles(self, job_id: str) -> Sequence[MaterialBundle]:
        return self.bundles.list_bundles(job_id)

    def list_bundle_items(self, bundle_id: str) -> list[MaterialItem]:
        return self.bundles.list_bundle_items(bundle_id)

    def create_bundle(
        self, job_id: str, name: str, item_ids: Iterable[str], *, description: str | None = None
    ) -> MaterialBundle:
        return self.bundles.create_bundle(job_id, name, item_ids, description=description)

    def update_bundle(self, bundle_id: str, **fields: Any) -> MaterialBundle:
        return self.bundles.update_bundle(bundle_id, **fields)

    def delete_bundle(self, bundle_id: str) -> None:
        self.bundles.delete_bundle(bundle_id)

    def set_bundle_status(self, bundle_id: str, status: Any) -> BundleStatusChange:
        change = self.bundles.set_bundle_status(bundle_id, status)
        if self._publisher is not None:
            self._publish(self._publisher.publish_bundle_status_changed, change=change)
        return change

    def add_items_to_bundle(self, bundle_id: str, item_ids: Iterable[str]) -> BundleMembershipChange:
        return self.bundles.add_items_to_bundle(bundle_id, item_ids)

    def remove_items_from_bundle(self, bundle_id: str, item_ids: Iterable[str]) -> BundleMembershipChange:
        return self.bundles.remove_items_from_bundle(bundle_id, item_ids)

    def _version_of_sheet(self, sheet_id: str) -> str:
        return self.sheets.get_sheet(sheet_id).workbook_id

    def _version_of_item(self, item_id: str) -> str:
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return self._version_of_sheet(item.sheet_id)

    def _publish(self, publish: Callable[..., str], **kwargs: Any) -> None:
        # Already committed; publishing is best-effort.
        try:
            publish(**kwargs)
        except Exception as exc:
            logger.warning(
                "Publishing material event failed (non-fatal)",
                exc_info=True,
                extra={"error": str(exc)},
            )


def build_engine(settings: Settings) -> MaterialWorkbookEngine:
    store: MaterialRepository
    if settings.store == "firestore":
        store = FirestoreWorkbookStore(project_id=settings.project_id)
    else:
        store = WorkbookStore()

    publisher = None
    if settings.publish_events and settings.project_id:
        publisher = MaterialEventPublisher(settings.project_id, topic_id=settings.events_topic)

    logger.info(
        "Built material workbook engine",
        extra={"store": settings.store, "environment": settings.environment, "events": publisher is not None},
    )
    return MaterialWorkbookEngine(store, publisher=publisher)


__all__ = ["MaterialWorkbookEngine", "build_engine"]
