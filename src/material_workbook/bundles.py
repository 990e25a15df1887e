from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Sequence

from .errors import NotFoundError, ValidationError
from .material_repository import MaterialRepository
from .models.bundle import BundleMembershipChange, BundleStatusChange, MaterialBundle
from .models.item import ItemStatus, MaterialItem, utc_now
from .models.workbook import WorkbookStatus

logger = logging.getLogger(__name__)


def parse_status(value: Any) -> ItemStatus:
    try:
        return ItemStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown status {value!r}", field="status") from exc


class BundleManager:
    """Named packages of items spanning the sheets of a job's working version."""

    def __init__(self, store: MaterialRepository, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def get_bundle(self, bundle_id: str) -> MaterialBundle:
        bundle = self._store.get_bundle(bundle_id)
        if bundle is None:
            raise NotFoundError(f"Bundle {bundle_id} not found")
        return bundle

    def list_bundles(self, job_id: str) -> Sequence[MaterialBundle]:
        return self._store.list_bundles(job_id)

    def list_bundle_items(self, bundle_id: str) -> list[MaterialItem]:
        bundle = self.get_bundle(bundle_id)
        items = (self._store.get_item(item_id) for item_id in bundle.item_ids)
        return [item for item in items if item is not None]

    def create_bundle(
        self,
        job_id: str,
        name: str,
        item_ids: Iterable[str],
        *,
        description: str | None = None,
    ) -> MaterialBundle:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Bundle name cannot be blank", field="name")
        ids = _dedupe(item_ids)
        if not ids:
            raise ValidationError("A bundle needs at least one item", field="item_ids")
        self._check_items(job_id, ids)

        bundle = self._store.create_bundle(
            job_id=job_id,
            name=name,
            description=(description or "").strip() or None,
            item_ids=ids,
        )

        logger.info(
            "Created bundle",
            extra={"job_id": job_id, "bundle_id": bundle.id, "items_count": bundle.item_count},
        )
        return bundle

    def update_bundle(self, bundle_id: str, *, name: str | None = None, description: str | None = None) -> MaterialBundle:
        bundle = self.get_bundle(bundle_id)
        update: dict[str, Any] = {"updated_at": self._clock()}
        if name is not None:
            if not name.strip():
                raise ValidationError("Bundle name cannot be blank", field="name")
            update["name"] = name.strip()
        if description is not None:
            update["description"] = description.strip() or None
        return self._store.save_bundle(bundle.model_copy(update=update))

    def delete_bundle(self, bundle_id: str) -> None:
        self.get_bundle(bundle_id)
        self._store.delete_bundle(bundle_id)
        logger.info("Deleted bundle", extra={"bundle_id": bundle_id})

    def set_bundle_status(self, bundle_id: str, status: Any) -> BundleStatusChange:
        """Set the bundle's status and copy it onto every member item."""
        new_status = parse_status(status)
        now = self._clock()
        updated: list[str] = []

        with self._store.transaction():
            bundle = self.get_bundle(bundle_id)
            bundle = self._store.save_bundle(bundle.model_copy(update={"status": new_status, "updated_at": now}))
            for item in self.list_bundle_items(bundle_id):
                self._store.save_item(item.model_copy(update={"status": new_status, "updated_at": now}))
                updated.append(item.id)

        logger.info(
            "Updated bundle status",
            extra={"bundle_id": bundle_id, "status": new_status.value, "items_count": len(updated)},
        )
        return BundleStatusChange(bundle=bundle, updated_item_ids=updated)

    def add_items_to_bundle(self, bundle_id: str, item_ids: Iterable[str]) -> BundleMembershipChange:
        bundle = self.get_bundle(bundle_id)
        ids = _dedupe(item_ids)
        self._check_items(bundle.job_id, ids)
        added = self._store.add_bundle_items(bundle_id, ids)
        unchanged = [item_id for item_id in ids if item_id not in added]
        if unchanged:
            logger.info(
                "Items already in bundle",
                extra={"bundle_id": bundle_id, "item_ids": unchanged},
            )
        return BundleMembershipChange(bundle=self.get_bundle(bundle_id), changed=added, unchanged=unchanged)

    def remove_items_from_bundle(self, bundle_id: str, item_ids: Iterable[str]) -> BundleMembershipChange:
        self.get_bundle(bundle_id)
        ids = _dedupe(item_ids)
        removed = self._store.remove_bundle_items(bundle_id, ids)
        unchanged = [item_id for item_id in ids if item_id not in removed]
        return BundleMembershipChange(bundle=self.get_bundle(bundle_id), changed=removed, unchanged=unchanged)

    def repoint_items(self, job_id: str, item_ids: Mapping[str, str]) -> None:
        """Swap member ids for their forked copies. Runs inside lock-and-fork."""
        now = self._clock()
        for bundle in self._store.list_bundles(job_id):
            members = [item_ids.get(item_id, item_id) for item_id in bundle.item_ids]
            if members != bundle.item_ids:
                self._store.save_bundle(bundle.model_copy(update={"item_ids": members, "updated_at": now}))

    def _check_items(self, job_id: str, item_ids: Sequence[str]) -> None:
        for item_id in item_ids:
            item = self._store.get_item(item_id)
            sheet = self._store.get_sheet(item.sheet_id) if item else None
            version = self._store.get_version(sheet.workbook_id) if sheet else None
            if version is None or version.job_id != job_id or version.status is not WorkbookStatus.working:
                raise ValidationError(
                    f"Item {item_id} is not part of the working materials of job {job_id}",
                    field="item_ids",
                )


def _dedupe(item_ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(item_ids))


__all__ = ["BundleManager", "parse_status"]
