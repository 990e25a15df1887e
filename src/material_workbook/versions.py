from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, Sequence

from .bundles import BundleManager
from .errors import ConflictError, NotFoundError, StateError, StorageError, WorkbookError
from .fork import ForkEngine
from .material_repository import MaterialRepository
from .models.item import utc_now
from .models.workbook import ForkResult, WorkbookStatus, WorkbookVersion

logger = logging.getLogger(__name__)


class _HeldLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class VersionLocks:
    """Per-version exclusive locks shared by every writer in one process.

    An entry lives only while some thread holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, _HeldLock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, version_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(version_id)
            if entry is None:
                entry = self._locks[version_id] = _HeldLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[version_id]


def require_working_version(store: MaterialRepository, version_id: str) -> WorkbookVersion:
    version = store.get_version(version_id)
    if version is None:
        raise NotFoundError(f"Workbook version {version_id} not found")
    if version.is_locked:
        raise ConflictError(f"Workbook version {version.version_number} is locked and cannot be edited")
    return version


class VersionManager:
    def __init__(
        self,
        store: MaterialRepository,
        *,
        fork: ForkEngine | None = None,
        bundles: BundleManager | None = None,
        locks: VersionLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._fork = fork or ForkEngine(store)
        self._bundles = bundles
        self._locks = locks if locks is not None else VersionLocks()
        self._clock = clock

    def list_versions(self, job_id: str) -> Sequence[WorkbookVersion]:
        return self._store.list_versions(job_id)

    def get_working_version(self, job_id: str) -> WorkbookVersion | None:
        working = [v for v in self._store.list_versions(job_id) if v.status is WorkbookStatus.working]
        if len(working) > 1:
            raise self._state_error(
                f"Job {job_id} has {len(working)} working versions",
                job_id=job_id,
            )
        return working[0] if working else None

    def get_proposal_version(self, job_id: str) -> WorkbookVersion | None:
        """The first locked version, by creation order."""
        for version in self._store.list_versions(job_id):
            if version.is_locked:
                return version
        return None

    def start_workbook(self, job_id: str) -> WorkbookVersion:
        if self._store.list_versions(job_id):
            raise ConflictError(f"Job {job_id} already has a material workbook")
        version = self._store.create_version(job_id=job_id, version_number=1, status=WorkbookStatus.working)
        logger.info("Started material workbook", extra={"job_id": job_id, "version_id": version.id})
        return version

    def lock_and_fork(self, job_id: str) -> ForkResult:
        """Freeze the working version and continue in a deep copy of it.

        Runs as one transaction under the version's exclusive lock. A storage
        failure rolls everything back and surfaces as a retryable
        ``StorageError``.
        """
        working = self.get_working_version(job_id)
        if working is None:
            raise ConflictError(f"Job {job_id} has no working version to lock")

        with self._locks.hold(working.id):
            try:
                with self._store.transaction():
                    result = self._lock_and_fork(job_id, working.id)
            except WorkbookError:
                raise
            except Exception as exc:
                logger.error(
                    "Lock-and-fork failed, changes rolled back",
                    exc_info=True,
                    extra={"job_id": job_id, "version_id": working.id, "error": str(exc)},
                )
                raise StorageError(f"Could not lock version {working.version_number} of job {job_id}") from exc

        logger.info(
            "Locked workbook version and forked a new working version",
            extra={
                "job_id": job_id,
                "locked_version": result.locked.version_number,
                "working_version": result.working.version_number,
                "items_count": len(result.item_ids),
            },
        )
        return result

    def _lock_and_fork(self, job_id: str, version_id: str) -> ForkResult:
        current = self._store.get_version(version_id)
        if current is None or current.is_locked:
            raise ConflictError(f"Workbook version {version_id} is no longer the working version")

        now = self._clock()
        locked = self._store.save_version(
            current.model_copy(update={"status": WorkbookStatus.locked, "locked_at": now, "updated_at": now})
        )

        leftover = self.get_working_version(job_id)
        if leftover is not None:
            raise self._state_error(
                f"Job {job_id} still has working version {leftover.id} after locking {version_id}",
                job_id=job_id,
            )

        fork = self._store.create_version(
            job_id=job_id,
            version_number=locked.version_number + 1,
            status=WorkbookStatus.working,
        )
        sheet_ids, item_ids = self._fork.copy_version(locked, fork)

        if self._bundles is not None:
            self._bundles.repoint_items(job_id, item_ids)

        return ForkResult(locked=locked, working=fork, sheet_ids=sheet_ids, item_ids=item_ids)

    def _state_error(self, message: str, **extra: str) -> StateError:
        logger.error(message, extra=extra)
        return StateError(message)


__all__ = ["VersionManager", "VersionLocks", "require_working_version"]
