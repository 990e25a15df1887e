import itertools
import uuid

import pytest
from google.api_core import exceptions

from material_workbook.engine import MaterialWorkbookEngine
from material_workbook.errors import ConflictError, StateError
from material_workbook.firestore_workbook_store import HEADS, FirestoreWorkbookStore
from material_workbook.models.workbook import WorkbookStatus


class FakeSnapshot:
    def __init__(self, doc_id, data, update_time) -> None:
        self.id = doc_id
        self._data = data
        self.update_time = update_time

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self):
        return None if self._data is None else dict(self._data)


class FakeDocument:
    def __init__(self, client, collection: str, doc_id: str) -> None:
        self._client = client
        self.key = (collection, doc_id)
        self.id = doc_id

    def get(self) -> FakeSnapshot:
        data, update_time = self._client.docs.get(self.key, (None, None))
        return FakeSnapshot(self.id, data, update_time)

    def set(self, data) -> None:
        self._client.apply([("set", self, data, None)])

    def delete(self) -> None:
        self._client.apply([("delete", self, None, None)])


class FakeQuery:
    def __init__(self, client, collection: str, field_filter) -> None:
        self._client = client
        self._collection = collection
        self._filter = field_filter

    def stream(self):
        for (collection, doc_id), (data, update_time) in list(self._client.docs.items()):
            if collection != self._collection:
                continue
            stored = data.get(self._filter.field_path)
            if self._filter.op_string == "array_contains":
                matched = isinstance(stored, list) and self._filter.value in stored
            else:
                matched = stored == self._filter.value
            if matched:
                yield FakeSnapshot(doc_id, data, update_time)


class FakeCollection:
    def __init__(self, client, name: str) -> None:
        self._client = client
        self._name = name

    def document(self, doc_id=None) -> FakeDocument:
        return FakeDocument(self._client, self._name, doc_id or uuid.uuid4().hex[:20])

    def where(self, *, filter) -> FakeQuery:
        return FakeQuery(self._client, self._name, filter)


class FakeBatch:
    def __init__(self, client) -> None:
        self._client = client
        self._writes = []

    def set(self, ref, data) -> None:
        self._writes.append(("set", ref, data, None))

    def create(self, ref, data) -> None:
        self._writes.append(("create", ref, data, None))

    def update(self, ref, data, option=None) -> None:
        self._writes.append(("update", ref, data, option))

    def delete(self, ref) -> None:
        self._writes.append(("delete", ref, None, None))

    def commit(self) -> None:
        self._client.apply(self._writes)


class FakeFirestoreClient:
    """Just enough of the Firestore client for the store: atomic batches with preconditions."""

    def __init__(self) -> None:
        self.docs = {}
        self._versions = itertools.count(1)

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def batch(self) -> FakeBatch:
        return FakeBatch(self)

    def write_option(self, *, last_update_time):
        return last_update_time

    def apply(self, writes) -> None:
        staged = dict(self.docs)
        for kind, ref, data, option in writes:
            existing = staged.get(ref.key)
            if kind == "delete":
                staged.pop(ref.key, None)
                continue
            if kind == "create" and existing is not None:
                raise exceptions.AlreadyExists(f"{ref.key} already exists")
            if kind == "update":
                if existing is None:
                    raise exceptions.NotFound(f"{ref.key} not found")
                if option is not None and existing[1] != option:
                    raise exceptions.FailedPrecondition(f"{ref.key} was modified")
                data = {**existing[0], **data}
            staged[ref.key] = (dict(data), next(self._versions))
        self.docs = staged


@pytest.fixture
def db() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture
def firestore_store(db, clock) -> FirestoreWorkbookStore:
    return FirestoreWorkbookStore(client=db, clock=clock)


def working_head(db, job_id):
    data, _ = db.docs[(HEADS, job_id)]
    return data["working_version_id"]


def test_lock_and_fork_on_firestore(db, firestore_store, clock):
    engine = MaterialWorkbookEngine(firestore_store, clock=clock)
    version = engine.start_workbook("JOB-1")
    sheet = engine.add_sheet(version.id, "Lumber")
    item = engine.add_item(sheet.id, "2x4", quantity=10, unit_cost=5, unit_price=7)
    bundle = engine.create_bundle("JOB-1", "Framing package", [item.id])

    result = engine.lock_and_fork("JOB-1")

    assert [(v.version_number, v.status) for v in engine.list_versions("JOB-1")] == [
        (1, WorkbookStatus.locked),
        (2, WorkbookStatus.working),
    ]
    assert working_head(db, "JOB-1") == result.working.id
    copied = engine.get_item(result.item_ids[item.id])
    assert (copied.quantity, copied.unit_cost, copied.unit_price) == (10, 5, 7)
    assert engine.get_bundle(bundle.id).item_ids == [copied.id]


def test_second_working_version_is_refused(db, firestore_store):
    first = firestore_store.create_version(job_id="JOB-1", version_number=1, status=WorkbookStatus.working)
    with pytest.raises(StateError):
        firestore_store.create_version(job_id="JOB-1", version_number=2, status=WorkbookStatus.working)
    assert [v.id for v in firestore_store.list_versions("JOB-1")] == [first.id]
    assert working_head(db, "JOB-1") == first.id


def test_racing_forks_commit_only_one_working_version(db, clock):
    first = FirestoreWorkbookStore(client=db, clock=clock)
    second = FirestoreWorkbookStore(client=db, clock=clock)
    v1 = first.create_version(job_id="JOB-1", version_number=1, status=WorkbookStatus.working)
    locked = v1.model_copy(update={"status": WorkbookStatus.locked})

    # Both instances read v1 as working before either commits.
    with pytest.raises(ConflictError):
        with first.transaction():
            first.save_version(locked)
            first.create_version(job_id="JOB-1", version_number=2, status=WorkbookStatus.working)
            with second.transaction():
                second.save_version(locked)
                winner = second.create_version(job_id="JOB-1", version_number=2, status=WorkbookStatus.working)

    versions = first.list_versions("JOB-1")
    assert [(v.version_number, v.status) for v in versions] == [
        (1, WorkbookStatus.locked),
        (2, WorkbookStatus.working),
    ]
    assert versions[1].id == winner.id
    assert working_head(db, "JOB-1") == winner.id


def test_locking_a_version_the_head_no_longer_names_is_a_conflict(db, firestore_store):
    v1 = firestore_store.create_version(job_id="JOB-1", version_number=1, status=WorkbookStatus.working)
    db.docs[(HEADS, "JOB-1")] = ({"working_version_id": "wb_elsewhere"}, 99)

    with pytest.raises(ConflictError):
        firestore_store.save_version(v1.model_copy(update={"status": WorkbookStatus.locked}))
    assert firestore_store.get_version(v1.id).status is WorkbookStatus.working
