import json

from material_workbook.engine import MaterialWorkbookEngine
from material_workbook.pubsub_client import MaterialEventPublisher


class FakeFuture:
    def __init__(self, message_id: str) -> None:
        self._message_id = message_id

    def result(self) -> str:
        return self._message_id


class FakePublisherClient:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages = []

    def topic_path(self, project_id: str, topic_id: str) -> str:
        return f"projects/{project_id}/topics/{topic_id}"

    def publish(self, topic_path: str, data: bytes, **attributes):
        if self.fail:
            raise RuntimeError("pubsub unavailable")
        self.messages.append((topic_path, json.loads(data), attributes))
        return FakeFuture(str(len(self.messages)))


def build(store, clock, fail=False):
    client = FakePublisherClient(fail=fail)
    publisher = MaterialEventPublisher("field-ops", publisher=client)
    return MaterialWorkbookEngine(store, clock=clock, publisher=publisher), client


def test_lock_and_bundle_events_are_published(store, clock):
    engine, client = build(store, clock)
    version = engine.start_workbook("JOB-1")
    sheet = engine.add_sheet(version.id, "Lumber")
    item = engine.add_item(sheet.id, "2x4")

    result = engine.lock_and_fork("JOB-1")
    bundle = engine.create_bundle("JOB-1", "Delivery", [result.item_ids[item.id]])
    engine.set_bundle_status(bundle.id, "ordered")

    (topic, locked, locked_attrs), (_, status, status_attrs) = client.messages
    assert topic == "projects/field-ops/topics/material-events"
    assert locked_attrs == {"job_id": "JOB-1", "event_type": "workbook_locked"}
    assert (locked["locked_version_number"], locked["working_version_number"]) == (1, 2)
    assert status_attrs["event_type"] == "bundle_status_changed"
    assert status["status"] == "ordered"
    assert status["item_ids"] == [result.item_ids[item.id]]


def test_publish_failure_does_not_undo_the_write(store, clock):
    engine, _ = build(store, clock, fail=True)
    version = engine.start_workbook("JOB-1")

    result = engine.lock_and_fork("JOB-1")

    assert result.locked.id == version.id
    assert engine.get_working_version("JOB-1").version_number == 2
