import pytest

from material_workbook.errors import NotFoundError, ValidationError
from material_workbook.models.item import ItemStatus


@pytest.fixture
def items(engine, lumber_sheet):
    version = engine.get_working_version("JOB-1")
    hardware = engine.add_sheet(version.id, "Hardware")
    return [
        engine.add_item(lumber_sheet.id, "2x4", quantity=10, unit_cost=5),
        engine.add_item(lumber_sheet.id, "2x6", quantity=4, unit_cost=8),
        engine.add_item(hardware.id, "Hinges", quantity=12, unit_cost=3),
    ]


def test_bundle_status_fans_out_to_items(engine, items):
    bundle = engine.create_bundle("JOB-1", "Delivery 1", [i.id for i in items])
    assert bundle.status is ItemStatus.not_ordered
    assert bundle.item_count == 3

    change = engine.set_bundle_status(bundle.id, "ordered")

    assert change.bundle.status is ItemStatus.ordered
    assert engine.get_bundle(bundle.id).status is ItemStatus.ordered
    assert sorted(change.updated_item_ids) == sorted(i.id for i in items)
    assert all(engine.get_item(i.id).status is ItemStatus.ordered for i in items)


def test_bundle_status_rejects_unknown_values(engine, items):
    bundle = engine.create_bundle("JOB-1", "Delivery 1", [items[0].id])
    with pytest.raises(ValidationError):
        engine.set_bundle_status(bundle.id, "shipped")
    assert engine.get_item(items[0].id).status is ItemStatus.not_ordered


@pytest.mark.parametrize("name, item_ids", [("   ", ["x"]), ("Delivery", [])])
def test_create_bundle_validation(engine, items, name, item_ids):
    with pytest.raises(ValidationError):
        engine.create_bundle("JOB-1", name, item_ids)


def test_create_bundle_rejects_items_outside_the_working_version(engine, items):
    other = engine.start_workbook("JOB-2")
    sheet = engine.add_sheet(other.id, "Lumber")
    foreign = engine.add_item(sheet.id, "Plywood")
    with pytest.raises(ValidationError):
        engine.create_bundle("JOB-1", "Mixed", [items[0].id, foreign.id])
    with pytest.raises(ValidationError):
        engine.create_bundle("JOB-1", "Ghost", ["item_missing"])


def test_add_and_remove_are_idempotent(engine, items):
    first, second, third = items
    bundle = engine.create_bundle("JOB-1", "Delivery 1", [first.id])

    change = engine.add_items_to_bundle(bundle.id, [first.id, second.id, second.id])
    assert list(change.changed) == [second.id]
    assert list(change.unchanged) == [first.id]
    assert change.bundle.item_ids == [first.id, second.id]

    change = engine.remove_items_from_bundle(bundle.id, [second.id, third.id])
    assert list(change.changed) == [second.id]
    assert list(change.unchanged) == [third.id]
    assert change.bundle.item_ids == [first.id]


def test_item_can_belong_to_several_bundles(engine, items):
    shared = items[0]
    a = engine.create_bundle("JOB-1", "Truck A", [shared.id])
    b = engine.create_bundle("JOB-1", "Truck B", [shared.id, items[1].id])

    engine.set_bundle_status(a.id, "ready_for_job")
    assert engine.get_item(shared.id).status is ItemStatus.ready_for_job
    engine.set_bundle_status(b.id, "at_job")
    assert engine.get_item(shared.id).status is ItemStatus.at_job
    assert engine.get_bundle(a.id).status is ItemStatus.ready_for_job


def test_deleting_an_item_shrinks_membership(engine, items):
    bundle = engine.create_bundle("JOB-1", "Delivery 1", [i.id for i in items])
    engine.delete_item(items[1].id)
    assert engine.get_bundle(bundle.id).item_count == 2
    assert [i.id for i in engine.list_bundle_items(bundle.id)] == [items[0].id, items[2].id]


def test_deleting_a_sheet_shrinks_membership(engine, items, lumber_sheet):
    bundle = engine.create_bundle("JOB-1", "Delivery 1", [i.id for i in items])
    engine.delete_sheet(lumber_sheet.id)
    assert engine.get_bundle(bundle.id).item_ids == [items[2].id]


def test_bundles_follow_the_fork(engine, items):
    bundle = engine.create_bundle("JOB-1", "Delivery 1", [items[0].id, items[2].id])

    result = engine.lock_and_fork("JOB-1")
    repointed = engine.get_bundle(bundle.id)
    assert repointed.item_ids == [result.item_ids[items[0].id], result.item_ids[items[2].id]]

    engine.set_bundle_status(bundle.id, "received")
    assert engine.get_item(items[0].id).status is ItemStatus.not_ordered
    assert engine.get_item(result.item_ids[items[0].id]).status is ItemStatus.received


def test_update_and_delete_bundle(engine, items):
    bundle = engine.create_bundle("JOB-1", "Delivery 1", [items[0].id], description="  ")
    assert bundle.description is None

    renamed = engine.update_bundle(bundle.id, name="Delivery 1A", description="Back door")
    assert (renamed.name, renamed.description) == ("Delivery 1A", "Back door")
    assert [b.id for b in engine.list_bundles("JOB-1")] == [bundle.id]

    engine.delete_bundle(bundle.id)
    assert engine.list_bundles("JOB-1") == []
    assert engine.get_item(items[0].id) is not None
    with pytest.raises(NotFoundError):
        engine.get_bundle(bundle.id)
