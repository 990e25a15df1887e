import pytest

from material_workbook.errors import ConflictError, NotFoundError, ValidationError


def test_sheets_are_appended_in_order(engine):
    version = engine.start_workbook("JOB-1")
    names = ["Lumber", "Concrete", "Roofing"]
    for name in names:
        engine.add_sheet(version.id, name)
    sheets = engine.list_sheets(version.id)
    assert [s.name for s in sheets] == names
    assert [s.order_index for s in sheets] == [0, 1, 2]


def test_sheet_names_are_required_and_unique(engine, lumber_sheet):
    with pytest.raises(ValidationError):
        engine.add_sheet(lumber_sheet.workbook_id, "  ")
    with pytest.raises(ConflictError):
        engine.add_sheet(lumber_sheet.workbook_id, "Lumber")
    other = engine.add_sheet(lumber_sheet.workbook_id, "Trim")
    with pytest.raises(ConflictError):
        engine.rename_sheet(other.id, "Lumber")
    assert engine.rename_sheet(other.id, " Trim & Siding ").name == "Trim & Siding"


def test_delete_sheet_removes_its_items_and_labor(engine, lumber_sheet):
    item = engine.add_item(lumber_sheet.id, "2x4")
    engine.set_sheet_labor(lumber_sheet.id, description="Framing", estimated_hours=8, hourly_rate=50)

    engine.delete_sheet(lumber_sheet.id)

    assert engine.list_sheets(lumber_sheet.workbook_id) == []
    assert engine.store.get_item(item.id) is None
    assert engine.store.get_labor(lumber_sheet.id) is None
    with pytest.raises(NotFoundError):
        engine.list_sheet_items(lumber_sheet.id)


def test_sheet_labor_upsert_and_delete(engine, lumber_sheet):
    labor = engine.set_sheet_labor(lumber_sheet.id, description="Framing", estimated_hours="8", hourly_rate="52.5")
    assert labor.total_labor_cost == pytest.approx(420.0)

    updated = engine.set_sheet_labor(lumber_sheet.id, description="Framing + sheathing", estimated_hours=12, hourly_rate=50)
    assert updated.id == labor.id
    assert updated.total_labor_cost == 600.0

    with pytest.raises(ValidationError):
        engine.set_sheet_labor(lumber_sheet.id, description="", estimated_hours=1, hourly_rate=1)
    with pytest.raises(ValidationError):
        engine.set_sheet_labor(lumber_sheet.id, description="Framing", estimated_hours="many", hourly_rate=1)

    engine.delete_sheet_labor(lumber_sheet.id)
    assert engine.get_sheet_labor(lumber_sheet.id) is None
    with pytest.raises(NotFoundError):
        engine.delete_sheet_labor(lumber_sheet.id)
