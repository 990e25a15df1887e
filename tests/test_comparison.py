import pytest


def test_no_baseline_reports_undefined_variance(engine, lumber_sheet):
    engine.add_item(lumber_sheet.id, "2x4", quantity=10, unit_cost=5)

    comparison = engine.compare_job_materials("JOB-1")

    assert comparison.has_baseline is False
    assert comparison.working_version_number == 1
    assert comparison.sheets == []
    assert comparison.cost_variance is None
    assert comparison.cost_variance_percent is None
    assert comparison.proposal_total_cost is None


def test_end_to_end_quantity_change(engine, lumber_sheet):
    engine.add_item(lumber_sheet.id, "A", quantity=10, unit_cost=5, unit_price=7)

    result = engine.lock_and_fork("JOB-1")
    (copied_sheet,) = engine.list_sheets(result.working.id)
    (copied,) = engine.list_sheet_items(copied_sheet.id)
    assert copied_sheet.name == "Lumber"
    assert (copied.quantity, copied.unit_cost, copied.unit_price) == (10, 5, 7)

    engine.edit_item_field(copied.id, "quantity", "12")
    comparison = engine.compare_job_materials("JOB-1")

    assert comparison.has_baseline
    assert comparison.proposal_version_number == 1
    assert comparison.working_version_number == 2
    assert comparison.proposal_total_cost == 50.0
    assert comparison.actual_total_cost == 60.0
    assert comparison.cost_variance == 10.0
    assert comparison.cost_variance_percent == pytest.approx(20.0)
    assert comparison.proposal_total_price == 70.0
    assert comparison.actual_total_price == 84.0

    (sheet,) = comparison.sheets
    assert sheet.matched
    assert sheet.cost_variance == 10.0
    assert sheet.cost_variance_percent == pytest.approx(20.0)
    assert [i.id for i in sheet.actual_items] == [copied.id]


def test_sheet_variance_of_two_hundred_dollars(engine, lumber_sheet):
    item = engine.add_item(lumber_sheet.id, "Trusses", quantity=1, unit_cost=1000)
    result = engine.lock_and_fork("JOB-1")
    copy_id = result.item_ids[item.id]

    engine.edit_item_field(copy_id, "unit_cost", "1200")
    (sheet,) = engine.compare_job_materials("JOB-1").sheets

    assert sheet.proposal_total_cost == 1000.0
    assert sheet.actual_total_cost == 1200.0
    assert sheet.cost_variance == 200.0
    assert sheet.cost_variance_percent == 20.0


def test_zero_proposal_total_gives_zero_percent(engine, lumber_sheet):
    item = engine.add_item(lumber_sheet.id, "Free sample", quantity=1)
    result = engine.lock_and_fork("JOB-1")
    engine.edit_item_field(result.item_ids[item.id], "unit_cost", "40")

    comparison = engine.compare_job_materials("JOB-1")

    assert comparison.proposal_total_cost == 0
    assert comparison.cost_variance == 40.0
    assert comparison.cost_variance_percent == 0.0
    assert comparison.sheets[0].cost_variance_percent == 0.0
    assert comparison.price_variance_percent == 0.0


def test_sheets_match_by_name_not_identifier(engine, lumber_sheet):
    version = engine.get_working_version("JOB-1")
    roofing = engine.add_sheet(version.id, "Roofing")
    engine.add_item(lumber_sheet.id, "2x4", quantity=10, unit_cost=5)
    engine.add_item(roofing.id, "Shingles", quantity=20, unit_cost=30)

    result = engine.lock_and_fork("JOB-1")
    new_lumber, new_roofing = engine.list_sheets(result.working.id)
    engine.delete_sheet(new_roofing.id)
    engine.rename_sheet(new_lumber.id, "Framing Lumber")
    extra = engine.add_sheet(result.working.id, "Change Order 1")
    engine.add_item(extra.id, "Skylight", quantity=1, unit_cost=900)

    comparison = engine.compare_job_materials("JOB-1")

    by_name = {s.sheet_name: s for s in comparison.sheets}
    assert set(by_name) == {"Lumber", "Roofing"}
    assert not by_name["Lumber"].matched
    assert by_name["Lumber"].actual_total_cost == 0
    assert by_name["Roofing"].actual_items == []
    assert comparison.proposal_total_cost == 650.0
    assert comparison.actual_total_cost == 0
    assert comparison.cost_variance_percent == pytest.approx(-100.0)
    assert list(comparison.excluded_sheet_names) == ["Framing Lumber", "Change Order 1"]


def test_proposal_is_the_first_locked_version(engine, lumber_sheet):
    item = engine.add_item(lumber_sheet.id, "2x4", quantity=10, unit_cost=5)
    first = engine.lock_and_fork("JOB-1")
    engine.edit_item_field(first.item_ids[item.id], "quantity", "20")
    engine.lock_and_fork("JOB-1")

    comparison = engine.compare_job_materials("JOB-1")

    assert comparison.proposal_version_number == 1
    assert comparison.working_version_number == 3
    assert comparison.proposal_total_cost == 50.0
    assert comparison.actual_total_cost == 100.0


def test_comparison_has_no_side_effects(engine, lumber_sheet):
    engine.add_item(lumber_sheet.id, "2x4", quantity=10, unit_cost=5)
    engine.lock_and_fork("JOB-1")
    before = [v.model_dump() for v in engine.list_versions("JOB-1")]

    first = engine.compare_job_materials("JOB-1")
    second = engine.compare_job_materials("JOB-1")

    assert first == second
    assert [v.model_dump() for v in engine.list_versions("JOB-1")] == before


def test_sheet_comparison_counts_items_on_each_side(engine, lumber_sheet):
    engine.add_item(lumber_sheet.id, "2x4", quantity=10, unit_cost=5)
    engine.add_item(lumber_sheet.id, "2x6", quantity=4, unit_cost=8)
    result = engine.lock_and_fork("JOB-1")
    (copied_sheet,) = engine.list_sheets(result.working.id)
    engine.add_item(copied_sheet.id, "Joist hangers", quantity=20, unit_cost=1.5)

    (sheet,) = engine.compare_job_materials("JOB-1").sheets

    assert sheet.proposal_item_count == 2
    assert sheet.actual_item_count == 3
    dumped = sheet.model_dump()
    assert (dumped["proposal_item_count"], dumped["actual_item_count"]) == (2, 3)
