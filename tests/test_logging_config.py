import json
import logging

from material_workbook.logging_config import StructuredFormatter, set_request_id
from material_workbook.settings import load_settings


def test_structured_formatter_includes_extra_fields_and_request_id():
    set_request_id("req-123")
    record = logging.LogRecord("material_workbook.versions", logging.INFO, __file__, 10, "Locked %s", ("v1",), None)
    record.job_id = "JOB-1"

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["message"] == "Locked v1"
    assert payload["severity"] == "INFO"
    assert payload["job_id"] == "JOB-1"
    assert payload["request_id"] == "req-123"


def test_settings_defaults_follow_environment():
    dev = load_settings({})
    assert (dev.environment, dev.store, dev.publish_events) == ("dev", "memory", False)

    prod = load_settings({"ENVIRONMENT": "prod", "PROJECT_ID": "field-ops"})
    assert (prod.store, prod.project_id, prod.publish_events) == ("firestore", "field-ops", True)

    quiet = load_settings({"ENVIRONMENT": "prod", "MATERIALS_PUBLISH_EVENTS": "0", "MATERIALS_STORE": "memory"})
    assert (quiet.store, quiet.publish_events) == ("memory", False)
