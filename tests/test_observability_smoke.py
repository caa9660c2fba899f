from __future__ import annotations

import io
import json
import logging

from repograph.models import Occurrence, ScanEvent
from repograph.util import get_request_id, log_event, set_request_id, setup_json_logger


def test_structured_log_contains_required_fields() -> None:
    stream = io.StringIO()
    logger = setup_json_logger("tests.observability", stream=stream)
    set_request_id("req-smoke-001")

    log_event(logger, "smoke.event", command="scan", files=3)

    payload = json.loads(stream.getvalue().strip())
    for key in ("event", "level", "logger", "message", "request_id", "ts"):
        assert key in payload
    assert payload["request_id"] == "req-smoke-001"
    assert payload["files"] == 3
    assert payload["ts"].endswith("Z")


def test_warning_level_is_recorded() -> None:
    stream = io.StringIO()
    logger = setup_json_logger("tests.observability.warn", stream=stream)
    log_event(logger, "scan.entry.error", level=logging.WARNING, path="x")
    payload = json.loads(stream.getvalue().strip())
    assert payload["level"] == "WARNING"
    assert payload["path"] == "x"


def test_request_id_is_generated_once() -> None:
    set_request_id(None)
    first = get_request_id()
    assert first
    assert get_request_id() == first


def test_records_serialize_without_optional_fields() -> None:
    occ = Occurrence(kind="self-import", level="alert", message="file imports itself", rel_path="a.ts")
    assert occ.as_dict() == {
        "kind": "self-import",
        "level": "alert",
        "message": "file imports itself",
        "rel_path": "a.ts",
    }
    event = ScanEvent("error", "missing", action="access", message="include root does not exist")
    assert json.loads(json.dumps(event.as_dict())) == {
        "kind": "error",
        "path": "missing",
        "action": "access",
        "message": "include root does not exist",
    }
