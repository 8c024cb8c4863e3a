from __future__ import annotations

import json
import logging
import sys

from incidentops.core.logging import build_json_formatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="incidentops.apps.api.main",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="request_completed method=%s status=%s",
        args=("GET", 200),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_lines_carry_request_id() -> None:
    payload = json.loads(build_json_formatter().format(_record(request_id="req-42")))
    assert payload["message"] == "request_completed method=GET status=200"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "incidentops.apps.api.main"
    assert payload["request_id"] == "req-42"
    assert "timestamp" in payload


def test_json_lines_include_tracebacks() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record()
        record.exc_info = sys.exc_info()
    payload = json.loads(build_json_formatter().format(record))
    assert "RuntimeError: boom" in payload["exc_info"]
