import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import json
import logging

from healthrecords.utils.logging import RequestContext, StructuredFormatter


def make_record(**extra):
    record = logging.LogRecord("healthrecords.test", logging.INFO, __file__, 10, "Record processed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_structured_formatter_includes_context_and_extra_fields():
    formatter = StructuredFormatter()

    with RequestContext(request_id="req-1", user_id="alice"):
        line = formatter.format(make_record(extra_fields={"record_id": "rec-9"}))

    entry = json.loads(line)
    assert entry["message"] == "Record processed"
    assert entry["level"] == "INFO"
    assert entry["request_id"] == "req-1"
    assert entry["user_id"] == "alice"
    assert entry["record_id"] == "rec-9"


def test_context_is_reset_after_exit():
    formatter = StructuredFormatter()

    with RequestContext(request_id="req-2"):
        pass
    entry = json.loads(formatter.format(make_record()))

    assert "request_id" not in entry
    assert "user_id" not in entry
