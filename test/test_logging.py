"""
Tests for the JSON log formatter.
"""

import json
import logging

from vetcall.shared.logging import StructuredFormatter, correlation_id_var


def make_record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("vetcall.test", logging.INFO, __file__, 1, "Call placed", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_extra_fields_become_top_level_keys(self) -> None:
        data = json.loads(StructuredFormatter().format(make_record(call_id="call-1", attempt=2)))

        assert data["message"] == "Call placed"
        assert data["level"] == "INFO"
        assert data["call_id"] == "call-1"
        assert data["attempt"] == 2

    def test_colliding_extra_is_prefixed(self) -> None:
        data = json.loads(StructuredFormatter().format(make_record(level="debug")))

        assert data["level"] == "INFO"
        assert data["extra_level"] == "debug"

    def test_correlation_id_included(self) -> None:
        token = correlation_id_var.set("req-7")
        try:
            data = json.loads(StructuredFormatter().format(make_record()))
        finally:
            correlation_id_var.reset(token)

        assert data["correlation_id"] == "req-7"
