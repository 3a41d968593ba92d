"""Tests for structured logging."""

import json
import logging

from userconfig_operator.main import JsonFormatter


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="userconfig_operator.reconciler",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Reconciliation result",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_extra_fields_are_top_level(self) -> None:
        line = JsonFormatter().format(make_record(userconfig="alice", changes_applied=3))

        data = json.loads(line)

        assert data["message"] == "Reconciliation result"
        assert data["level"] == "INFO"
        assert data["logger"] == "userconfig_operator.reconciler"
        assert data["userconfig"] == "alice"
        assert data["changes_applied"] == 3
        assert "pathname" not in data

    def test_non_serializable_values_use_str(self) -> None:
        line = JsonFormatter().format(make_record(state=object()))

        assert json.loads(line)["state"].startswith("<object")
