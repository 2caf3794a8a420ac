import json
import logging
import sys

from bookmark_sync.core.logging_utils import EnhancedJsonFormatter, generate_correlation_id


def _record(**extra):
    record = logging.LogRecord(
        name="bookmark_sync.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="bookmark_created",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_groups_extra_fields():
    formatter = EnhancedJsonFormatter(include_location=False, include_process_info=False)
    record = _record(
        user_id="u1",
        correlation_id="c-1",
        sync_version=3,
        client_id="laptop",
        duration_ms=1.5,
        bookmark_id="b1",
    )

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "bookmark_created"
    assert payload["level"] == "INFO"
    assert payload["user_id"] == "u1"
    assert payload["correlation_id"] == "c-1"
    assert payload["sync"] == {"sync_version": 3, "client_id": "laptop"}
    assert payload["performance"] == {"duration_ms": 1.5}
    assert payload["extra"] == {"bookmark_id": "b1"}
    assert "module" not in payload


def test_formatter_includes_exception():
    formatter = EnhancedJsonFormatter()
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(formatter.format(record))

    assert payload["exception"]["type"] == "ValueError"
    assert payload["exception"]["message"] == "boom"
    assert payload["line"] == 10


def test_correlation_ids_are_short_and_unique():
    ids = {generate_correlation_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(value) == 12 for value in ids)
