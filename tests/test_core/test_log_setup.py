"""Log redaction and in-memory buffer tests."""

from __future__ import annotations

import logging

from core.log_setup import LogBuffer, RedactingFilter, redact


def _record(msg: str, *args: object, level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("test", level, __file__, 1, msg, args, None)


class TestRedaction:
    def test_api_key_assignment(self) -> None:
        assert "secret123" not in redact("api_key=secret123")

    def test_bearer_token(self) -> None:
        assert redact("Authorization header Bearer abc.def") == (
            "Authorization header [REDACTED]"
        )

    def test_filter_rewrites_args(self) -> None:
        record = _record("key %s", "AIza" + "x" * 35)
        RedactingFilter().filter(record)
        assert record.getMessage() == "key [REDACTED]"


class TestLogBuffer:
    def test_tail_and_level_filter(self) -> None:
        buffer = LogBuffer(capacity=3)
        buffer.emit(_record("one"))
        buffer.emit(_record("two %d", 2, level=logging.WARNING))
        buffer.emit(_record("three"))
        buffer.emit(_record("four", level=logging.ERROR))

        assert len(buffer) == 3
        assert [e.message for e in buffer.tail(10)] == ["two 2", "three", "four"]
        assert [e.message for e in buffer.tail(10, "warning")] == ["two 2"]
        assert [e.message for e in buffer.tail(1)] == ["four"]
        assert buffer.tail(0) == []
