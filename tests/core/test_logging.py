from __future__ import annotations

import json
import logging

from app.core.logging import _ContainerFormatter, _JsonFormatter, setup_logging


def _record(level: int = logging.INFO, msg: str = "hello", args: tuple = ()) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=None,
    )


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING
    setup_logging("info")


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_keeps_httpx_quiet_at_debug() -> None:
    # httpx would log request URLs, and the callback URL carries the code.
    setup_logging("debug")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("uvicorn").level == logging.WARNING
    setup_logging("info")


def test_setup_logging_selects_json_formatter() -> None:
    setup_logging("info", json_format=True)
    assert isinstance(logging.getLogger().handlers[0].formatter, _JsonFormatter)
    setup_logging("info")
    assert isinstance(logging.getLogger().handlers[0].formatter, _ContainerFormatter)


def test_formatter_includes_location_only_for_warnings() -> None:
    fmt = _ContainerFormatter()
    assert "[test.py:" not in fmt.format(_record(logging.INFO))
    assert "[test.py:42]" in fmt.format(_record(logging.WARNING))


def test_json_formatter_produces_valid_json() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(msg="Hello %s", args=("world",))))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "test"
    assert parsed["message"] == "Hello world"
    assert "timestamp" in parsed


def test_json_formatter_includes_handshake_context() -> None:
    record = _record()
    record.request_id = "abc-123"  # type: ignore[attr-defined]
    record.phase = "callback"  # type: ignore[attr-defined]
    record.outcome = "csrf_mismatch"  # type: ignore[attr-defined]
    record.user_id = 7  # type: ignore[attr-defined]

    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "abc-123"
    assert parsed["phase"] == "callback"
    assert parsed["outcome"] == "csrf_mismatch"
    assert parsed["user_id"] == 7
    assert "duration_ms" not in parsed
