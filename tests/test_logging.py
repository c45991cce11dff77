from __future__ import annotations

import io
import json
import logging
import os

import pytest

from circuit_agent.observability import KVLogger, configure_logging, flush_logging, get_logger
from circuit_agent.observability.logging import JsonFormatter


def _capture(name: str, *, prefix: str | None = None) -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter(prefix=prefix))
    logger = logging.getLogger(name)
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, stream


def test_kv_logger_emits_structured_json_line() -> None:
    logger, stream = _capture("circuit_agent.test.json", prefix="[CIRCUIT]")

    KVLogger(logger, component="lifecycle").info("shutdown_begin", exit_code=0, reason="SIGTERM")

    payload = json.loads(stream.getvalue().strip())
    assert payload["level"] == "INFO"
    assert payload["logger"] == "circuit_agent.test.json"
    assert payload["message"] == "shutdown_begin"
    assert payload["pid"] == os.getpid()
    assert payload["prefix"] == "[CIRCUIT]"
    assert payload["component"] == "lifecycle"
    assert payload["exit_code"] == 0
    assert payload["reason"] == "SIGTERM"
    assert "ts" in payload


def test_unserializable_fields_fall_back_to_repr() -> None:
    logger, stream = _capture("circuit_agent.test.repr")

    KVLogger(logger).warning("odd", value={1, 2})

    payload = json.loads(stream.getvalue().strip())
    assert payload["value"] == repr({1, 2})
    assert "prefix" not in payload


def test_exception_includes_traceback() -> None:
    logger, stream = _capture("circuit_agent.test.exc")

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        KVLogger(logger).exception("cleanup_failed")

    payload = json.loads(stream.getvalue().strip())
    assert payload["level"] == "ERROR"
    assert "RuntimeError: boom" in payload["exc_info"]


def test_bind_merges_static_fields() -> None:
    logger, stream = _capture("circuit_agent.test.bind")

    KVLogger(logger, a=1).bind(b=2).debug("hello")

    payload = json.loads(stream.getvalue().strip())
    assert (payload["a"], payload["b"]) == (1, 2)


@pytest.mark.usefixtures("restore_logging")
def test_configure_logging_writes_to_stderr_only(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(level="INFO", prefix="[CIRCUIT]")
    configure_logging(level="INFO", prefix="[CIRCUIT]")

    get_logger("circuit_agent.test.stderr").info("process_exit", exit_code=0)
    flush_logging()

    captured = capsys.readouterr()
    assert captured.out == ""
    lines = [json.loads(line) for line in captured.err.splitlines() if line.strip()]
    assert len(lines) == 1
    assert lines[0]["message"] == "process_exit"
    assert lines[0]["prefix"] == "[CIRCUIT]"
