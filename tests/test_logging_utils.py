from __future__ import annotations

import io
import json
import logging
import sys

from gridbot.logging_context import with_logging_context, with_pass_context
from gridbot.logging_utils import JsonFormatter, setup_logging


def _record(msg: str = "hello", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="gridbot.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


def test_json_formatter_includes_exception_details() -> None:
    formatter = JsonFormatter()

    try:
        raise ValueError("boom")
    except ValueError:
        rendered = formatter.format(_record("Pass failed", exc_info=sys.exc_info()))

    payload = json.loads(rendered)
    assert payload["message"] == "Pass failed"
    assert payload["error_type"] == "ValueError"
    assert payload["error_message"] == "boom"
    assert "ValueError: boom" in payload["traceback"]


def test_json_formatter_merges_structured_extras() -> None:
    record = _record("order_placed")
    record.extra = {"side": "BUY", "quantity": "0.12"}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["side"] == "BUY"
    assert payload["quantity"] == "0.12"


def test_setup_logging_uses_log_level_env(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    setup_logging()

    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_keeps_http_loggers_quiet_at_info() -> None:
    setup_logging("INFO")

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


def test_setup_logging_debug_enables_http_debug() -> None:
    setup_logging("DEBUG")

    assert logging.getLogger("httpx").level == logging.DEBUG
    assert logging.getLogger("httpcore").level == logging.DEBUG


def test_setup_logging_respects_http_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("HTTPX_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("HTTPCORE_LOG_LEVEL", "CRITICAL")

    setup_logging("INFO")

    assert logging.getLogger("httpx").level == logging.ERROR
    assert logging.getLogger("httpcore").level == logging.CRITICAL


def test_json_formatter_includes_context_fields_even_when_unset() -> None:
    payload = json.loads(JsonFormatter().format(_record()))

    assert "run_id" in payload
    assert "pass_id" in payload
    assert "order_id" in payload
    assert payload["symbol"] is None


def test_json_formatter_reads_active_context() -> None:
    formatter = JsonFormatter()

    with with_pass_context("p-1", run_id="r-1"):
        with with_logging_context(order_id="42", symbol="LTCUSDC"):
            inside = json.loads(formatter.format(_record()))
    outside = json.loads(formatter.format(_record()))

    assert (inside["run_id"], inside["pass_id"], inside["order_id"], inside["symbol"]) == (
        "r-1",
        "p-1",
        "42",
        "LTCUSDC",
    )
    assert outside["order_id"] is None


def test_setup_logging_writes_json_lines_to_stream() -> None:
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)

    logging.getLogger("gridbot.test").info("grid_launched", extra={"extra": {"placed": 8}})

    line = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert line["message"] == "grid_launched"
    assert line["placed"] == 8
    assert line["level"] == "INFO"
