"""Tests for structured logging and request correlation."""

import json
import logging

from guidechat.core.logging import (
    JsonFormatter,
    PrettyFormatter,
    RequestIdFilter,
    latency_bucket_ms,
    log_event,
    request_id_ctx_var,
)


def _record(**fields):
    record = logging.LogRecord("guidechat", logging.WARNING, __file__, 1, "[access] DENY", None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


def test_json_formatter_carries_metering_fields():
    record = _record(request_id="req-1", user_email="a@example.com", bucket="gemini", used=4, limit=4, side="x")
    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "[access] DENY"
    assert payload["request_id"] == "req-1"
    assert payload["bucket"] == "gemini"
    assert payload["used"] == 4 and payload["limit"] == 4
    assert "side" not in payload


def test_pretty_formatter_tags():
    line = PrettyFormatter().format(_record(request_id="req-2", bucket="llama"))
    assert "[rid=req-2 bucket=llama]" in line
    assert line.endswith("[access] DENY")


def test_request_id_filter_uses_context():
    token = request_id_ctx_var.set("ctx-rid")
    try:
        record = _record()
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)
    assert record.request_id == "ctx-rid"


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(50) == "<100ms"
    assert latency_bucket_ms(2500) == "1-10s"
    assert latency_bucket_ms(90000) == ">=60s"


def test_log_event_flattens_fields(caplog):
    with caplog.at_level(logging.INFO, logger="guidechat"):
        log_event("warning", "[access] DENY", user_email="a@example.com", bucket="gpt41", plan="pro", reason="nope")

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.bucket == "gpt41"
    assert record.plan == "pro"
    assert record.reason == "nope"
