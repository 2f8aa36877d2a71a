"""Tests for structured logging and request_id propagation."""

import json
import logging

from fastapi.testclient import TestClient

from nextstep.core.logging import JsonFormatter, latency_bucket_ms, log_event, redact
from nextstep.main import app


def test_request_id_in_response_and_logs(caplog):
    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="nextstep"):
        response = client.get("/health")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert any(r.getMessage() == "request.complete" for r in records)


def test_request_id_in_error_response():
    client = TestClient(app)
    response = client.get("/history")
    rid = response.headers.get("x-request-id")
    assert response.status_code == 401
    assert rid
    assert response.json()["error"]["request_id"] == rid


def test_log_event_truncates_and_tags(caplog):
    with caplog.at_level(logging.INFO, logger="nextstep"):
        log_event("info", "recommendation.test", user_id="user_1", extra={"blob": "x" * 2000})
    record = caplog.records[-1]
    assert record.user_id == "user_1"
    assert record.blob.endswith("...<truncated>")
    assert len(record.blob) < 600


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("nextstep", logging.INFO, __file__, 1, "billing.sync.applied", None, None)
    record.request_id = "rid-1"
    record.plan = "PRO"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "billing.sync.applied"
    assert payload["request_id"] == "rid-1"
    assert payload["plan"] == "PRO"


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(5000) == ">=1000ms"


def test_secrets_are_masked(caplog):
    with caplog.at_level(logging.INFO, logger="nextstep"):
        log_event("warning", "stripe call failed for sk_test_abc123", extra={"auth": "Bearer eyJhbGciOi.x.y"})
    record = caplog.records[-1]
    assert "sk_test_abc123" not in record.getMessage()
    assert record.auth == "Bearer ***"


def test_redact_keeps_prefix_only():
    assert redact("key=whsec_9f8e7d") == "key=whsec_9***"
    assert redact("nothing secret here") == "nothing secret here"
