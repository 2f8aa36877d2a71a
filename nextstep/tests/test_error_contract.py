"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from nextstep.core.errors import (
    AppError,
    BillingError,
    GenerationError,
    QuotaExceededError,
    ServiceUnavailableError,
    app_error_handler,
    field_violations,
    unhandled_exception_handler,
)
from nextstep.core.middleware.request_id import RequestIdMiddleware


def test_error_classes_carry_status_and_code():
    assert (QuotaExceededError("x").status_code, QuotaExceededError("x").code) == (403, "quota_exceeded")
    assert (GenerationError("x").status_code, GenerationError("x").code) == (500, "generation_failed")
    assert ServiceUnavailableError("x").status_code == 503
    assert BillingError("x").status_code == 400
    assert BillingError("x", status_code=500, code="stripe_error").status_code == 500


def test_field_violations_strip_body_prefix():
    errors = [
        {"loc": ("body", "availableMinutes"), "msg": "Input should be greater than or equal to 5", "type": "greater_than_equal"},
        {"loc": ("body",), "msg": "Field required", "type": "missing"},
    ]
    assert field_violations(errors) == [
        {"field": "availableMinutes", "message": "Input should be greater than or equal to 5", "type": "greater_than_equal"},
        {"field": "body", "message": "Field required", "type": "missing"},
    ]


def test_app_error_details_in_envelope():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    @app.get("/boom")
    async def boom():
        raise AppError("Bad input", code="validation_error", status_code=400, details=[{"field": "energy"}])

    resp = TestClient(app).get("/boom")
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["details"] == [{"field": "energy"}]
    assert body["error"]["request_id"] == resp.headers["x-request-id"]


def test_unexpected_exception_is_generic_500():
    app = FastAPI()
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/crash")
    async def crash():
        raise RuntimeError("database password is hunter2")

    resp = TestClient(app, raise_server_exceptions=False).get("/crash")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "hunter2" not in resp.text
