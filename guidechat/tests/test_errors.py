"""Tests for the error taxonomy and normalized error responses."""

import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from guidechat.core.errors import (
    AppError,
    NotFoundError,
    OwnershipError,
    ProviderTransientError,
    StorageTransientError,
    app_error_handler,
    non_critical,
)
from guidechat.core.middleware.request_id import RequestIdMiddleware


def _app_raising(exc: Exception) -> TestClient:
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)

    @test_app.get("/boom")
    def boom():
        raise exc

    return TestClient(test_app)


def test_ownership_error_indistinguishable_from_not_found():
    foreign = OwnershipError("Chat session not found")
    missing = NotFoundError("Chat session not found")
    assert (foreign.code, foreign.status_code) == (missing.code, missing.status_code)


def test_provider_transient_response_has_retry_after():
    client = _app_raising(ProviderTransientError("slow down", retry_after=15))
    resp = client.get("/boom")

    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "15"
    body = resp.json()
    assert body["error"]["code"] == "provider_rate_limited"
    assert body["error"]["details"]["retry_after"] == 15
    assert body["error"]["request_id"] == resp.headers["x-request-id"]
    assert body["detail"] == "slow down"


def test_storage_transient_is_503():
    client = _app_raising(StorageTransientError("metering down", details={"retryable": True}))
    resp = client.get("/boom")
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "storage_unavailable"
    assert resp.json()["error"]["details"]["retryable"] is True


def test_non_critical_logs_and_suppresses(caplog):
    ran_after = []
    with caplog.at_level(logging.WARNING, logger="guidechat"):
        with non_critical("auto_title", session_id="s1"):
            raise RuntimeError("provider exploded")
        ran_after.append(True)

    assert ran_after == [True]
    assert any("[non-critical] auto_title failed" in r.getMessage() for r in caplog.records)
