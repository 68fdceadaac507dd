"""Unit tests for LoggerMiddleware.

This file tests the request logging middleware that writes structured start
and completion records to the `operator.access` logger.

# Test Coverage

The tests cover:
  - Request start and completion logging
  - Probe requests not logged
  - Query parameters and timing in the records
  - Server errors logged at WARNING

# Test Structure

Tests use pytest with FastAPI TestClient and log capturing.

# Running Tests

Run with: pytest tests/unit/api/middleware/test_logger.py
"""

import logging

import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from api.middleware.logger import LoggerMiddleware

# =============================================================================
# LoggerMiddleware Tests
# =============================================================================


class TestLoggerMiddleware:
    """Test suite for LoggerMiddleware."""

    @pytest.fixture
    def client(self) -> TestClient:
        """Create a test client for an app with LoggerMiddleware."""
        app = FastAPI()
        app.add_middleware(LoggerMiddleware)

        @app.get("/applications")
        def applications_endpoint():
            return {"items": [], "total": 0}

        @app.get("/healthz")
        def healthz_endpoint():
            return {"status": "ok"}

        @app.get("/readyz")
        def readyz_endpoint():
            return {"status": "ready"}

        return TestClient(app)

    @staticmethod
    def _access_records(caplog) -> list[logging.LogRecord]:
        return [record for record in caplog.records if record.name == "operator.access"]

    def test_logs_start_and_completion(self, client: TestClient, caplog) -> None:
        """Test that a request produces a start and a completion record.

        **Why this test is important:**
          - Access logs are the only trace of who queried the controller views

        **What it tests:**
          - Two records in order with request and response extras
          - Completion carries status code and elapsed time
        """
        with caplog.at_level(logging.INFO, logger="operator.access"):
            response = client.get("/applications")

        assert response.status_code == 200
        records = self._access_records(caplog)
        started = next(r for r in records if r.message == "request started")
        completed = next(r for r in records if r.message == "request completed")
        assert records.index(started) < records.index(completed)
        assert started.request == {"path": "/applications", "method": "GET", "remoteAddr": "testclient"}
        assert completed.response["statuscode"] == 200
        assert completed.response["since"] >= 0

    def test_includes_query_string(self, client: TestClient, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="operator.access"):
            client.get("/applications", params={"namespace": "flink"})

        records = self._access_records(caplog)
        assert records[0].request["path"] == "/applications?namespace=flink"

    @pytest.mark.parametrize("path", ["/healthz", "/readyz"])
    def test_skips_probe_requests(self, client: TestClient, caplog, path: str) -> None:
        with caplog.at_level(logging.INFO, logger="operator.access"):
            response = client.get(path)

        assert response.status_code == 200
        assert self._access_records(caplog) == []

    def test_server_errors_logged_at_warning(self, caplog) -> None:
        app = FastAPI()
        app.add_middleware(LoggerMiddleware)

        @app.get("/savepoints")
        def failing_endpoint():
            return JSONResponse(status_code=503, content={"error": "Service Unavailable"})

        with caplog.at_level(logging.INFO, logger="operator.access"):
            TestClient(app).get("/savepoints")

        completed = next(r for r in self._access_records(caplog) if r.message == "request completed")
        assert completed.levelno == logging.WARNING
        assert completed.response["statuscode"] == 503
