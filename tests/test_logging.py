"""Tests for structured logging and the request logging middleware."""

import json
import logging

from fastapi.testclient import TestClient

from matcharank.api.logging_config import JSONFormatter
from matcharank.api.main import create_app


def _record(**extra):
    record = logging.LogRecord(
        name="matcharank.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=10,
        msg="Cache operation failed, continuing without cache",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields():
    """Test that `extra` context ends up as top-level JSON keys."""
    line = JSONFormatter().format(_record(degraded=True, operation="get"))
    data = json.loads(line)

    assert data["level"] == "WARNING"
    assert data["logger"] == "matcharank.test"
    assert data["message"] == "Cache operation failed, continuing without cache"
    assert data["degraded"] is True
    assert data["operation"] == "get"
    assert "msg" not in data


def test_request_id_header(store, cache, test_settings):
    client = TestClient(create_app(store, cache, test_settings))

    response = client.get("/ping")

    assert response.status_code == 200
    assert response.headers["X-Request-ID"]
