from __future__ import annotations

import os

from fastapi.testclient import TestClient

os.environ.setdefault("LEARNING_GPS_DATABASE_URL", "sqlite://")

from learning_gps.main import app  # noqa: E402
from learning_gps.db import dispose_engine  # noqa: E402


def teardown_module() -> None:  # pragma: no cover - test cleanup
    dispose_engine()


def test_health_reports_text_generation_backend() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "text_generation": "off"}


def test_database_health_endpoint_success(database) -> None:
    client = TestClient(app)
    response = client.get("/healthz/database")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["dialect"] == "sqlite"
    assert "pool" in payload


def test_database_health_endpoint_failure(monkeypatch) -> None:
    client = TestClient(app)

    def raise_runtime_error():
        raise RuntimeError("missing database url")

    monkeypatch.setattr("learning_gps.main.get_engine", raise_runtime_error)
    response = client.get("/healthz/database")
    assert response.status_code == 503
    assert response.json()["detail"] == "missing database url"
