from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from trafficreport.main import create_app
from trafficreport.settings import Settings

DEFAULT_PASSWORD = "correct horse"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        app_env="test",
        session_secret="test-session-secret",
        jwt_secret="test-jwt-secret",
        data_dir=tmp_path / "data",
        upload_dir=tmp_path / "uploads",
        image_fetch_timeout=2.0,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def other_client(app, client):
    # Shares the already-started app; has its own cookie jar.
    return TestClient(app)


def register_and_login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, name: str | None = None) -> dict:
    resp = client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
    assert resp.status_code == 201, resp.text
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["user"]


def problem_payload(**overrides) -> dict:
    payload = {
        "title": "Pothole on Main St",
        "description": "Deep hole in the right lane",
        "problemType": "Rupe na putu",
        "latitude": 44.8125,
        "longitude": 20.4612,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def alice(client):
    return register_and_login(client, "alice@example.com", name="Alice")


@pytest.fixture
def bob(other_client):
    return register_and_login(other_client, "bob@example.com", name="Bob")
