"""Integration tests for the FastAPI web application."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from conftest import NOW, FakeSession, build_email
from threadline.commands import ThreadlineCommands
from threadline.core.config import AppSettings
from threadline.core.errors import (
    AuthError,
    NetworkError,
    ParseError,
    ProjectNotFoundError,
    StorageError,
    ValidationError,
)
from threadline.web import create_app
from threadline.web.app import status_for


async def _connect(endpoint, auth) -> FakeSession:
    del endpoint
    refused = AuthError(f"Login failed for {auth.username}")
    return FakeSession(
        {
            1: build_email(message_id="<a@x>", attachments=(("notes.txt", b"hello"),)),
            2: build_email(message_id="<b@x>", subject="Re: Quarterly Report", references="<a@x>"),
        },
        auth_error=refused if auth.password == "wrong" else None,
    )


@pytest.fixture
def client(app_settings: AppSettings) -> Iterator[TestClient]:
    service = ThreadlineCommands(app_settings, connect=_connect, clock=lambda: NOW)
    try:
        yield TestClient(create_app(app_settings, commands=service))
    finally:
        service.close()


def test_providers_endpoint(client: TestClient) -> None:
    response = client.get("/api/providers")

    assert response.status_code == 200
    gmail = response.json()[0]
    assert gmail == {
        "name": "gmail",
        "display_name": "Gmail",
        "host": "imap.gmail.com",
        "port": 993,
        "use_tls": True,
        "supports_oauth": True,
    }


def test_account_lifecycle_and_sync(client: TestClient) -> None:
    created = client.post("/api/accounts", json={"email": "me@gmail.com", "password": "pw"})
    assert created.status_code == 201
    account_id = created.json()["id"]

    accounts = client.get("/api/accounts").json()
    assert [account["email"] for account in accounts] == ["me@gmail.com"]
    assert "password" not in accounts[0]

    synced = client.post("/api/accounts/me@gmail.com/sync")
    assert synced.status_code == 200
    assert synced.json() == {
        "account_id": account_id,
        "current": 2,
        "total": 2,
        "status": "completed",
    }
    assert client.get("/api/sync/status").json()[0]["status"] == "completed"

    projects = client.get("/api/projects").json()
    assert len(projects) == 1
    project = projects[0]["project"]
    assert project["name"] == "Quarterly Report"
    assert project["message_count"] == 2
    assert project["attachment_count"] == 1

    timeline = client.get(f"/api/projects/{project['id']}/timeline").json()
    assert timeline[0]["kind"] == "thread"
    assert len(timeline[0]["children"]) == 2

    assert client.post(f"/api/projects/{project['id']}/pin").json() == {"pinned": True}
    assert client.post(f"/api/projects/{project['id']}/archive").json() == {"success": True}
    assert client.get(f"/api/projects/{project['id']}").json()["project"]["status"] == "archived"

    reset = client.post("/api/accounts/me@gmail.com/reset")
    assert reset.json() == {"success": True}
    assert client.get("/api/projects").json() == []


def test_domain_errors_map_to_status_codes(client: TestClient) -> None:
    unsupported = client.post("/api/accounts", json={"email": "me@example.org", "password": "pw"})
    assert unsupported.status_code == 400
    assert unsupported.json()["code"] == "UNSUPPORTED_PROVIDER"

    missing = client.get("/api/projects/42")
    assert missing.status_code == 404
    assert missing.json() == {
        "code": "PROJECT_NOT_FOUND",
        "message": "Project 42 not found",
        "details": {"project_id": 42},
    }

    client.post("/api/accounts", json={"email": "me@gmail.com", "password": "pw"})
    rejected = client.post("/api/accounts/me@gmail.com/sync", json={"password": "wrong"})
    assert rejected.status_code == 401
    assert rejected.json()["code"] == "AUTH_ERROR"


def test_manual_sync_is_rate_limited(client: TestClient) -> None:
    client.post("/api/accounts", json={"email": "me@gmail.com", "password": "pw"})

    assert client.post("/api/accounts/me@gmail.com/sync").status_code == 200
    assert client.post("/api/accounts/sync-all").status_code == 200
    limited = client.post("/api/accounts/me@gmail.com/sync")

    assert limited.status_code == 429
    assert limited.json()["code"] == "RATE_LIMITED"


def test_sync_all_returns_per_account_outcomes(client: TestClient) -> None:
    client.post("/api/accounts", json={"email": "me@gmail.com", "password": "pw"})

    outcomes = client.post("/api/accounts/sync-all").json()

    assert outcomes["me@gmail.com"]["status"] == "completed"


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ProjectNotFoundError(1), 404),
        (ValidationError("bad"), 400),
        (AuthError("denied"), 401),
        (ParseError("garbled"), 422),
        (NetworkError("down"), 502),
        (StorageError("disk"), 500),
    ],
)
def test_status_for(error, expected: int) -> None:
    assert status_for(error) == expected
