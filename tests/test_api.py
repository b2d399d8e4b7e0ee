"""Tests for API functionality."""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from marginalia.api.app import create_app, generate_token
from marginalia.core.model import Note
from marginalia.runtime import build_runtime


@pytest.fixture
def runtime():
    """Create a runtime with test vault."""
    with tempfile.TemporaryDirectory() as tmpdir:
        vault_path = Path(tmpdir) / "vault"
        vault_path.mkdir()
        yield build_runtime(vault_path=vault_path, config_path=Path(tmpdir) / "none.toml")


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime, token=None, drain_interval=None))


def test_health_endpoint(client):
    """Test /health endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["notes"] == 0
    assert data["pending"] == 0


def test_auth_required(runtime):
    """Test that endpoints require authentication when token is set."""
    token = generate_token()
    client = TestClient(create_app(runtime, token=token, drain_interval=None))

    assert client.get("/health").status_code == 401
    assert client.get("/health", headers={"Authorization": "Bearer wrong"}).status_code == 401
    ok = client.get("/health", headers={"Authorization": f"Bearer {token}"})
    assert ok.status_code == 200


def test_create_link_and_backlinks(client):
    """Creating a note with a link auto-creates the target after a flush."""
    created = client.post("/notes", json={"title": "A", "body": "see [[Project X]] soon"})
    assert created.status_code == 201
    a = created.json()["id"]

    assert client.get(f"/notes/{a}").json()["state"] == "dirty"
    counts = client.post("/flush").json()
    assert counts["created"] == 1

    links = client.get(f"/notes/{a}/links").json()
    assert len(links) == 1
    assert links[0]["raw_target"] == "Project X"
    target = links[0]["target"]

    backlinks = client.get(f"/notes/{target}/backlinks").json()
    assert backlinks[0]["source"] == a
    assert "[[Project X]]" in backlinks[0]["context"]

    note = client.get(f"/notes/{target}").json()
    assert note["title"] == "Project X"
    assert note["state"] == "clean"


def test_update_and_delete(client):
    a = client.post("/notes", json={"title": "A", "body": "[[B]]"}).json()["id"]
    client.post("/flush")
    b = client.get("/resolve", params={"target": "b"}).json()["id"]

    updated = client.put(f"/notes/{a}", json={"title": "A2"})
    assert updated.status_code == 200
    assert updated.json()["title"] == "A2"
    assert updated.json()["body"] == "[[B]]"

    assert client.delete(f"/notes/{b}").status_code == 204
    assert client.get(f"/notes/{b}").status_code == 404
    links = client.get(f"/notes/{a}/links").json()
    assert links[0]["dangling"] is True


def test_empty_title_rejected(client):
    assert client.post("/notes", json={"title": "  "}).status_code == 400


def test_missing_note_is_404(client):
    assert client.get("/notes/nope").status_code == 404
    assert client.put("/notes/nope", json={"body": "x"}).status_code == 404
    assert client.delete("/notes/nope").status_code == 404


def test_resolve_preview_and_create(client, runtime):
    """GET /resolve only looks; POST /resolve creates a missing target."""
    assert client.get("/resolve", params={"target": "Ghost"}).status_code == 404
    assert client.get("/resolve", params={"target": "Ghost", "create": "true"}).status_code == 404
    assert len(runtime.coordinator.catalog) == 0

    created = client.post("/resolve", json={"target": "Ghost"})
    assert created.status_code == 200
    again = client.get("/resolve", params={"target": "ghost"})
    assert again.json()["id"] == created.json()["id"]
    assert client.post("/resolve", json={"target": "ghost"}).json() == created.json()
    assert client.get("/resolve", params={"target": " "}).status_code == 400
    assert client.post("/resolve", json={"target": " "}).status_code == 400


def test_daily_endpoint(client):
    assert client.get("/daily/2024-03-01").status_code == 404

    first = client.post("/daily/2024-03-01").json()
    second = client.post("/daily/2024-03-01").json()
    fetched = client.get("/daily/2024-03-01").json()

    assert first["id"] == second["id"] == fetched["id"] == "daily-2024-03-01"
    assert first["kind"] == "daily"
    assert first["title"] == "Friday, March 1, 2024"
    assert client.get("/daily/not-a-date").status_code == 422


def test_templates_endpoints(client):
    ids = [t["id"] for t in client.get("/templates").json()]
    assert ids[:3] == ["meeting-notes", "daily-log", "project-plan"]

    saved = client.post("/templates", json={"name": "Book Review", "content": "# {{title}}\n"})
    assert saved.status_code == 201
    assert saved.json()["id"] == "book-review"
    assert client.post("/templates", json={"name": "book review"}).status_code == 409

    changed = client.put("/templates/book-review", json={"description": "Reading notes"})
    assert changed.json()["description"] == "Reading notes"
    assert changed.json()["content"] == "# {{title}}\n"

    assert client.put("/templates/meeting-notes", json={"content": "x"}).status_code == 409
    assert client.delete("/templates/meeting-notes").status_code == 409
    assert client.delete("/templates/book-review").status_code == 204
    assert client.get("/templates/book-review").status_code == 404


def test_create_note_from_template(client):
    created = client.post("/notes", json={"title": "Dune", "template": "project-plan"})
    assert created.status_code == 201
    assert created.json()["body"].startswith("# Dune\n")

    missing = client.post("/notes", json={"title": "X", "template": "nope"})
    assert missing.status_code == 404
    assert [n["title"] for n in client.get("/notes").json()] == ["Dune"]


def test_list_notes_and_pending(client, runtime):
    runtime.vault.write(Note(id="ext", title="External"))
    runtime.coordinator.note_changed_externally("ext")

    ids = [n["id"] for n in client.get("/notes").json()]
    assert "ext" in ids
    assert client.get("/pending").json() == {}
