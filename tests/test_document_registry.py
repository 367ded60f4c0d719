from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.docreg import auth, create_app
from app.docreg.db import session_scope
from app.docreg.models import AuditEvent, Base, User
from app.docreg.modules.document_registry import admin, service
from app.docreg.modules.document_registry.models import RegistryDocument, RegistryState
from app.docreg.utils import utcnow

HASH = "Q" * 46


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("REGISTRY_OWNER", "registry-owner")
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        for identity in ("registry-owner", "alice", "bob"):
            s.add(User(identity=identity, password_hash=generate_password_hash("pw"), is_active=True))

    return app.test_client()


def _login(client, identity: str) -> dict:
    r = client.post("/auth/login", json={"identity": identity, "password": "pw"})
    assert r.status_code == 200
    return {"X-CSRF-Token": r.json["csrf_token"]}


def _upload(client, headers, **overrides):
    payload = {"content_hash": HASH, "title": "Deed", "description": "", "tags": "legal"}
    payload.update(overrides)
    return client.post("/registry/documents", json=payload, headers=headers)


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.rstrip("Z"))


def test_upload_count_and_read_back(client):
    headers = _login(client, "alice")
    before = utcnow()

    r = _upload(client, headers)
    assert r.status_code == 201
    assert r.json == {"success": True, "owner": "alice", "index": 0}

    r = client.get("/registry/owners/alice/count")
    assert r.status_code == 200
    assert r.json["count"] == 1

    r = client.get("/registry/owners/alice/documents/0")
    assert r.status_code == 200
    body = r.json
    assert body["content_hash"] == HASH
    assert body["title"] == "Deed"
    assert body["description"] == ""
    assert body["tags"] == "legal"
    assert _parse_ts(body["uploaded_at"]) >= before


def test_upload_accepts_form_payload(client):
    headers = _login(client, "alice")
    r = client.post(
        "/registry/documents",
        data={"content_hash": HASH, "title": "Lease", "tags": "legal,housing"},
        headers=headers,
    )
    assert r.status_code == 201

    r = client.get("/registry/owners/alice/documents/0")
    assert r.json["title"] == "Lease"
    assert r.json["description"] == ""


def test_upload_with_short_hash_is_rejected_and_count_unchanged(client):
    headers = _login(client, "alice")
    r = _upload(client, headers, content_hash="Q" * 45)
    assert r.status_code == 400
    assert r.json["error"] == "invalid_argument"

    r = client.get("/registry/owners/alice/count")
    assert r.json["count"] == 0


def test_sequences_are_per_owner_and_ordered(client):
    headers = _login(client, "alice")
    for title in ("one", "two", "three"):
        assert _upload(client, headers, title=title).status_code == 201

    headers = _login(client, "bob")
    assert _upload(client, headers, title="bob-one").status_code == 201

    r = client.get("/registry/owners/alice/documents")
    assert r.status_code == 200
    assert [d["title"] for d in r.json["documents"]] == ["one", "two", "three"]
    assert client.get("/registry/owners/alice/documents/2").json["title"] == "three"
    assert client.get("/registry/owners/bob/count").json["count"] == 1
    assert client.get("/registry/owners/carol/count").json["count"] == 0


def test_indexed_read_errors(client):
    r = client.get("/registry/owners/alice/documents/0")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"

    headers = _login(client, "alice")
    _upload(client, headers)

    assert client.get("/registry/owners/alice/documents/1").status_code == 404
    assert client.get("/registry/owners/alice/documents/256").status_code == 400
    assert client.get("/registry/owners/alice/documents/-1").status_code == 400
    assert client.get("/registry/owners/alice/documents/abc").status_code == 400


def test_emergency_stop_blocks_registry_until_lifted(client):
    alice = _login(client, "alice")
    _upload(client, alice)

    owner = _login(client, "registry-owner")
    r = client.post("/registry/emergency-stop", json={"stop": True}, headers=owner)
    assert r.status_code == 200
    assert r.json == {"ok": True, "paused": True}

    assert client.get("/registry/status").json == {"owner": "registry-owner", "paused": True}

    r = _upload(client, owner)
    assert r.status_code == 503
    assert r.json["error"] == "operation_suspended"
    assert client.get("/registry/owners/alice/count").status_code == 503
    assert client.get("/registry/owners/alice/documents/0").status_code == 503
    assert client.get("/registry/owners/alice/documents").status_code == 503

    r = client.post("/registry/emergency-stop", json={"stop": False}, headers=owner)
    assert r.json["paused"] is False
    assert client.get("/registry/owners/alice/count").json["count"] == 1


def test_emergency_stop_rejects_non_owner(client):
    headers = _login(client, "alice")
    r = client.post("/registry/emergency-stop", json={"stop": True}, headers=headers)
    assert r.status_code == 403
    assert r.json["error"] == "unauthorized"

    with session_scope(client.application) as s:
        assert s.query(RegistryState).one().paused is False


def test_emergency_stop_validates_stop_flag(client):
    headers = _login(client, "registry-owner")
    assert client.post("/registry/emergency-stop", json={}, headers=headers).status_code == 400
    assert client.post("/registry/emergency-stop", json={"stop": "maybe"}, headers=headers).status_code == 400
    r = client.post("/registry/emergency-stop", data={"stop": "true"}, headers=headers)
    assert r.status_code == 200
    assert r.json["paused"] is True


def test_events_expose_uploads_and_stops(client):
    alice = _login(client, "alice")
    _upload(client, alice, description="signed copy")

    owner = _login(client, "registry-owner")
    client.post("/registry/emergency-stop", json={"stop": True}, headers=owner)
    client.post("/registry/emergency-stop", json={"stop": True}, headers=owner)

    # the audit log stays readable while paused
    r = client.get("/registry/events?action=document.uploaded")
    assert r.status_code == 200
    (uploaded,) = r.json["events"]
    assert uploaded["actor"] == "alice"
    assert uploaded["metadata"]["owner"] == "alice"
    assert uploaded["metadata"]["content_hash"] == HASH
    assert uploaded["metadata"]["description"] == "signed copy"
    assert uploaded["metadata"]["uploaded_at"]

    stops = client.get("/registry/events?action=registry.emergency_stop").json["events"]
    assert [e["metadata"] for e in stops] == [
        {"owner": "registry-owner", "stop": True},
        {"owner": "registry-owner", "stop": True},
    ]

    assert client.get("/registry/events?limit=0").status_code == 400
    assert len(client.get("/registry/events?limit=1").json["events"]) == 1


def test_upload_persists_row_and_audit_in_one_commit(client):
    headers = _login(client, "alice")
    _upload(client, headers, tags="legal,deed")

    with session_scope(client.application) as s:
        row = s.query(RegistryDocument).one()
        assert (row.owner, row.position, row.tags) == ("alice", 0, "legal,deed")
        ev = s.query(AuditEvent).filter(AuditEvent.action == "document.uploaded").one()
        assert ev.entity_id == str(row.id)
        assert ev.request_id


def test_upload_reports_committed_index_when_paused_before_response(client, monkeypatch):
    def _append_then_pause(*args, **kwargs):
        index = service.append_document(*args, **kwargs)
        with session_scope(client.application) as s:
            service.emergency_stop(s, "registry-owner", True)
        return index

    monkeypatch.setattr(admin, "append_document", _append_then_pause)
    headers = _login(client, "alice")

    r = _upload(client, headers)
    assert r.status_code == 201
    assert r.json == {"success": True, "owner": "alice", "index": 0}

    with session_scope(client.application) as s:
        assert s.query(RegistryDocument).count() == 1
        assert s.query(RegistryState).one().paused is True


def test_upload_index_follows_own_sequence_when_others_append(client):
    bob = _login(client, "bob")
    assert _upload(client, bob).json["index"] == 0
    assert _upload(client, bob).json["index"] == 1

    alice = _login(client, "alice")
    assert _upload(client, alice).json["index"] == 0


def test_request_checks_run_before_pause_gate(client):
    owner = _login(client, "registry-owner")
    assert client.post("/registry/emergency-stop", json={"stop": True}, headers=owner).status_code == 200
    client.get("/auth/logout")

    r = _upload(client, owner)
    assert r.status_code == 401
    assert r.json["error"] == "unauthenticated"

    alice = _login(client, "alice")
    r = client.post("/registry/documents", json=["not", "an", "object"], headers=alice)
    assert r.status_code == 400
    assert r.json["error"] == "invalid_argument"

    r = _upload(client, alice)
    assert r.status_code == 503
    assert r.json["error"] == "operation_suspended"
