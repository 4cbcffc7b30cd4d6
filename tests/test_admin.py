"""Tests for admin user management, audit listing and counter reconciliation."""
import pytest
from werkzeug.security import generate_password_hash

from app.formhub import auth, create_app
from app.formhub.db import session_scope
from app.formhub.models import Base, User
from app.formhub.modules.responses.models import FormResponse
from app.formhub.modules.templates.models import AccessRule, Comment, Like, Template


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        for name, is_admin in (("admin", True), ("owner", False), ("member", False)):
            s.add(
                User(
                    username=name,
                    email=f"{name}@example.com",
                    password_hash=generate_password_hash("password1"),
                    is_admin=is_admin,
                )
            )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _headers(client, name):
    r = client.post("/auth/login", json={"email": f"{name}@example.com", "password": "password1"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json['token']}"}


def _uid(app, name):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == f"{name}@example.com").one().id


def test_admin_routes_require_admin(client):
    assert client.get("/admin/users").status_code == 401
    assert client.get("/admin/users", headers=_headers(client, "member")).status_code == 403

    r = client.get("/admin/users", headers=_headers(client, "admin"))
    assert r.status_code == 200
    assert {u["username"] for u in r.json} == {"admin", "owner", "member"}


def test_block_and_unblock(app, client):
    admin_h = _headers(client, "admin")
    member_h = _headers(client, "member")
    member_id = _uid(app, "member")

    r = client.post(f"/admin/block/{member_id}", headers=admin_h)
    assert r.status_code == 200
    assert r.json["user"]["is_blocked"] is True

    # existing token stops working immediately
    assert client.get("/auth/me", headers=member_h).status_code == 403
    r = client.post("/auth/login", json={"email": "member@example.com", "password": "password1"})
    assert r.status_code == 403

    r = client.post(f"/admin/unblock/{member_id}", headers=admin_h)
    assert r.status_code == 200
    assert client.get("/auth/me", headers=member_h).status_code == 200


def test_admin_cannot_act_on_self(app, client):
    admin_h = _headers(client, "admin")
    admin_id = _uid(app, "admin")
    assert client.post(f"/admin/block/{admin_id}", headers=admin_h).status_code == 400
    assert client.delete(f"/admin/delete/{admin_id}", headers=admin_h).status_code == 400
    r = client.post(f"/admin/users/{admin_id}/admin", json={"is_admin": False}, headers=admin_h)
    assert r.status_code == 400


def test_unknown_user_is_404(client):
    assert client.post("/admin/block/9999", headers=_headers(client, "admin")).status_code == 404


def test_grant_and_revoke_admin(app, client):
    admin_h = _headers(client, "admin")
    member_id = _uid(app, "member")

    assert client.post(f"/admin/users/{member_id}/admin", json={"is_admin": "yes"}, headers=admin_h).status_code == 400

    r = client.post(f"/admin/users/{member_id}/admin", json={"is_admin": True}, headers=admin_h)
    assert r.status_code == 200
    assert r.json["user"]["is_admin"] is True
    assert client.get("/admin/users", headers=_headers(client, "member")).status_code == 200

    r = client.post(f"/admin/users/{member_id}/admin", json={"is_admin": False}, headers=admin_h)
    assert r.json["user"]["is_admin"] is False


def test_delete_user_keeps_other_data_consistent(app, client):
    owner_h = _headers(client, "owner")
    member_h = _headers(client, "member")
    member_id = _uid(app, "member")

    r = client.post(
        "/templates",
        json={"title": "Owner form", "questions": [{"type": "string", "value": "Name"}]},
        headers=owner_h,
    )
    owner_tid = r.json["id"]
    q_id = r.json["questions"][0]["id"]
    r = client.post("/templates", json={"title": "Member form", "questions": []}, headers=member_h)
    member_tid = r.json["id"]

    client.put(f"/templates/{owner_tid}/access/{member_id}", json={"can_access": True}, headers=owner_h)
    assert client.post(f"/templates/{owner_tid}/like", headers=member_h).status_code == 200
    assert client.post(f"/templates/{owner_tid}/comments", json={"content": "hi"}, headers=member_h).status_code == 201
    r = client.post(f"/templates/{owner_tid}/responses", json={"responses": {str(q_id): "Mem"}}, headers=member_h)
    assert r.status_code == 201
    response_id = r.json["response"]["id"]

    r = client.delete(f"/admin/delete/{member_id}", headers=_headers(client, "admin"))
    assert r.status_code == 200
    assert r.json["templates_deleted"] == [member_tid]

    with session_scope(app) as s:
        assert s.get(User, member_id) is None
        assert s.get(Template, member_tid) is None
        owner_template = s.get(Template, owner_tid)
        assert owner_template.likes_count == 0
        assert owner_template.comment_count == 0
        assert s.query(Like).filter(Like.user_id == member_id).count() == 0
        assert s.query(Comment).filter(Comment.user_id == member_id).count() == 0
        assert s.query(AccessRule).filter(AccessRule.user_id == member_id).count() == 0
        kept = s.get(FormResponse, response_id)
        assert kept is not None
        assert kept.user_id is None

    # with the only rule gone the owner's template is public again
    assert client.get(f"/templates/{owner_tid}").status_code == 200
    # and the deleted account's token is dead
    assert client.get("/auth/me", headers=member_h).status_code == 401


def test_audit_listing(app, client):
    admin_h = _headers(client, "admin")
    client.post(f"/admin/block/{_uid(app, 'member')}", headers=admin_h)

    r = client.get("/admin/audit?action=user.block", headers=admin_h)
    assert r.status_code == 200
    assert len(r.json) == 1
    assert r.json[0]["actor_user_email"] == "admin@example.com"

    assert client.get("/admin/audit?limit=abc", headers=admin_h).status_code == 400


def test_reconcile_counters(app, client):
    owner_h = _headers(client, "owner")
    r = client.post("/templates", json={"title": "Drifted", "questions": []}, headers=owner_h)
    tid = r.json["id"]
    client.post(f"/templates/{tid}/like", headers=_headers(client, "member"))
    with session_scope(app) as s:
        s.get(Template, tid).likes_count = 7

    admin_h = _headers(client, "admin")
    r = client.post(f"/admin/templates/{tid}/reconcile", headers=admin_h)
    assert r.status_code == 200
    assert r.json == {"likes_count": 1, "comment_count": 0, "changed": True}

    r = client.post(f"/admin/templates/{tid}/reconcile", headers=admin_h)
    assert r.json["changed"] is False
