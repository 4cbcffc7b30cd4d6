"""Tests for template view/edit/delete resolution and access rule upserts."""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from werkzeug.security import generate_password_hash

from app.formhub import create_app
from app.formhub.db import session_scope
from app.formhub.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.formhub.models import Base, User
from app.formhub.modules.templates import access
from app.formhub.modules.templates.access import (
    list_access_rules,
    remove_access_rule,
    require_view,
    resolve_delete,
    resolve_edit,
    resolve_view,
    set_access_rule,
    visible_templates_query,
)
from app.formhub.modules.templates.models import AccessRule, Template


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def ids(app):
    """owner, admin, u1, u2 and one template owned by owner."""
    with session_scope(app) as s:
        users = {}
        for name, is_admin in (("owner", False), ("admin", True), ("u1", False), ("u2", False)):
            u = User(
                username=name,
                email=f"{name}@example.com",
                password_hash=generate_password_hash("password1"),
                is_admin=is_admin,
            )
            s.add(u)
            users[name] = u
        s.flush()
        t = Template(user_id=users["owner"].id, title="Survey", tags=[])
        s.add(t)
        s.flush()
        return {**{k: v.id for k, v in users.items()}, "template": t.id}


def _rule_rows(s, template_id, user_id):
    return s.execute(
        select(func.count(AccessRule.id)).where(AccessRule.template_id == template_id, AccessRule.user_id == user_id)
    ).scalar_one()


def test_template_without_rules_is_public(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        assert resolve_view(s, None, tid) is True
        assert resolve_view(s, s.get(User, ids["u1"]), tid) is True
        assert resolve_view(s, s.get(User, ids["u2"]), tid) is True


def test_grant_for_one_user_hides_template_from_others(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        owner = s.get(User, ids["owner"])
        set_access_rule(s, tid, ids["u1"], True, owner)

        assert resolve_view(s, s.get(User, ids["u1"]), tid) is True
        assert resolve_view(s, s.get(User, ids["u2"]), tid) is False
        assert resolve_view(s, None, tid) is False
        assert resolve_view(s, owner, tid) is True
        assert resolve_view(s, s.get(User, ids["admin"]), tid) is True


def test_deny_rule_hides_template_from_everyone_else(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        set_access_rule(s, tid, ids["u1"], False, s.get(User, ids["owner"]))

        assert resolve_view(s, s.get(User, ids["u1"]), tid) is False
        assert resolve_view(s, s.get(User, ids["u2"]), tid) is False
        assert resolve_view(s, None, tid) is False
        assert resolve_view(s, s.get(User, ids["owner"]), tid) is True


def test_grant_then_revoke_leaves_single_rule(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        owner = s.get(User, ids["owner"])
        set_access_rule(s, tid, ids["u1"], True, owner)
        set_access_rule(s, tid, ids["u1"], False, owner)

        assert _rule_rows(s, tid, ids["u1"]) == 1
        rules = list_access_rules(s, tid)
        assert [(r.user_id, r.can_access) for r in rules] == [(ids["u1"], False)]
        assert resolve_view(s, s.get(User, ids["u1"]), tid) is False


def test_set_access_rule_is_idempotent(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        owner = s.get(User, ids["owner"])
        first = set_access_rule(s, tid, ids["u1"], True, owner)
        second = set_access_rule(s, tid, ids["u1"], True, owner)

        assert first.id == second.id
        assert _rule_rows(s, tid, ids["u1"]) == 1
        assert resolve_view(s, s.get(User, ids["u1"]), tid) is True


def test_edit_ignores_access_rules(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        set_access_rule(s, tid, ids["u1"], True, s.get(User, ids["owner"]))

        assert resolve_edit(s, s.get(User, ids["u1"]), tid) is False
        assert resolve_edit(s, s.get(User, ids["u2"]), tid) is False
        assert resolve_edit(s, None, tid) is False
        assert resolve_edit(s, s.get(User, ids["owner"]), tid) is True
        assert resolve_edit(s, s.get(User, ids["admin"]), tid) is True


def test_delete_policy(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        set_access_rule(s, tid, ids["u1"], True, s.get(User, ids["owner"]))
        u1 = s.get(User, ids["u1"])

        assert resolve_delete(s, u1, tid, "owner_or_admin") is False
        assert resolve_delete(s, u1, tid, "owner_admin_or_grantee") is True
        assert resolve_delete(s, s.get(User, ids["u2"]), tid, "owner_admin_or_grantee") is False
        assert resolve_delete(s, s.get(User, ids["owner"]), tid, "owner_or_admin") is True
        with pytest.raises(ValueError):
            resolve_delete(s, u1, tid, "everyone")


def test_unknown_template_raises_not_found(app, ids):
    with session_scope(app) as s:
        with pytest.raises(NotFoundError):
            resolve_view(s, None, 9999)
        with pytest.raises(NotFoundError):
            resolve_edit(s, s.get(User, ids["owner"]), 9999)


def test_require_view_raises_permission_denied(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        set_access_rule(s, tid, ids["u1"], True, s.get(User, ids["owner"]))
        with pytest.raises(PermissionDeniedError):
            require_view(s, s.get(User, ids["u2"]), tid)
        assert require_view(s, s.get(User, ids["u1"]), tid).id == tid


def test_set_access_rule_validation(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        owner = s.get(User, ids["owner"])
        with pytest.raises(ValidationError):
            set_access_rule(s, tid, ids["u1"], "yes", owner)
        with pytest.raises(NotFoundError):
            set_access_rule(s, tid, 9999, True, owner)
        with pytest.raises(NotFoundError):
            set_access_rule(s, 9999, ids["u1"], True, owner)
        assert list_access_rules(s, tid) == []


def test_remove_access_rule_reopens_template(app, ids):
    with session_scope(app) as s:
        tid = ids["template"]
        owner = s.get(User, ids["owner"])
        set_access_rule(s, tid, ids["u1"], True, owner)
        assert resolve_view(s, s.get(User, ids["u2"]), tid) is False

        remove_access_rule(s, tid, ids["u1"], owner)
        assert resolve_view(s, s.get(User, ids["u2"]), tid) is True
        with pytest.raises(NotFoundError):
            remove_access_rule(s, tid, ids["u1"], owner)


def test_visible_query_agrees_with_resolve_view(app, ids):
    with session_scope(app) as s:
        owner = s.get(User, ids["owner"])
        public = ids["template"]
        granted = Template(user_id=owner.id, title="Granted to u1", tags=[])
        denied = Template(user_id=owner.id, title="Denied to u1", tags=[])
        own_u2 = Template(user_id=ids["u2"], title="u2's own", tags=[])
        s.add_all([granted, denied, own_u2])
        s.commit()
        set_access_rule(s, granted.id, ids["u1"], True, owner)
        set_access_rule(s, denied.id, ids["u1"], False, owner)
        set_access_rule(s, own_u2.id, ids["u1"], True, s.get(User, ids["u2"]))

        all_ids = [public, granted.id, denied.id, own_u2.id]
        viewers = [None] + [s.get(User, ids[k]) for k in ("owner", "admin", "u1", "u2")]
        for viewer in viewers:
            listed = set(s.execute(visible_templates_query(viewer)).scalars().all())
            listed_ids = {t.id for t in listed}
            expected = {tid for tid in all_ids if resolve_view(s, viewer, tid)}
            assert listed_ids == expected


def test_set_access_rule_rolls_back_when_commit_fails(app, ids, monkeypatch):
    def _fail(*args, **kwargs):
        raise OperationalError("INSERT INTO audit_events", {}, Exception("disk I/O error"))

    monkeypatch.setattr(access, "record_event", _fail)
    with session_scope(app) as s:
        with pytest.raises(ConflictError):
            set_access_rule(s, ids["template"], ids["u1"], True, s.get(User, ids["owner"]))

    with session_scope(app) as s:
        assert _rule_rows(s, ids["template"], ids["u1"]) == 0
        assert list_access_rules(s, ids["template"]) == []
        assert resolve_view(s, s.get(User, ids["u2"]), ids["template"]) is True
