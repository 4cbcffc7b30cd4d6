"""Tests for Jira / Salesforce / Odoo connectors with the network faked out."""
import io
import json
import urllib.error

import pytest
from werkzeug.security import generate_password_hash

from app.formhub import auth, create_app
from app.formhub.db import session_scope
from app.formhub.models import AuditEvent, Base, User
from app.formhub.modules.integrations import http
from app.formhub.modules.integrations.http import IntegrationError, build_url, request_json
from app.formhub.modules.integrations.jira_client import JiraClient

CONNECTOR_ENV = (
    "JIRA_BASE_URL", "JIRA_EMAIL", "JIRA_API_TOKEN", "JIRA_PROJECT_KEY",
    "ODOO_URL", "ODOO_DB", "ODOO_USERNAME", "ODOO_PASSWORD",
    "SALESFORCE_CLIENT_ID", "SALESFORCE_CLIENT_SECRET", "SALESFORCE_USERNAME",
    "SALESFORCE_PASSWORD", "SALESFORCE_TOKEN",
)


class _FakeResponse:
    def __init__(self, payload, headers=None):
        self._raw = json.dumps(payload).encode("utf-8") if payload is not None else b""
        self.headers = headers or {}

    def read(self):
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeUpstream:
    """Records requests and answers by URL substring."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, req, timeout=None):
        body = req.data.decode("utf-8") if req.data else ""
        self.calls.append({"url": req.full_url, "method": req.get_method(), "headers": dict(req.header_items()), "body": body})
        for fragment, reply in self.routes.items():
            if fragment in req.full_url:
                if isinstance(reply, Exception):
                    raise reply
                if isinstance(reply, tuple):
                    return _FakeResponse(*reply)
                return _FakeResponse(reply)
        raise AssertionError(f"unexpected request to {req.full_url}")


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in CONNECTOR_ENV:
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setattr(http.time, "sleep", lambda _s: None)
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(username="alice", email="alice@example.com", password_hash=generate_password_hash("password1")))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def headers(client):
    r = client.post("/auth/login", json={"email": "alice@example.com", "password": "password1"})
    return {"Authorization": f"Bearer {r.json['token']}"}


def _configure_jira(app):
    app.config.update(
        JIRA_BASE_URL="https://acme.atlassian.net",
        JIRA_EMAIL="bot@acme.test",
        JIRA_API_TOKEN="jira-token",
        JIRA_PROJECT_KEY="HELP",
    )


def test_connectors_require_login(client):
    assert client.post("/integrations/jira/issues", json={"summary": "x"}).status_code == 401


def test_unconfigured_connector_is_503(client, headers):
    r = client.post("/integrations/jira/issues", json={"summary": "Broken form"}, headers=headers)
    assert r.status_code == 503
    assert "JIRA_BASE_URL" in r.json["error"]

    assert client.post("/integrations/odoo/contacts", json={}, headers=headers).status_code == 503
    r = client.post("/integrations/salesforce/contacts", json={"last_name": "Smith"}, headers=headers)
    assert r.status_code == 503


def test_jira_issue(app, client, headers, monkeypatch):
    _configure_jira(app)
    upstream = _FakeUpstream({"/rest/api/2/issue": {"id": "10001", "key": "HELP-7"}})
    monkeypatch.setattr(http.urllib.request, "urlopen", upstream)

    r = client.post(
        "/integrations/jira/issues",
        json={"summary": "Form will not submit", "priority": "High", "link": "https://app.test/templates/3"},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json == {"issue_key": "HELP-7", "url": "https://acme.atlassian.net/browse/HELP-7"}

    call = upstream.calls[0]
    assert call["method"] == "POST"
    assert call["headers"]["Authorization"].startswith("Basic ")
    fields = json.loads(call["body"])["fields"]
    assert fields["project"] == {"key": "HELP"}
    assert fields["priority"] == {"name": "High"}
    assert "alice@example.com" in fields["description"]

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "integration.jira_issue").count() == 1


def test_jira_issue_validation(app, client, headers):
    _configure_jira(app)
    assert client.post("/integrations/jira/issues", json={"summary": "  "}, headers=headers).status_code == 400
    r = client.post("/integrations/jira/issues", json={"summary": "x", "priority": "Urgent"}, headers=headers)
    assert r.status_code == 400


def test_jira_upstream_error_is_502(app, client, headers, monkeypatch):
    _configure_jira(app)
    err = urllib.error.HTTPError("https://acme.atlassian.net/rest/api/2/issue", 500, "boom", hdrs=None, fp=io.BytesIO(b"oops"))
    monkeypatch.setattr(http.urllib.request, "urlopen", _FakeUpstream({"/rest/api/2/issue": err}))

    r = client.post("/integrations/jira/issues", json={"summary": "x"}, headers=headers)
    assert r.status_code == 502
    assert r.json["error"] == "Upstream service error"


def test_salesforce_contact(app, client, headers, monkeypatch):
    app.config.update(
        SALESFORCE_LOGIN_URL="https://login.salesforce.com",
        SALESFORCE_CLIENT_ID="cid",
        SALESFORCE_CLIENT_SECRET="csecret",
        SALESFORCE_USERNAME="api@acme.test",
        SALESFORCE_PASSWORD="pw",
        SALESFORCE_TOKEN="tok",
    )
    upstream = _FakeUpstream(
        {
            "/services/oauth2/token": {"access_token": "sf-access", "instance_url": "https://acme.my.salesforce.com"},
            "/sobjects/Account/": {"success": True, "id": "001A"},
            "/sobjects/Contact/": {"success": True, "id": "003C"},
        }
    )
    monkeypatch.setattr(http.urllib.request, "urlopen", upstream)

    r = client.post(
        "/integrations/salesforce/contacts",
        json={"first_name": "Alice", "last_name": "Liddell", "company_name": "Wonderland"},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json == {"account_id": "001A", "contact_id": "003C"}

    login_call, account_call, contact_call = upstream.calls
    assert "password=pwtok" in login_call["body"]
    assert account_call["headers"]["Authorization"] == "Bearer sf-access"
    assert json.loads(contact_call["body"])["AccountId"] == "001A"
    assert json.loads(contact_call["body"])["Email"] == "alice@example.com"


def test_salesforce_requires_last_name(app, client, headers):
    r = client.post("/integrations/salesforce/contacts", json={"first_name": "A"}, headers=headers)
    assert r.status_code == 400


def test_odoo_contact(app, client, headers, monkeypatch):
    app.config.update(
        ODOO_URL="https://acme.odoo.com",
        ODOO_DB="acme",
        ODOO_USERNAME="bot",
        ODOO_PASSWORD="pw",
    )
    upstream = _FakeUpstream(
        {
            "/web/session/authenticate": (
                {"jsonrpc": "2.0", "result": {"uid": 2}},
                {"Set-Cookie": "session_id=abc123; Path=/; HttpOnly"},
            ),
            "/web/dataset/call_kw/res.partner/create": {"jsonrpc": "2.0", "result": 42},
        }
    )
    monkeypatch.setattr(http.urllib.request, "urlopen", upstream)

    r = client.post("/integrations/odoo/contacts", json={"company_name": "Acme"}, headers=headers)
    assert r.status_code == 201
    assert r.json == {"partner_id": 42}

    create_call = upstream.calls[1]
    assert create_call["headers"]["Cookie"] == "session_id=abc123"
    params = json.loads(create_call["body"])["params"]
    assert params["args"] == [{"name": "alice", "email": "alice@example.com", "company_name": "Acme"}]


def test_odoo_rpc_error(app, client, headers, monkeypatch):
    app.config.update(ODOO_URL="https://acme.odoo.com", ODOO_DB="acme", ODOO_USERNAME="bot", ODOO_PASSWORD="bad")
    upstream = _FakeUpstream(
        {"/web/session/authenticate": {"jsonrpc": "2.0", "error": {"message": "Access Denied", "data": {}}}}
    )
    monkeypatch.setattr(http.urllib.request, "urlopen", upstream)

    r = client.post("/integrations/odoo/contacts", json={}, headers=headers)
    assert r.status_code == 502
    assert "Access Denied" in r.json["detail"]


def test_request_json_retries_rate_limit(monkeypatch):
    monkeypatch.setattr(http.time, "sleep", lambda _s: None)
    replies = [
        urllib.error.HTTPError("https://x.test/a", 429, "slow down", hdrs=None, fp=io.BytesIO(b"")),
        _FakeResponse({"ok": True}),
    ]

    def fake_urlopen(req, timeout=None):
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(http.urllib.request, "urlopen", fake_urlopen)
    data, _ = request_json("https://x.test/a", retries=1)
    assert data == {"ok": True}


def test_request_json_gives_up_after_transport_errors(monkeypatch):
    monkeypatch.setattr(http.time, "sleep", lambda _s: None)
    calls = []

    def fake_urlopen(req, timeout=None):
        calls.append(req.full_url)
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(http.urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(IntegrationError):
        request_json("https://x.test/a", retries=2)
    assert len(calls) == 3


def test_build_url():
    assert build_url("https://x.test/", "/a", {"q": "b c", "skip": None}) == "https://x.test/a?q=b+c"


def test_jira_client_surface(monkeypatch):
    client = JiraClient(base_url="https://acme.atlassian.net/", email="bot@example.com", api_token="t0k")
    assert client.issue_url("HELP 7") == "https://acme.atlassian.net/browse/HELP%207"

    public = sorted(n for n in vars(JiraClient) if not n.startswith("_") and callable(getattr(JiraClient, n)))
    assert public == ["create_issue", "issue_url"]

    monkeypatch.setattr(http.urllib.request, "urlopen", _FakeUpstream({"/rest/api/2/issue": {"id": "1"}}))
    with pytest.raises(IntegrationError):
        client.create_issue(project_key="HELP", summary="x", description="y")
