from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from http.cookies import SimpleCookie
from typing import Any

from app.formhub.modules.integrations.http import IntegrationError, build_url, request_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OdooSession:
    """Authenticated Odoo web session. Pass it to every call; never cache it globally."""

    session_id: str
    uid: int
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass(frozen=True)
class OdooClient:
    url: str
    db: str
    username: str
    password: str
    session_ttl_seconds: int = 3600
    timeout_seconds: int = 30

    def _rpc(self, path: str, params: dict[str, Any], *, session: OdooSession | None = None) -> tuple[Any, dict[str, str]]:
        headers: dict[str, str] = {}
        if session is not None:
            if session.is_expired():
                raise IntegrationError("Odoo session expired; authenticate again")
            headers["Cookie"] = f"session_id={session.session_id}"
        body = {"jsonrpc": "2.0", "method": "call", "id": uuid.uuid4().hex, "params": params}
        data, resp_headers = request_json(
            build_url(self.url, path),
            method="POST",
            headers=headers,
            body=body,
            timeout_seconds=self.timeout_seconds,
            service="Odoo",
        )
        if not isinstance(data, dict):
            raise IntegrationError(f"Unexpected Odoo reply from {path}")
        if data.get("error"):
            err = data["error"]
            message = (err.get("data") or {}).get("message") or err.get("message") or "unknown error"
            raise IntegrationError(f"Odoo error from {path}: {message}")
        return data.get("result"), resp_headers

    def authenticate(self) -> OdooSession:
        result, headers = self._rpc(
            "/web/session/authenticate",
            {"db": self.db, "login": self.username, "password": self.password},
        )
        uid = (result or {}).get("uid") if isinstance(result, dict) else None
        if not uid:
            raise IntegrationError("Odoo authentication failed: no uid returned")

        cookie = SimpleCookie()
        cookie.load(headers.get("set-cookie", ""))
        morsel = cookie.get("session_id")
        session_id = morsel.value if morsel else (result or {}).get("session_id")
        if not session_id:
            raise IntegrationError("Odoo authentication failed: no session id returned")

        logger.info("Authenticated with Odoo uid=%s", uid)
        return OdooSession(
            session_id=str(session_id),
            uid=int(uid),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.session_ttl_seconds),
        )

    def call_kw(
        self,
        session: OdooSession,
        model: str,
        method: str,
        args: list[Any] | None = None,
        kwargs: dict[str, Any] | None = None,
    ) -> Any:
        result, _ = self._rpc(
            f"/web/dataset/call_kw/{model}/{method}",
            {"model": model, "method": method, "args": args or [], "kwargs": kwargs or {}},
            session=session,
        )
        return result

    def create_partner(self, session: OdooSession, *, name: str, email: str, company_name: str | None = None) -> int:
        """Create a res.partner contact; returns its id."""
        values: dict[str, Any] = {"name": name, "email": email}
        if company_name:
            values["company_name"] = company_name
        partner_id = self.call_kw(session, "res.partner", "create", [values])
        if isinstance(partner_id, list):
            partner_id = partner_id[0] if partner_id else None
        if not partner_id:
            raise IntegrationError("Odoo did not return a partner id")
        return int(partner_id)
