from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from app.formhub.modules.integrations.http import IntegrationError, build_url, request_json

logger = logging.getLogger(__name__)

API_VERSION = "v59.0"


@dataclass(frozen=True)
class SalesforceSession:
    access_token: str
    instance_url: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass(frozen=True)
class SalesforceClient:
    login_url: str
    client_id: str
    client_secret: str
    username: str
    password: str
    security_token: str = ""
    session_ttl_seconds: int = 3600
    timeout_seconds: int = 30

    def login(self) -> SalesforceSession:
        """OAuth username-password flow; the security token is appended to the password."""
        data, _ = request_json(
            build_url(self.login_url, "/services/oauth2/token"),
            method="POST",
            form={
                "grant_type": "password",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "username": self.username,
                "password": self.password + self.security_token,
            },
            timeout_seconds=self.timeout_seconds,
            service="Salesforce",
        )
        token = (data or {}).get("access_token") if isinstance(data, dict) else None
        instance_url = (data or {}).get("instance_url") if isinstance(data, dict) else None
        if not token or not instance_url:
            raise IntegrationError("Salesforce login failed: missing access token")
        logger.info("Authenticated with Salesforce instance=%s", instance_url)
        return SalesforceSession(
            access_token=token,
            instance_url=instance_url,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.session_ttl_seconds),
        )

    def create_sobject(self, session: SalesforceSession, sobject: str, fields: dict[str, Any]) -> str:
        if session.is_expired():
            raise IntegrationError("Salesforce session expired; log in again")
        data, _ = request_json(
            build_url(session.instance_url, f"/services/data/{API_VERSION}/sobjects/{urllib.parse.quote(sobject)}/"),
            method="POST",
            headers={"Authorization": f"Bearer {session.access_token}"},
            body=fields,
            timeout_seconds=self.timeout_seconds,
            service="Salesforce",
        )
        if not isinstance(data, dict) or not data.get("success") or not data.get("id"):
            errors = (data or {}).get("errors") if isinstance(data, dict) else None
            raise IntegrationError(f"Failed to create {sobject}: {errors or data}")
        return str(data["id"])

    def create_account_and_contact(
        self,
        session: SalesforceSession,
        *,
        first_name: str,
        last_name: str,
        email: str,
        company_name: str | None = None,
    ) -> dict[str, str]:
        account_name = company_name or f"{first_name} {last_name}".strip()
        account_id = self.create_sobject(session, "Account", {"Name": account_name})
        contact_id = self.create_sobject(
            session,
            "Contact",
            {"FirstName": first_name, "LastName": last_name, "Email": email, "AccountId": account_id},
        )
        return {"account_id": account_id, "contact_id": contact_id}
