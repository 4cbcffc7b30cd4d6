from __future__ import annotations

import base64
import urllib.parse
from dataclasses import dataclass
from typing import Any

from app.formhub.modules.integrations.http import IntegrationError, build_url, request_json


@dataclass(frozen=True)
class JiraClient:
    base_url: str
    email: str
    api_token: str
    timeout_seconds: int = 30

    def _auth_header(self) -> str:
        token = f"{self.email}:{self.api_token}".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")

    def _request(self, method: str, path: str, *, params: dict[str, Any] | None = None, body: Any = None) -> Any:
        data, _ = request_json(
            build_url(self.base_url, path, params),
            method=method,
            headers={"Authorization": self._auth_header()},
            body=body,
            timeout_seconds=self.timeout_seconds,
            service="Jira",
        )
        return data

    def create_issue(
        self,
        *,
        project_key: str,
        summary: str,
        description: str,
        issue_type: str = "Task",
        priority: str | None = None,
    ) -> str:
        """Create an issue; returns its key (e.g. ``HELP-12``)."""
        fields: dict[str, Any] = {
            "project": {"key": project_key},
            "summary": summary,
            "description": description,
            "issuetype": {"name": issue_type},
        }
        if priority:
            fields["priority"] = {"name": priority}
        data = self._request("POST", "/rest/api/2/issue", body={"fields": fields})
        key = (data or {}).get("key")
        if not key:
            raise IntegrationError("Jira did not return an issue key")
        return str(key)

    def issue_url(self, issue_key: str) -> str:
        return build_url(self.base_url, f"/browse/{urllib.parse.quote(issue_key)}")
