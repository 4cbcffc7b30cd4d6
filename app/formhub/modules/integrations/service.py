from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from app.formhub.audit import record_event
from app.formhub.errors import ValidationError
from app.formhub.models import User
from app.formhub.modules.integrations.http import IntegrationNotConfigured
from app.formhub.modules.integrations.jira_client import JiraClient
from app.formhub.modules.integrations.odoo_client import OdooClient
from app.formhub.modules.integrations.salesforce_client import SalesforceClient

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

JIRA_PRIORITIES = ("Highest", "High", "Medium", "Low", "Lowest")


def _require(config: dict, service: str, *keys: str) -> None:
    missing = [k for k in keys if not (config.get(k) or "").strip()]
    if missing:
        raise IntegrationNotConfigured(f"{service} integration is not configured (missing: {', '.join(missing)})")


def jira_from_config(config: dict) -> JiraClient:
    _require(config, "Jira", "JIRA_BASE_URL", "JIRA_EMAIL", "JIRA_API_TOKEN", "JIRA_PROJECT_KEY")
    return JiraClient(base_url=config["JIRA_BASE_URL"], email=config["JIRA_EMAIL"], api_token=config["JIRA_API_TOKEN"])


def odoo_from_config(config: dict) -> OdooClient:
    _require(config, "Odoo", "ODOO_URL", "ODOO_DB", "ODOO_USERNAME", "ODOO_PASSWORD")
    return OdooClient(
        url=config["ODOO_URL"],
        db=config["ODOO_DB"],
        username=config["ODOO_USERNAME"],
        password=config["ODOO_PASSWORD"],
    )


def salesforce_from_config(config: dict) -> SalesforceClient:
    _require(
        config,
        "Salesforce",
        "SALESFORCE_LOGIN_URL",
        "SALESFORCE_CLIENT_ID",
        "SALESFORCE_CLIENT_SECRET",
        "SALESFORCE_USERNAME",
        "SALESFORCE_PASSWORD",
    )
    return SalesforceClient(
        login_url=config["SALESFORCE_LOGIN_URL"],
        client_id=config["SALESFORCE_CLIENT_ID"],
        client_secret=config["SALESFORCE_CLIENT_SECRET"],
        username=config["SALESFORCE_USERNAME"],
        password=config["SALESFORCE_PASSWORD"],
        security_token=config.get("SALESFORCE_TOKEN") or "",
    )


def _text(payload: dict, key: str) -> str:
    v = payload.get(key)
    return v.strip() if isinstance(v, str) else ""


def report_issue(s: "Session", config: dict, user: User, payload: dict) -> dict[str, Any]:
    """File a support ticket in Jira on behalf of ``user``."""
    summary = _text(payload, "summary")
    if not summary:
        raise ValidationError("Summary is required.")
    priority = _text(payload, "priority") or "Medium"
    if priority not in JIRA_PRIORITIES:
        raise ValidationError(f"Invalid priority. Must be one of: {', '.join(JIRA_PRIORITIES)}")
    link = _text(payload, "link")

    client = jira_from_config(config)
    description = f"Reported by: {user.username} <{user.email}>\nLink to the page: {link or '-'}"
    issue_key = client.create_issue(
        project_key=config["JIRA_PROJECT_KEY"],
        summary=summary,
        description=description,
        issue_type=_text(payload, "issue_type") or "Task",
        priority=priority,
    )
    record_event(
        s,
        actor=user,
        action="integration.jira_issue",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"issue_key": issue_key, "summary": summary},
    )
    s.commit()
    logger.info("Jira issue %s filed for user=%s", issue_key, user.id)
    return {"issue_key": issue_key, "url": client.issue_url(issue_key)}


def push_contact_to_salesforce(s: "Session", config: dict, user: User, payload: dict) -> dict[str, str]:
    first_name = _text(payload, "first_name")
    last_name = _text(payload, "last_name")
    if not last_name:
        raise ValidationError("Last name is required.")

    client = salesforce_from_config(config)
    session = client.login()
    ids = client.create_account_and_contact(
        session,
        first_name=first_name,
        last_name=last_name,
        email=user.email,
        company_name=_text(payload, "company_name") or None,
    )
    record_event(
        s,
        actor=user,
        action="integration.salesforce_contact",
        entity_type="User",
        entity_id=str(user.id),
        metadata=ids,
    )
    s.commit()
    return ids


def push_contact_to_odoo(s: "Session", config: dict, user: User, payload: dict) -> dict[str, int]:
    name = _text(payload, "name") or user.username
    client = odoo_from_config(config)
    session = client.authenticate()
    partner_id = client.create_partner(
        session,
        name=name,
        email=user.email,
        company_name=_text(payload, "company_name") or None,
    )
    record_event(
        s,
        actor=user,
        action="integration.odoo_contact",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"partner_id": partner_id},
    )
    s.commit()
    return {"partner_id": partner_id}
