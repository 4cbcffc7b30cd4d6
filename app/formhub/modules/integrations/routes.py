from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.formhub.db import db_session
from app.formhub.modules.integrations.http import IntegrationError, IntegrationNotConfigured
from app.formhub.modules.integrations.service import (
    push_contact_to_odoo,
    push_contact_to_salesforce,
    report_issue,
)
from app.formhub.rbac import current_user, require_auth

bp = Blueprint("integrations", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.errorhandler(IntegrationNotConfigured)
def _not_configured(e: IntegrationNotConfigured):
    current_app.logger.warning("Integration not configured: %s", e)
    return jsonify({"error": str(e)}), 503


@bp.errorhandler(IntegrationError)
def _integration_failed(e: IntegrationError):
    current_app.logger.error("Integration call failed: %s", e)
    return jsonify({"error": "Upstream service error", "detail": str(e)}), 502


@bp.post("/jira/issues")
@require_auth
def jira_issue_create():
    result = report_issue(db_session(), current_app.config, current_user(), _payload())
    return jsonify(result), 201


@bp.post("/salesforce/contacts")
@require_auth
def salesforce_contact_create():
    result = push_contact_to_salesforce(db_session(), current_app.config, current_user(), _payload())
    return jsonify(result), 201


@bp.post("/odoo/contacts")
@require_auth
def odoo_contact_create():
    result = push_contact_to_odoo(db_session(), current_app.config, current_user(), _payload())
    return jsonify(result), 201
