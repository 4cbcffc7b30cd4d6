from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.formhub.db import db_session
from app.formhub.modules.responses.aggregate import aggregate
from app.formhub.modules.responses.service import list_responses, submit_response
from app.formhub.modules.templates.access import require_edit, require_view
from app.formhub.rbac import current_user, require_auth

bp = Blueprint("responses", __name__)


@bp.post("/templates/<int:template_id>/responses")
@bp.post("/submitForm/<int:template_id>")
@require_auth
def response_submit(template_id: int):
    s = db_session()
    u = current_user()
    template = require_view(s, u, template_id)
    data = request.get_json(silent=True)
    answers = data.get("responses") if isinstance(data, dict) else None
    resp = submit_response(s, template, u, answers)
    return jsonify({"message": "Form submitted successfully!", "response": resp.to_dict()}), 201


@bp.get("/templates/<int:template_id>/responses")
@bp.get("/formResponses/<int:template_id>")
@require_auth
def responses_list(template_id: int):
    s = db_session()
    require_edit(s, current_user(), template_id)
    return jsonify([r.to_dict() for r in list_responses(s, template_id)])


@bp.get("/templates/<int:template_id>/responses/summary")
@require_auth
def responses_summary(template_id: int):
    s = db_session()
    require_edit(s, current_user(), template_id)
    return jsonify([row.to_dict() for row in aggregate(s, template_id)])
