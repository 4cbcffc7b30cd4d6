from __future__ import annotations

import mimetypes

from flask import Blueprint, current_app, jsonify, request, send_file

from app.formhub.db import db_session
from app.formhub.errors import NotFoundError, ValidationError
from app.formhub.modules.templates.access import (
    list_access_rules,
    remove_access_rule,
    require_delete,
    require_edit,
    require_view,
    set_access_rule,
)
from app.formhub.modules.templates.service import (
    add_comment,
    create_template,
    delete_template,
    get_template,
    like_template,
    list_comments,
    list_templates,
    set_template_image,
    unlike_template,
    update_template,
)
from app.formhub.rbac import current_user, optional_user, require_auth
from app.formhub.storage import StorageError, storage_from_config

bp = Blueprint("templates", __name__)


@bp.errorhandler(StorageError)
def _storage_failed(e: StorageError):
    current_app.logger.error("Image storage failed: %s", e)
    return jsonify({"error": "Image storage unavailable", "detail": str(e)}), 503


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


# ---------- List / Create ----------
@bp.get("/templates")
def templates_list():
    s = db_session()
    templates = list_templates(
        s,
        optional_user(),
        search=(request.args.get("q") or "").strip() or None,
        tag=(request.args.get("tag") or "").strip() or None,
        topic=(request.args.get("topic") or "").strip() or None,
    )
    return jsonify([t.to_dict() for t in templates])


@bp.post("/templates")
@require_auth
def templates_create():
    s = db_session()
    template = create_template(s, _payload(), current_user())
    return jsonify(template.to_dict(include_questions=True, include_hidden=True)), 201


# ---------- Detail / Edit / Delete ----------
@bp.get("/templates/<int:template_id>")
def template_detail(template_id: int):
    return jsonify(get_template(db_session(), optional_user(), template_id))


@bp.put("/templates/<int:template_id>")
@require_auth
def template_update(template_id: int):
    s = db_session()
    u = current_user()
    template = require_edit(s, u, template_id)
    template = update_template(s, template, _payload(), u)
    return jsonify(template.to_dict(include_questions=True, include_hidden=True))


@bp.delete("/templates/<int:template_id>")
@require_auth
def template_delete(template_id: int):
    s = db_session()
    u = current_user()
    template = require_delete(s, u, template_id, current_app.config.get("TEMPLATE_DELETE_POLICY") or "owner_or_admin")
    delete_template(s, template, u, storage=storage_from_config(current_app.config))
    return jsonify({"message": "Template deleted"})


# ---------- Cover image ----------
@bp.put("/templates/<int:template_id>/image")
@require_auth
def template_image_upload(template_id: int):
    s = db_session()
    u = current_user()
    template = require_edit(s, u, template_id)
    f = request.files.get("image")
    if f is None or not f.filename:
        raise ValidationError("An 'image' file is required.")
    storage = storage_from_config(current_app.config)
    set_template_image(s, template, f.read(), f.filename, f.mimetype, u, storage)
    return jsonify(template.to_dict())


@bp.get("/templates/<int:template_id>/image")
def template_image_get(template_id: int):
    s = db_session()
    template = require_view(s, optional_user(), template_id)
    if not template.image_key:
        raise NotFoundError("Template has no image")
    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(template.image_key)
    except StorageError as e:
        current_app.logger.error("Template image missing from storage template=%s: %s", template.id, e)
        raise NotFoundError("Template image not found") from e
    mimetype = mimetypes.guess_type(template.image_key)[0] or "application/octet-stream"
    return send_file(fobj, mimetype=mimetype, max_age=300)


# ---------- Likes ----------
@bp.post("/templates/<int:template_id>/like")
@require_auth
def template_like(template_id: int):
    s = db_session()
    u = current_user()
    template = require_view(s, u, template_id)
    return jsonify({"likes_count": like_template(s, template, u)})


@bp.delete("/templates/<int:template_id>/unlike")
@require_auth
def template_unlike(template_id: int):
    s = db_session()
    u = current_user()
    template = require_view(s, u, template_id)
    return jsonify({"likes_count": unlike_template(s, template, u)})


# ---------- Comments ----------
@bp.get("/templates/<int:template_id>/comments")
def template_comments(template_id: int):
    s = db_session()
    template = require_view(s, optional_user(), template_id)
    return jsonify(list_comments(s, template.id))


@bp.post("/templates/<int:template_id>/comments")
@require_auth
def template_comment_create(template_id: int):
    s = db_session()
    u = current_user()
    template = require_view(s, u, template_id)
    data = _payload()
    content = data.get("content", data.get("text"))
    return jsonify({"comment": add_comment(s, template, u, content)}), 201


# ---------- Access rules ----------
@bp.get("/templates/<int:template_id>/access")
@require_auth
def template_access_list(template_id: int):
    s = db_session()
    require_edit(s, current_user(), template_id)
    return jsonify([r.to_dict() for r in list_access_rules(s, template_id)])


@bp.put("/templates/<int:template_id>/access/<int:user_id>")
@require_auth
def template_access_set(template_id: int, user_id: int):
    s = db_session()
    u = current_user()
    require_edit(s, u, template_id)
    rule = set_access_rule(s, template_id, user_id, _payload().get("can_access"), u)
    return jsonify(rule.to_dict())


@bp.delete("/templates/<int:template_id>/access/<int:user_id>")
@require_auth
def template_access_remove(template_id: int, user_id: int):
    s = db_session()
    u = current_user()
    require_edit(s, u, template_id)
    remove_access_rule(s, template_id, user_id, u)
    return jsonify({"message": "Access rule removed"})
