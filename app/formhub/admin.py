from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session

from app.formhub.audit import record_event
from app.formhub.db import atomic, db_session
from app.formhub.errors import NotFoundError, ValidationError
from app.formhub.models import AuditEvent, User
from app.formhub.modules.responses.models import FormResponse
from app.formhub.modules.templates.access import get_template_or_404
from app.formhub.modules.templates.models import AccessRule, Comment, Like, Template
from app.formhub.modules.templates.service import reconcile_counters
from app.formhub.rbac import current_user, require_admin

bp = Blueprint("admin", __name__)


def _get_user_or_404(s: Session, user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", user_id=user_id)
    return user


def _not_self(actor: User, target: User, what: str) -> None:
    if actor.id == target.id:
        raise ValidationError(f"You cannot {what} your own account.")


def set_blocked(s: Session, target: User, blocked: bool, actor: User) -> User:
    _not_self(actor, target, "block" if blocked else "unblock")
    before = bool(target.is_blocked)
    with atomic(s, what="user block"):
        target.is_blocked = blocked
        record_event(
            s,
            actor=actor,
            action="user.block" if blocked else "user.unblock",
            entity_type="User",
            entity_id=str(target.id),
            metadata={"before": before, "after": blocked},
        )
    return target


def set_admin(s: Session, target: User, is_admin: object, actor: User) -> User:
    if not isinstance(is_admin, bool):
        raise ValidationError("is_admin must be a boolean")
    if not is_admin:
        _not_self(actor, target, "demote")
    before = bool(target.is_admin)
    with atomic(s, what="user admin flag"):
        target.is_admin = is_admin
        record_event(
            s,
            actor=actor,
            action="user.admin_grant" if is_admin else "user.admin_revoke",
            entity_type="User",
            entity_id=str(target.id),
            metadata={"before": before, "after": is_admin},
        )
    return target


def delete_user_account(s: Session, target: User, actor: User) -> dict:
    """
    Remove a user in one transaction:

    * templates they own go away with their questions, rules, likes,
      comments and responses;
    * their likes and comments on other templates are removed and the cached
      counters on those templates are decremented;
    * their access rules are removed;
    * their responses on other templates stay, with user_id cleared.
    """
    _not_self(actor, target, "delete")
    owned = list(s.execute(select(Template).where(Template.user_id == target.id)).scalars())
    owned_ids = [t.id for t in owned]

    with atomic(s, what="user delete"):
        like_filter = [Like.user_id == target.id]
        comment_filter = [Comment.user_id == target.id]
        if owned_ids:
            like_filter.append(Like.template_id.not_in(owned_ids))
            comment_filter.append(Comment.template_id.not_in(owned_ids))

        liked = s.execute(
            select(Like.template_id, func.count(Like.id)).where(*like_filter).group_by(Like.template_id)
        ).all()
        commented = s.execute(
            select(Comment.template_id, func.count(Comment.id)).where(*comment_filter).group_by(Comment.template_id)
        ).all()
        for template_id, n in liked:
            s.execute(
                update(Template)
                .where(Template.id == template_id)
                .values(likes_count=case((Template.likes_count > n, Template.likes_count - n), else_=0))
                .execution_options(synchronize_session=False)
            )
        for template_id, n in commented:
            s.execute(
                update(Template)
                .where(Template.id == template_id)
                .values(comment_count=case((Template.comment_count > n, Template.comment_count - n), else_=0))
                .execution_options(synchronize_session=False)
            )

        s.execute(delete(Like).where(Like.user_id == target.id))
        s.execute(delete(Comment).where(Comment.user_id == target.id))
        s.execute(delete(AccessRule).where(AccessRule.user_id == target.id))
        s.execute(
            update(FormResponse)
            .where(FormResponse.user_id == target.id)
            .values(user_id=None)
            .execution_options(synchronize_session=False)
        )
        for t in owned:
            s.delete(t)
        s.flush()

        record_event(
            s,
            actor=actor,
            action="user.delete",
            entity_type="User",
            entity_id=str(target.id),
            metadata={"email": target.email, "templates_deleted": owned_ids},
        )
        s.delete(target)

    current_app.logger.info("User deleted id=%s templates=%s by admin=%s", target.id, owned_ids, actor.id)
    return {"user_id": target.id, "templates_deleted": owned_ids}


# ---------- Users ----------
@bp.get("/users")
@require_admin
def users_list():
    s = db_session()
    users = s.query(User).order_by(User.email.asc()).all()
    return jsonify([u.to_dict() for u in users])


@bp.post("/block/<int:user_id>")
@require_admin
def user_block(user_id: int):
    s = db_session()
    target = set_blocked(s, _get_user_or_404(s, user_id), True, current_user())
    return jsonify({"message": "User blocked successfully", "user": target.to_dict()})


@bp.post("/unblock/<int:user_id>")
@require_admin
def user_unblock(user_id: int):
    s = db_session()
    target = set_blocked(s, _get_user_or_404(s, user_id), False, current_user())
    return jsonify({"message": "User unblocked successfully", "user": target.to_dict()})


@bp.post("/users/<int:user_id>/admin")
@require_admin
def user_set_admin(user_id: int):
    s = db_session()
    data = request.get_json(silent=True) or {}
    is_admin = data.get("is_admin") if isinstance(data, dict) else None
    target = set_admin(s, _get_user_or_404(s, user_id), is_admin, current_user())
    return jsonify({"user": target.to_dict()})


@bp.delete("/delete/<int:user_id>")
@require_admin
def user_delete(user_id: int):
    s = db_session()
    result = delete_user_account(s, _get_user_or_404(s, user_id), current_user())
    return jsonify({"message": "User deleted successfully", **result})


# ---------- Audit / maintenance ----------
@bp.get("/audit")
@require_admin
def audit_list():
    s = db_session()
    try:
        limit = max(1, min(int(request.args.get("limit") or 100), 500))
    except ValueError as e:
        raise ValidationError("limit must be an integer") from e
    q = s.query(AuditEvent)
    action = (request.args.get("action") or "").strip()
    if action:
        q = q.filter(AuditEvent.action == action)
    events = q.order_by(AuditEvent.id.desc()).limit(limit).all()
    return jsonify([e.to_dict() for e in events])


@bp.post("/templates/<int:template_id>/reconcile")
@require_admin
def template_reconcile(template_id: int):
    s = db_session()
    template = get_template_or_404(s, template_id)
    return jsonify(reconcile_counters(s, template, current_user()))
