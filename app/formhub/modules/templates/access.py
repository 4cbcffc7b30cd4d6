"""
Template access resolution.

Visibility follows a default-allow / allow-list switch:

* the owner and admins always see a template;
* a template with no access rules is public, anonymous viewers included;
* once any rule exists for a template, only viewers holding a rule with
  ``can_access=True`` see it. A template with rules for other users only is
  therefore hidden from everyone else.

Edit rights never come from access rules: owner or admin only. Deletion is a
separate, configurable policy (see ``resolve_delete``).

Every call re-reads the store; nothing is cached between calls.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Select, delete, exists, or_, select

from app.formhub.audit import record_event
from app.formhub.db import atomic
from app.formhub.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.formhub.models import User
from app.formhub.modules.templates.models import AccessRule, Template

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

POLICY_OWNER_OR_ADMIN = "owner_or_admin"
POLICY_OWNER_ADMIN_OR_GRANTEE = "owner_admin_or_grantee"


def get_template_or_404(s: "Session", template_id: int) -> Template:
    template = s.get(Template, template_id)
    if template is None:
        raise NotFoundError("Template not found", template_id=template_id)
    return template


def _is_owner_or_admin(viewer: User | None, template: Template) -> bool:
    if viewer is None:
        return False
    return bool(viewer.is_admin) or viewer.id == template.user_id


def resolve_view(s: "Session", viewer: User | None, template_id: int) -> bool:
    """May ``viewer`` (None for anonymous) read the template?"""
    template = get_template_or_404(s, template_id)
    if _is_owner_or_admin(viewer, template):
        return True

    rules = s.execute(
        select(AccessRule.user_id, AccessRule.can_access).where(AccessRule.template_id == template.id)
    ).all()
    if not rules:
        return True
    if viewer is None:
        return False
    return any(user_id == viewer.id and bool(can_access) for user_id, can_access in rules)


def resolve_edit(s: "Session", viewer: User | None, template_id: int) -> bool:
    """May ``viewer`` change the template? Access rules play no part here."""
    template = get_template_or_404(s, template_id)
    return _is_owner_or_admin(viewer, template)


def resolve_delete(s: "Session", viewer: User | None, template_id: int, policy: str = POLICY_OWNER_OR_ADMIN) -> bool:
    """
    Template deletion authorization.

    ``owner_or_admin`` matches ``resolve_edit``. ``owner_admin_or_grantee`` also
    lets viewers with a ``can_access=True`` rule delete. The
    TEMPLATE_DELETE_POLICY setting picks one.
    """
    template = get_template_or_404(s, template_id)
    if _is_owner_or_admin(viewer, template):
        return True
    if policy == POLICY_OWNER_OR_ADMIN:
        return False
    if policy != POLICY_OWNER_ADMIN_OR_GRANTEE:
        raise ValueError(f"Unknown template delete policy: {policy!r}")
    if viewer is None:
        return False
    granted = s.execute(
        select(AccessRule.id).where(
            AccessRule.template_id == template.id,
            AccessRule.user_id == viewer.id,
            AccessRule.can_access.is_(True),
        )
    ).first()
    return granted is not None


def require_view(s: "Session", viewer: User | None, template_id: int) -> Template:
    if not resolve_view(s, viewer, template_id):
        raise PermissionDeniedError("Access denied")
    return get_template_or_404(s, template_id)


def require_edit(s: "Session", viewer: User | None, template_id: int) -> Template:
    if not resolve_edit(s, viewer, template_id):
        raise PermissionDeniedError("Only the template owner or an admin can do this")
    return get_template_or_404(s, template_id)


def require_delete(s: "Session", viewer: User | None, template_id: int, policy: str = POLICY_OWNER_OR_ADMIN) -> Template:
    if not resolve_delete(s, viewer, template_id, policy):
        raise PermissionDeniedError("You do not have permission to delete this template")
    return get_template_or_404(s, template_id)


def visible_templates_query(viewer: User | None) -> Select:
    """SELECT of templates ``viewer`` may see; same decision as resolve_view."""
    stmt = select(Template)
    if viewer is not None and viewer.is_admin:
        return stmt

    has_rules = exists().where(AccessRule.template_id == Template.id)
    cond = ~has_rules
    if viewer is not None:
        granted = exists().where(
            AccessRule.template_id == Template.id,
            AccessRule.user_id == viewer.id,
            AccessRule.can_access.is_(True),
        )
        cond = or_(Template.user_id == viewer.id, cond, granted)
    return stmt.where(cond)


def list_access_rules(s: "Session", template_id: int) -> list[AccessRule]:
    get_template_or_404(s, template_id)
    return list(
        s.execute(
            select(AccessRule).where(AccessRule.template_id == template_id).order_by(AccessRule.user_id.asc())
        ).scalars()
    )


def set_access_rule(
    s: "Session",
    template_id: int,
    target_user_id: int,
    can_access: object,
    actor: User | None,
) -> AccessRule:
    """
    Upsert the (template, user) rule and drop any stale opposite-value row,
    all in one transaction. A failed commit rolls everything back and raises
    ConflictError; there is no retry.
    """
    if not isinstance(can_access, bool):
        raise ValidationError("can_access must be a boolean")
    template = get_template_or_404(s, template_id)
    if s.get(User, target_user_id) is None:
        raise NotFoundError("User not found", user_id=target_user_id)

    with atomic(s, what="access rule"):
        rule = s.execute(
            select(AccessRule)
            .where(AccessRule.template_id == template.id, AccessRule.user_id == target_user_id)
            .order_by(AccessRule.id.asc())
        ).scalars().first()
        if rule is None:
            rule = AccessRule(template_id=template.id, user_id=target_user_id, can_access=can_access)
            s.add(rule)
        else:
            rule.can_access = can_access
        rule.updated_at = datetime.utcnow()
        s.flush()

        s.execute(
            delete(AccessRule).where(
                AccessRule.template_id == template.id,
                AccessRule.user_id == target_user_id,
                AccessRule.id != rule.id,
            )
        )
        record_event(
            s,
            actor=actor,
            action="template.access_set",
            entity_type="Template",
            entity_id=str(template.id),
            metadata={"user_id": target_user_id, "can_access": can_access},
        )

    logger.info("Access rule set template=%s user=%s can_access=%s", template.id, target_user_id, can_access)
    return rule


def remove_access_rule(s: "Session", template_id: int, target_user_id: int, actor: User | None) -> None:
    template = get_template_or_404(s, template_id)
    with atomic(s, what="access rule removal"):
        result = s.execute(
            delete(AccessRule).where(
                AccessRule.template_id == template.id,
                AccessRule.user_id == target_user_id,
            )
        )
        if not result.rowcount:
            raise NotFoundError("Access rule not found", template_id=template.id, user_id=target_user_id)
        record_event(
            s,
            actor=actor,
            action="template.access_remove",
            entity_type="Template",
            entity_id=str(template.id),
            metadata={"user_id": target_user_id},
        )
