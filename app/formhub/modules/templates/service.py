from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func, select, update
from werkzeug.utils import secure_filename

from app.formhub.audit import record_event
from app.formhub.db import atomic
from app.formhub.errors import ValidationError
from app.formhub.models import User
from app.formhub.modules.templates.access import require_view, resolve_edit, visible_templates_query
from app.formhub.modules.templates.models import CHOICE_TYPES, QUESTION_TYPES, Comment, Like, Question, Template
from app.formhub.storage import Storage

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
ALLOWED_IMAGE_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})


def normalize_tags(raw: Any) -> list[str]:
    """Accept a list or a comma-separated string; strip, drop blanks, dedupe in order."""
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple, set)):
        items = list(raw)
    else:
        return []
    tags: list[str] = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def validate_questions(raw: Any) -> list[str]:
    errors: list[str] = []
    if not isinstance(raw, list):
        return ["Questions must be a list."]
    for idx, q in enumerate(raw, start=1):
        if not isinstance(q, dict):
            errors.append(f"Question {idx}: must be an object.")
            continue
        qtype = (q.get("type") or "").strip() if isinstance(q.get("type"), str) else ""
        if qtype not in QUESTION_TYPES:
            errors.append(f"Question {idx}: type must be one of: {', '.join(QUESTION_TYPES)}")
        value = q.get("value")
        if not isinstance(value, str) or not value.strip():
            errors.append(f"Question {idx}: prompt text is required.")
        options = q.get("options")
        if options is not None and not isinstance(options, list):
            errors.append(f"Question {idx}: options must be a list.")
        elif qtype in CHOICE_TYPES and not [o for o in (options or []) if str(o).strip()]:
            errors.append(f"Question {idx}: {qtype} questions need at least one option.")
        visible = q.get("visible", True)
        if not isinstance(visible, bool):
            errors.append(f"Question {idx}: visible must be a boolean.")
    return errors


def validate_template_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate template create/update payload. Returns list of errors."""
    errors: list[str] = []
    if not isinstance(payload, dict):
        return ["Request body must be a JSON object."]
    if not partial or "title" in payload:
        title = payload.get("title")
        if not isinstance(title, str) or not title.strip():
            errors.append("Title is required.")
        elif len(title.strip()) > MAX_TITLE_LENGTH:
            errors.append(f"Title must be at most {MAX_TITLE_LENGTH} characters.")
    if not partial or "questions" in payload:
        errors.extend(validate_questions(payload.get("questions") or []))
    return errors


def _build_questions(raw: list[dict]) -> list[Question]:
    questions = []
    for position, q in enumerate(raw):
        options = [str(o).strip() for o in (q.get("options") or []) if str(o).strip()]
        questions.append(
            Question(
                position=position,
                type=q["type"].strip(),
                value=q["value"].strip(),
                options=options,
                visible=q.get("visible", True),
            )
        )
    return questions


def _clean_text(v: Any) -> str | None:
    if not isinstance(v, str):
        return None
    return v.strip() or None


def create_template(s: "Session", payload: dict, user: User) -> Template:
    """Create a template and its questions in one transaction."""
    errors = validate_template_payload(payload)
    if errors:
        raise ValidationError("Invalid template", errors=errors)

    now = datetime.utcnow()
    with atomic(s, what="template"):
        template = Template(
            user_id=user.id,
            title=payload["title"].strip(),
            description=_clean_text(payload.get("description")),
            topic=_clean_text(payload.get("topic")),
            tags=normalize_tags(payload.get("tags")),
            likes_count=0,
            comment_count=0,
            created_at=now,
            updated_at=now,
        )
        template.questions = _build_questions(payload.get("questions") or [])
        s.add(template)
        s.flush()
        record_event(
            s,
            actor=user,
            action="template.create",
            entity_type="Template",
            entity_id=str(template.id),
            metadata={"title": template.title, "questions": len(template.questions)},
        )
    logger.info("Template created id=%s owner=%s", template.id, user.id)
    return template


def update_template(s: "Session", template: Template, payload: dict, user: User) -> Template:
    """
    Update metadata and, when ``questions`` is present, replace the whole
    question set (delete all, insert anew). Question ids do not survive an
    edit. Both steps commit together or not at all.
    """
    errors = validate_template_payload(payload, partial=True)
    if errors:
        raise ValidationError("Invalid template", errors=errors)

    changes: dict[str, Any] = {}
    with atomic(s, what="template update"):
        if "title" in payload:
            new_title = payload["title"].strip()
            if new_title != template.title:
                changes["title"] = {"old": template.title, "new": new_title}
                template.title = new_title
        for field in ("description", "topic"):
            if field in payload:
                new_value = _clean_text(payload.get(field))
                if new_value != getattr(template, field):
                    changes[field] = {"old": getattr(template, field), "new": new_value}
                    setattr(template, field, new_value)
        if "tags" in payload:
            new_tags = normalize_tags(payload.get("tags"))
            if new_tags != list(template.tags or []):
                changes["tags"] = {"old": list(template.tags or []), "new": new_tags}
                template.tags = new_tags
        if "questions" in payload:
            old_count = len(template.questions)
            template.questions.clear()
            s.flush()
            template.questions.extend(_build_questions(payload.get("questions") or []))
            changes["questions"] = {"old": old_count, "new": len(template.questions)}

        template.updated_at = datetime.utcnow()
        s.flush()
        record_event(
            s,
            actor=user,
            action="template.edit",
            entity_type="Template",
            entity_id=str(template.id),
            metadata={"changes": changes},
        )
    return template


def delete_template(s: "Session", template: Template, user: User, storage: Storage | None = None) -> None:
    template_id = template.id
    image_key = template.image_key
    with atomic(s, what="template delete"):
        s.delete(template)
        record_event(
            s,
            actor=user,
            action="template.delete",
            entity_type="Template",
            entity_id=str(template_id),
            metadata={"title": template.title},
        )
    if storage is not None and image_key:
        storage.delete(image_key)
    logger.info("Template deleted id=%s by user=%s", template_id, user.id)


def get_template(s: "Session", viewer: User | None, template_id: int) -> dict:
    """Template with its questions as ``viewer`` may see it; hidden questions only for editors."""
    template = require_view(s, viewer, template_id)
    can_edit = resolve_edit(s, viewer, template_id)
    data = template.to_dict(include_questions=True, include_hidden=can_edit)
    data["can_edit"] = can_edit
    data["liked_by_me"] = bool(viewer and has_liked(s, template.id, viewer.id))
    return data


def list_templates(
    s: "Session",
    viewer: User | None,
    *,
    search: str | None = None,
    tag: str | None = None,
    topic: str | None = None,
) -> list[Template]:
    stmt = visible_templates_query(viewer)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(Template.title.ilike(like) | Template.description.ilike(like))
    if topic:
        stmt = stmt.where(Template.topic == topic)
    templates = list(s.execute(stmt.order_by(Template.created_at.desc(), Template.id.desc())).scalars())
    if tag:
        templates = [t for t in templates if tag in (t.tags or [])]
    return templates


# ---------- Likes ----------

def _read_counter(s: "Session", template_id: int, column) -> int:
    return int(s.execute(select(column).where(Template.id == template_id)).scalar_one())


def has_liked(s: "Session", template_id: int, user_id: int) -> bool:
    row = s.execute(select(Like.id).where(Like.template_id == template_id, Like.user_id == user_id)).first()
    return row is not None


def like_template(s: "Session", template: Template, user: User) -> int:
    """Add the user's like and bump likes_count; returns the new count."""
    if has_liked(s, template.id, user.id):
        raise ValidationError("You have already liked this template")
    with atomic(s, what="like"):
        s.add(Like(user_id=user.id, template_id=template.id))
        s.flush()
        s.execute(
            update(Template)
            .where(Template.id == template.id)
            .values(likes_count=Template.likes_count + 1)
            .execution_options(synchronize_session=False)
        )
        record_event(s, actor=user, action="template.like", entity_type="Template", entity_id=str(template.id))
    s.refresh(template)
    return _read_counter(s, template.id, Template.likes_count)


def unlike_template(s: "Session", template: Template, user: User) -> int:
    if not has_liked(s, template.id, user.id):
        raise ValidationError("You have not liked this template")
    with atomic(s, what="unlike"):
        s.query(Like).filter(Like.template_id == template.id, Like.user_id == user.id).delete(
            synchronize_session=False
        )
        s.execute(
            update(Template)
            .where(Template.id == template.id)
            .values(likes_count=case((Template.likes_count > 0, Template.likes_count - 1), else_=0))
            .execution_options(synchronize_session=False)
        )
        record_event(s, actor=user, action="template.unlike", entity_type="Template", entity_id=str(template.id))
    s.refresh(template)
    return _read_counter(s, template.id, Template.likes_count)


# ---------- Comments ----------

def add_comment(s: "Session", template: Template, user: User, content: Any) -> dict:
    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise ValidationError("Comment text is required.")
    with atomic(s, what="comment"):
        comment = Comment(template_id=template.id, user_id=user.id, content=text, created_at=datetime.utcnow())
        s.add(comment)
        s.flush()
        s.execute(
            update(Template)
            .where(Template.id == template.id)
            .values(comment_count=Template.comment_count + 1)
            .execution_options(synchronize_session=False)
        )
        record_event(
            s,
            actor=user,
            action="template.comment",
            entity_type="Comment",
            entity_id=str(comment.id),
            metadata={"template_id": template.id},
        )
    s.refresh(template)
    return {
        "id": comment.id,
        "template_id": template.id,
        "user_id": user.id,
        "username": user.username,
        "content": comment.content,
        "created_at": comment.created_at.isoformat(),
    }


def list_comments(s: "Session", template_id: int) -> list[dict]:
    rows = s.execute(
        select(Comment, User.username)
        .join(User, User.id == Comment.user_id)
        .where(Comment.template_id == template_id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    ).all()
    return [
        {
            "id": c.id,
            "template_id": c.template_id,
            "user_id": c.user_id,
            "username": username,
            "content": c.content,
            "created_at": c.created_at.isoformat() if c.created_at else None,
        }
        for c, username in rows
    ]


def reconcile_counters(s: "Session", template: Template, user: User) -> dict:
    """Recompute cached likes/comment counters from the join rows."""
    likes = s.execute(select(func.count(Like.id)).where(Like.template_id == template.id)).scalar_one()
    comments = s.execute(select(func.count(Comment.id)).where(Comment.template_id == template.id)).scalar_one()
    before = {"likes_count": template.likes_count, "comment_count": template.comment_count}
    with atomic(s, what="counter reconcile"):
        template.likes_count = int(likes)
        template.comment_count = int(comments)
        after = {"likes_count": template.likes_count, "comment_count": template.comment_count}
        record_event(
            s,
            actor=user,
            action="template.reconcile_counters",
            entity_type="Template",
            entity_id=str(template.id),
            metadata={"before": before, "after": after},
        )
    if before != after:
        logger.warning("Counter drift fixed template=%s before=%s after=%s", template.id, before, after)
    return {**after, "changed": before != after}


# ---------- Cover image ----------

def build_image_storage_key(template_id: int, filename: str, file_bytes: bytes) -> str:
    """Content-addressed key so a replaced image never overwrites the old object in place."""
    digest = hashlib.sha256(file_bytes).hexdigest()[:16]
    safe_filename = secure_filename(filename) or "image.bin"
    return f"templates/{template_id}/cover/{digest}-{safe_filename}"


def set_template_image(
    s: "Session",
    template: Template,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: User,
    storage: Storage,
) -> str:
    if not file_bytes:
        raise ValidationError("Image file is empty.")
    if (content_type or "").lower() not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"Unsupported image type. Allowed: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}")

    key = build_image_storage_key(template.id, filename, file_bytes)
    storage.put_bytes(key, file_bytes, content_type=content_type)
    old_key = template.image_key
    with atomic(s, what="template image"):
        template.image_key = key
        template.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="template.image_upload",
            entity_type="Template",
            entity_id=str(template.id),
            metadata={"filename": filename, "size_bytes": len(file_bytes)},
        )
    if old_key and old_key != key:
        storage.delete(old_key)
    return key
