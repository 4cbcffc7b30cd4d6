from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.formhub.audit import record_event
from app.formhub.db import atomic
from app.formhub.errors import ValidationError
from app.formhub.models import User
from app.formhub.modules.responses.models import FormResponse

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.formhub.modules.templates.models import Template

logger = logging.getLogger(__name__)


def validate_answers(template: "Template", answers: Any) -> list[str]:
    """Answers must be a non-empty mapping keyed by ids of this template's questions."""
    if not isinstance(answers, dict) or not answers:
        return ["Responses are required."]
    known = {str(q.id) for q in template.questions}
    unknown = sorted(str(k) for k in answers if str(k) not in known)
    if unknown:
        return [f"Unknown question id(s): {', '.join(unknown)}"]
    return []


def submit_response(s: "Session", template: "Template", user: User, answers: Any) -> FormResponse:
    """Store one submission. Users may submit the same form more than once."""
    errors = validate_answers(template, answers)
    if errors:
        raise ValidationError("Invalid responses", errors=errors)

    payload = {str(k): v for k, v in answers.items()}
    with atomic(s, what="form response"):
        resp = FormResponse(
            user_id=user.id,
            template_id=template.id,
            response_json=json.dumps(payload),
            submitted_at=datetime.utcnow(),
        )
        s.add(resp)
        s.flush()
        record_event(
            s,
            actor=user,
            action="response.submit",
            entity_type="FormResponse",
            entity_id=str(resp.id),
            metadata={"template_id": template.id, "answers": len(payload)},
        )
    logger.info("Response submitted id=%s template=%s user=%s", resp.id, template.id, user.id)
    return resp


def list_responses(s: "Session", template_id: int) -> list[FormResponse]:
    return list(
        s.execute(
            select(FormResponse)
            .where(FormResponse.template_id == template_id)
            .order_by(FormResponse.submitted_at.asc(), FormResponse.id.asc())
        ).scalars()
    )
