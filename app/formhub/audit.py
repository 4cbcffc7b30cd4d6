"""
Audit trail writer. Every mutation appends one AuditEvent inside the caller's
transaction, so the event commits or rolls back with the change it describes.
"""
import json
from typing import Any

from flask import current_app, g, has_request_context, request
from sqlalchemy.orm import Session

from app.formhub.models import AuditEvent, User

REASON_MAX = 512
CLIENT_IP_MAX = 64


def _clip(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value[:limit] or None


def _client_ip() -> str | None:
    """First X-Forwarded-For hop when TRUST_PROXY_HEADERS is on, else the socket peer."""
    if current_app.config.get("TRUST_PROXY_HEADERS"):
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return _clip(first_hop, CLIENT_IP_MAX)
    return _clip(request.remote_addr, CLIENT_IP_MAX)


def _encode_metadata(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    # datetimes, Decimals and similar values fall back to str()
    return json.dumps(metadata, sort_keys=True, default=str)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Stage an audit event on ``s``; the caller commits.

    Outside a request (scripts, tests) there is no client IP and the request id
    is whatever the caller passes.
    """
    in_request = has_request_context()
    if request_id is None and in_request:
        request_id = getattr(g, "request_id", None)

    ev = AuditEvent(action=action, entity_type=entity_type, entity_id=entity_id)
    ev.request_id = request_id
    ev.reason = _clip(reason, REASON_MAX)
    ev.metadata_json = _encode_metadata(metadata)
    ev.client_ip = _client_ip() if in_request else None
    if actor is not None:
        ev.actor_user_id = actor.id
        ev.actor_user_email = actor.email
    s.add(ev)
    return ev
