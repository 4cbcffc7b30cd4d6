from __future__ import annotations

import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import jwt
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from app.formhub.audit import record_event
from app.formhub.db import db_session
from app.formhub.errors import AuthenticationError, ConflictError, PermissionDeniedError, RateLimitedError, ValidationError
from app.formhub.models import User
from app.formhub.rbac import current_user, require_auth

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_PUBLIC_PREFIXES = ("/health", "/healthz")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def issue_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "id": user.id,
        "email": user.email,
        "isAdmin": bool(user.is_admin),
        "iat": now,
        "exp": now + timedelta(minutes=int(current_app.config.get("JWT_EXPIRES_MINUTES") or 60)),
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=["HS256"])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Token is not valid") from e


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must be 'Bearer <token>'")
    return token.strip()


def load_current_user() -> None:
    """
    Resolves g.current_user from the bearer token (None when absent).
    Also assigns a per-request request_id for audit/log correlation.
    Invalid tokens raise 401; blocked accounts raise 403.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(_PUBLIC_PREFIXES) or request.method == "OPTIONS":
        return

    token = _bearer_token()
    if token is None:
        return

    claims = decode_token(token)
    try:
        user_id = int(claims.get("id"))
    except (TypeError, ValueError) as e:
        raise AuthenticationError("Token is not valid") from e

    user = db_session().get(User, user_id)
    if user is None:
        raise AuthenticationError("Token is not valid")
    if user.is_blocked:
        raise PermissionDeniedError("Your account is blocked. Access denied.")
    g.current_user = user


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.post("/register")
def register():
    data = _json_body()
    username = (data.get("username") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not username or not email or not password:
        raise ValidationError("All fields are required")
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email format.")
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters.")

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        raise ValidationError("User already exists")

    user = User(
        username=username,
        email=email,
        password_hash=generate_password_hash(password),
        is_admin=False,
        is_blocked=False,
    )
    s.add(user)
    try:
        s.flush()
        record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
        s.commit()
    except IntegrityError as e:
        s.rollback()
        raise ConflictError("User already exists") from e

    current_app.logger.info("User registered id=%s", user.id)
    return jsonify({"message": "User registered successfully", "user": user.to_dict()}), 201


@bp.post("/login")
def login():
    data = _json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        raise RateLimitedError("Too many login attempts. Please wait 5 minutes.")
    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
        )
        s.commit()
        raise ValidationError("Invalid credentials")
    if user.is_blocked:
        raise PermissionDeniedError("Your account is blocked. Access denied.")

    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"token": issue_token(user), "user": user.to_dict()})


@bp.get("/me")
@require_auth
def me():
    return jsonify(current_user().to_dict())
