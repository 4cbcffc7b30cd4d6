from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.formhub.errors import AuthenticationError, PermissionDeniedError
from app.formhub.models import User


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise AuthenticationError("Please log in first")
    return u


def optional_user() -> User | None:
    return getattr(g, "current_user", None)


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_user()
        return fn(*args, **kwargs)

    return wrapped


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = current_user()
        if not user.is_admin:
            g.missing_permission = "admin"
            raise PermissionDeniedError("Access denied. Admins only.")
        return fn(*args, **kwargs)

    return wrapped
