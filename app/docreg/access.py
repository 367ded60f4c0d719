from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g, jsonify

from app.docreg.models import User


def current_identity() -> str | None:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return user.identity


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Routes that act on behalf of the caller need a logged-in identity."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_identity() is None:
            return jsonify({"error": "unauthenticated", "message": "Login required."}), 401
        return fn(*args, **kwargs)

    return wrapped
