import secrets
from flask import session, Request

# Endpoints that establish the session (and hand out the token) are exempt.
_EXEMPT_ENDPOINT_PREFIXES = ("auth.",)
_UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def csrf_required(req: Request) -> bool:
    if req.method not in _UNSAFE_METHODS:
        return False
    return not (req.endpoint or "").startswith(_EXEMPT_ENDPOINT_PREFIXES)


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from the X-CSRF-Token header, form, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")

    if not token and req.is_json:
        json_data = req.get_json(silent=True)
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")

    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))
