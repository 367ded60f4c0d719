from flask import Blueprint, current_app

from app.docreg.db import ping

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {
        "service": "docreg",
        "registry": "/registry/status",
        "health": "/health",
    }


@bp.get("/health")
def health():
    """Readiness check: confirms the database answers. Returns JSON."""
    try:
        ping(current_app)
    except Exception as e:
        current_app.logger.error("Health check DB ping failed: %s", e)
        return {"ok": False, "db": False}, 503
    return {"ok": True, "db": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for k8s probes. No DB access, minimal overhead.
    """
    return "ok", 200
