import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.docreg.config import load_config
from app.docreg.db import init_db, teardown_db_session
from app.docreg.routes import bp as routes_bp
from app.docreg.auth import bp as auth_bp, load_current_user
from app.docreg.modules.document_registry.admin import bp as registry_bp
from app.docreg.modules.document_registry.service import RegistryError, RegistryNotInitialized

# Tables and columns the code expects; checked once before the first request.
_EXPECTED_SCHEMA: dict[str, tuple[str, ...]] = {
    "users": ("identity", "password_hash"),
    "audit_events": ("actor_identity", "action", "metadata_json", "client_ip"),
    "registry_state": ("owner_identity", "paused"),
    "registry_documents": ("owner", "position", "content_hash", "title", "description", "tags", "uploaded_at"),
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")
    logging.getLogger("app.docreg").setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # CSRF protection for cookie sessions
    from app.docreg.security import csrf_required, ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if csrf_required(request) and not validate_csrf(request):
            return jsonify({"error": "csrf_failed", "message": "CSRF token missing or invalid."}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("REGISTRY_OWNER"):
            raise RuntimeError("REGISTRY_OWNER must be set in production.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(registry_bp, url_prefix="/registry")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", None)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine is None:
                raise RuntimeError("sqlalchemy_engine not initialized")
            insp = sa_inspect(engine)
            for table, columns in _EXPECTED_SCHEMA.items():
                if not insp.has_table(table):
                    missing.append(f"{table} (table)")
                    continue
                cols = {c["name"] for c in insp.get_columns(table)}
                missing.extend(f"{table}.{col}" for col in columns if col not in cols)
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            return

        if missing:
            app.config["_schema_health_missing"] = missing
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_ok"] = not missing

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if not request.path.startswith(("/registry", "/auth")):
            return None
        if app.config.get("_schema_health_ok") is None:
            _run_schema_health_check()
        if app.config.get("_schema_health_ok") is False:
            return (
                jsonify(
                    {
                        "error": "schema_out_of_date",
                        "missing": app.config.get("_schema_health_missing") or [],
                    }
                ),
                500,
            )
        return None

    @app.errorhandler(RegistryError)
    def _err_registry(e: RegistryError):  # type: ignore[no-redef]
        app.logger.warning(
            "Registry call rejected: %s (%s) request_id=%s", e.code, e, getattr(g, "request_id", None)
        )
        return jsonify({"error": e.code, "message": str(e)}), e.status_code

    @app.errorhandler(RegistryNotInitialized)
    def _err_not_initialized(e: RegistryNotInitialized):  # type: ignore[no-redef]
        app.logger.error("Registry not initialized: %s", e)
        return jsonify({"error": "registry_not_initialized", "message": str(e)}), 503

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "not_found", "message": "Resource not found."}), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed."}), 405

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "payload_too_large", "message": "Request body too large."}), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in DO logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal_error", "message": "Internal server error."}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
