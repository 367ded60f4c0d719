from __future__ import annotations

import re
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request

from app.docreg.access import require_login
from app.docreg.audit import event_metadata
from app.docreg.db import db_session
from app.docreg.models import User
from app.docreg.modules.document_registry.service import (
    EVENTS_DEFAULT_LIMIT,
    InvalidArgument,
    append_document,
    emergency_stop,
    ensure_registry,
    get_document,
    get_document_count,
    get_registry_status,
    list_documents,
    list_events,
)
from app.docreg.utils import isoformat_utc

bp = Blueprint("registry", __name__)

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict[str, Any]:
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise InvalidArgument("Request body must be a JSON object.")
        return data
    return request.form.to_dict()


def _parse_bool(value: Any) -> Any:
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE:
            return True
        if v in _FALSE:
            return False
    return value


def _parse_int(value: str | None, name: str) -> int:
    raw = (value or "").strip()
    if not re.fullmatch(r"-?\d+", raw):
        raise InvalidArgument(f"{name} must be an integer.")
    return int(raw)


@bp.before_request
def _ensure_registry_state():
    ensure_registry(db_session(), current_app.config.get("REGISTRY_OWNER"))


@bp.post("/documents")
@require_login
def upload():
    s = db_session()
    u = _current_user()
    data = _payload()

    index = append_document(
        s,
        u.identity,
        data.get("content_hash"),
        data.get("title"),
        data.get("description", ""),
        data.get("tags"),
    )
    return jsonify({"success": True, "owner": u.identity, "index": index}), 201


@bp.get("/owners/<owner>/count")
def document_count(owner: str):
    s = db_session()
    return jsonify({"owner": owner, "count": get_document_count(s, owner)})


@bp.get("/owners/<owner>/documents")
def owner_documents(owner: str):
    s = db_session()
    docs = list_documents(s, owner)
    return jsonify({"owner": owner, "count": len(docs), "documents": [d.to_dict() for d in docs]})


@bp.get("/owners/<owner>/documents/<index>")
def document_at(owner: str, index: str):
    s = db_session()
    idx = _parse_int(index, "index")
    doc = get_document(s, owner, idx)
    return jsonify({"owner": owner, "index": idx, **doc.to_dict()})


@bp.post("/emergency-stop")
@require_login
def toggle_emergency_stop():
    s = db_session()
    u = _current_user()
    data = _payload()
    if "stop" not in data:
        raise InvalidArgument("stop is required.")
    paused = emergency_stop(s, u.identity, _parse_bool(data.get("stop")))
    return jsonify({"ok": True, "paused": paused})


@bp.get("/status")
def status():
    return jsonify(get_registry_status(db_session()))


@bp.get("/events")
def events():
    s = db_session()
    action = (request.args.get("action") or "").strip() or None
    limit_raw = request.args.get("limit")
    limit = _parse_int(limit_raw, "limit") if limit_raw is not None else EVENTS_DEFAULT_LIMIT
    rows = list_events(s, action=action, limit=limit)
    return jsonify(
        {
            "events": [
                {
                    "id": ev.id,
                    "created_at": isoformat_utc(ev.created_at),
                    "action": ev.action,
                    "actor": ev.actor_identity,
                    "entity_type": ev.entity_type,
                    "entity_id": ev.entity_id,
                    "metadata": event_metadata(ev),
                }
                for ev in rows
            ]
        }
    )
