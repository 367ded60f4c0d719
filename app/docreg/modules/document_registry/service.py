"""
Document registry core.

Owners append document records (content hash + bounded metadata) to their own
sequence; anyone can count or read a sequence by index. The registry owner can
flip an emergency stop that suspends every other operation.

Mutating operations hold a process-wide lock and the registry_state row lock
from validation through commit, so each call either fully applies or leaves no
trace.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.docreg.audit import record_event
from app.docreg.models import AuditEvent
from app.docreg.modules.document_registry.models import RegistryDocument, RegistryState
from app.docreg.utils import isoformat_utc, utcnow, utf8_len

logger = logging.getLogger(__name__)

CONTENT_HASH_LENGTH = 46
TITLE_MAX_BYTES = 256
DESCRIPTION_MAX_BYTES = 1023
TAGS_MAX_BYTES = 256
MAX_INDEX = 255  # indexes are 8-bit unsigned
IDENTITY_MAX_LENGTH = 128

EVENTS_DEFAULT_LIMIT = 100
EVENTS_MAX_LIMIT = 500

ACTION_DOCUMENT_UPLOADED = "document.uploaded"
ACTION_EMERGENCY_STOP = "registry.emergency_stop"

_registry_lock = threading.RLock()


class RegistryError(Exception):
    code = "registry_error"
    status_code = 400


class InvalidArgument(RegistryError):
    code = "invalid_argument"
    status_code = 400


class Unauthorized(RegistryError):
    code = "unauthorized"
    status_code = 403


class OperationSuspended(RegistryError):
    code = "operation_suspended"
    status_code = 503


class NotFound(RegistryError):
    code = "not_found"
    status_code = 404


class RegistryNotInitialized(RuntimeError):
    pass


@dataclass(frozen=True)
class DocumentRecord:
    content_hash: str
    title: str
    description: str
    tags: str
    uploaded_at: datetime

    @classmethod
    def from_row(cls, row: RegistryDocument) -> "DocumentRecord":
        return cls(
            content_hash=row.content_hash,
            title=row.title,
            description=row.description,
            tags=row.tags,
            uploaded_at=row.uploaded_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_hash": self.content_hash,
            "title": self.title,
            "description": self.description,
            "tags": self.tags,
            "uploaded_at": isoformat_utc(self.uploaded_at),
        }


# --- state & guards -------------------------------------------------------


def load_state(s: Session, *, for_update: bool = False) -> RegistryState:
    stmt = select(RegistryState).order_by(RegistryState.id.asc()).limit(1)
    if for_update:
        stmt = stmt.with_for_update()
    state = s.scalars(stmt).first()
    if state is None:
        raise RegistryNotInitialized("Registry state missing; set REGISTRY_OWNER or run scripts/init_db.py.")
    return state


def ensure_registry(s: Session, owner_identity: str | None) -> RegistryState:
    """
    Return the registry state, creating it with `owner_identity` on first use.
    An existing registry keeps its original owner.
    """
    with _registry_lock:
        state = s.scalars(select(RegistryState).order_by(RegistryState.id.asc()).limit(1)).first()
        if state is not None:
            if owner_identity and owner_identity != state.owner_identity:
                logger.warning(
                    "REGISTRY_OWNER=%s ignored; registry already owned by %s",
                    owner_identity,
                    state.owner_identity,
                )
            return state

        owner = (owner_identity or "").strip()
        if not owner:
            raise RegistryNotInitialized("REGISTRY_OWNER must be set to bootstrap the registry.")
        if len(owner) > IDENTITY_MAX_LENGTH:
            raise RegistryNotInitialized("REGISTRY_OWNER is too long.")
        now = utcnow()
        state = RegistryState(owner_identity=owner, paused=False, created_at=now, updated_at=now)
        s.add(state)
        try:
            s.commit()
        except SQLAlchemyError:
            s.rollback()
            raise
        logger.info("Registry bootstrapped (owner=%s)", owner)
        return state


def require_not_paused(state: RegistryState) -> None:
    if state.paused:
        raise OperationSuspended("Registry is paused by emergency stop.")


def require_registry_owner(state: RegistryState, caller: str | None) -> None:
    if not caller or caller != state.owner_identity:
        raise Unauthorized("Only the registry owner can perform this operation.")


def _require_identity(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{name} identity is required.")
    if len(value) > IDENTITY_MAX_LENGTH:
        raise InvalidArgument(f"{name} identity must be at most {IDENTITY_MAX_LENGTH} characters.")
    return value


def _require_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise InvalidArgument(f"{name} must be a string.")
    return value


def validate_document_fields(content_hash: Any, title: Any, description: Any, tags: Any) -> None:
    """Length checks, in order; lengths are UTF-8 byte counts."""
    if utf8_len(_require_str(content_hash, "content_hash")) != CONTENT_HASH_LENGTH:
        raise InvalidArgument(f"content_hash must be exactly {CONTENT_HASH_LENGTH} bytes.")
    n = utf8_len(_require_str(title, "title"))
    if n < 1 or n > TITLE_MAX_BYTES:
        raise InvalidArgument(f"title must be 1-{TITLE_MAX_BYTES} bytes.")
    if utf8_len(_require_str(description, "description")) > DESCRIPTION_MAX_BYTES:
        raise InvalidArgument(f"description must be at most {DESCRIPTION_MAX_BYTES} bytes.")
    n = utf8_len(_require_str(tags, "tags"))
    if n < 1 or n > TAGS_MAX_BYTES:
        raise InvalidArgument(f"tags must be 1-{TAGS_MAX_BYTES} bytes.")


def _validate_index(index: Any) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(index, bool) or not isinstance(index, int):
        raise InvalidArgument("index must be an integer.")
    if index < 0 or index > MAX_INDEX:
        raise InvalidArgument(f"index must be between 0 and {MAX_INDEX}.")
    return index


def _count(s: Session, owner: str) -> int:
    stmt = select(func.count()).select_from(RegistryDocument).where(RegistryDocument.owner == owner)
    return int(s.scalar(stmt) or 0)


def _emit(s: Session, **kwargs: Any) -> None:
    # Savepoint: a failed audit insert must not undo the registry change.
    try:
        with s.begin_nested():
            record_event(s, **kwargs)
    except SQLAlchemyError:
        logger.exception("Failed to record audit event (action=%s)", kwargs.get("action"))


# --- operations -----------------------------------------------------------


def append_document(
    s: Session,
    caller: str | None,
    content_hash: str,
    title: str,
    description: str,
    tags: str,
) -> int:
    """
    Append a document to the caller's sequence and emit `document.uploaded`.
    Returns the zero-based index assigned inside the locked transaction.
    Raises OperationSuspended or InvalidArgument without touching state.
    """
    with _registry_lock:
        try:
            state = load_state(s, for_update=True)
            require_not_paused(state)
            owner = _require_identity(caller, "caller")
            validate_document_fields(content_hash, title, description, tags)

            position = _count(s, owner)
            uploaded_at = utcnow()
            doc = RegistryDocument(
                owner=owner,
                position=position,
                content_hash=content_hash,
                title=title,
                description=description,
                tags=tags,
                uploaded_at=uploaded_at,
            )
            s.add(doc)
            s.flush()

            _emit(
                s,
                actor_identity=owner,
                action=ACTION_DOCUMENT_UPLOADED,
                entity_type="RegistryDocument",
                entity_id=str(doc.id),
                metadata={
                    "owner": owner,
                    "content_hash": content_hash,
                    "title": title,
                    "description": description,
                    "tags": tags,
                    "uploaded_at": isoformat_utc(uploaded_at),
                    "index": position,
                },
            )
            s.commit()
        except Exception:
            s.rollback()
            raise

    logger.info("Document uploaded (owner=%s index=%s content_hash=%s)", owner, position, content_hash)
    return position


def upload_document(
    s: Session,
    caller: str | None,
    content_hash: str,
    title: str,
    description: str,
    tags: str,
) -> bool:
    """Append and report success; failures raise instead of returning False."""
    append_document(s, caller, content_hash, title, description, tags)
    return True


def get_document_count(s: Session, owner: str) -> int:
    state = load_state(s)
    require_not_paused(state)
    return _count(s, _require_identity(owner, "owner"))


def get_document(s: Session, owner: str, index: int) -> DocumentRecord:
    state = load_state(s)
    require_not_paused(state)
    owner = _require_identity(owner, "owner")
    index = _validate_index(index)

    count = _count(s, owner)
    if count == 0:
        raise NotFound("Owner has no documents.")
    if index >= count:
        raise NotFound(f"No document at index {index}; owner has {count}.")

    row = s.scalars(
        select(RegistryDocument).where(RegistryDocument.owner == owner, RegistryDocument.position == index)
    ).one()
    return DocumentRecord.from_row(row)


def list_documents(s: Session, owner: str) -> list[DocumentRecord]:
    state = load_state(s)
    require_not_paused(state)
    owner = _require_identity(owner, "owner")
    rows = s.scalars(
        select(RegistryDocument).where(RegistryDocument.owner == owner).order_by(RegistryDocument.position.asc())
    ).all()
    return [DocumentRecord.from_row(r) for r in rows]


def emergency_stop(s: Session, caller: str | None, stop: bool) -> bool:
    """
    Set the pause flag. Registry owner only; never gated by the flag itself.
    Repeating the current value still emits an audit entry.
    """
    with _registry_lock:
        try:
            state = load_state(s, for_update=True)
            require_registry_owner(state, caller)
            if not isinstance(stop, bool):
                raise InvalidArgument("stop must be a boolean.")

            state.paused = stop
            state.updated_at = utcnow()
            s.flush()

            _emit(
                s,
                actor_identity=state.owner_identity,
                action=ACTION_EMERGENCY_STOP,
                entity_type="RegistryState",
                entity_id=str(state.id),
                metadata={"owner": state.owner_identity, "stop": stop},
            )
            s.commit()
        except Exception:
            s.rollback()
            raise

    logger.warning("Emergency stop set to %s by %s", stop, caller)
    return stop


def get_registry_status(s: Session) -> dict[str, Any]:
    state = load_state(s)
    return {"owner": state.owner_identity, "paused": state.paused}


def list_events(s: Session, *, action: str | None = None, limit: int = EVENTS_DEFAULT_LIMIT) -> list[AuditEvent]:
    """Most recent `limit` audit events, returned oldest first."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > EVENTS_MAX_LIMIT:
        raise InvalidArgument(f"limit must be between 1 and {EVENTS_MAX_LIMIT}.")
    stmt = select(AuditEvent)
    if action:
        stmt = stmt.where(AuditEvent.action == action)
    rows = s.scalars(stmt.order_by(AuditEvent.id.desc()).limit(limit)).all()
    return list(reversed(rows))
