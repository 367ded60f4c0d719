from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.docreg.models import Base
from app.docreg.utils import utcnow


class RegistryState(Base):
    """
    Single-row table: the registry owner and the emergency-stop flag.
    owner_identity is written once at bootstrap and never changed afterwards.
    """

    __tablename__ = "registry_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_identity: Mapped[str] = mapped_column(String(128), nullable=False)
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class RegistryDocument(Base):
    """
    One entry in an owner's append-only document sequence.
    Rows are inserted once and never updated or deleted.
    """

    __tablename__ = "registry_documents"
    __table_args__ = (
        UniqueConstraint("owner", "position", name="uq_registry_documents_owner_position"),
        Index("idx_registry_documents_owner", "owner"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # zero-based index within owner

    content_hash: Mapped[str] = mapped_column(String(46), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(String(1023), nullable=False, default="")
    tags: Mapped[str] = mapped_column(String(256), nullable=False)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
