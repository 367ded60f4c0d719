"""
Database access for the operational scripts (init_db.py, release.py).

Seeding the registry owner runs before the web app exists, so these helpers
build their own engine with the same pool settings the app uses and dispose
of it when the script is done.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.docreg.db import engine_options


def create_script_engine(db_url: str) -> Engine:
    return create_engine(db_url, **engine_options(db_url))


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """Session outside any Flask app context; commits on success and rolls back on error."""
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
