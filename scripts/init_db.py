import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.docreg.models import Base, User  # noqa: E402
from app.docreg.modules.document_registry.service import ensure_registry  # noqa: E402
from scripts._db_utils import create_script_engine, script_session  # noqa: E402


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the registry-owner identity and the registry state in an idempotent way.
    Does NOT overwrite an existing user's password or re-own an existing registry.
    """
    owner_identity = (os.environ.get("REGISTRY_OWNER") or "registry-owner").strip()
    owner_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///docreg.db").strip()

    with script_session(db_url) as s:
        user = s.query(User).filter(User.identity == owner_identity).one_or_none()
        if not user:
            user = User(identity=owner_identity, password_hash=generate_password_hash(owner_password), is_active=True)
            s.add(user)
            s.flush()

        state = ensure_registry(s, owner_identity)

    print("Initialized database (seed_only).")
    print(f"Registry owner: {state.owner_identity}")
    print("Owner password: (from ADMIN_PASSWORD)")


def create_all(*, database_url: str | None = None) -> None:
    """Local development shortcut: create tables without Alembic."""
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///docreg.db").strip()
    engine = create_script_engine(db_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()


def main() -> None:
    if "--create-all" in sys.argv[1:]:
        create_all(database_url=None)
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
