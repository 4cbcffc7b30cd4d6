"""
Seed the first admin account (idempotent).

Reads ADMIN_EMAIL / ADMIN_USERNAME / ADMIN_PASSWORD. An existing account with
that email is promoted and unblocked; its password is never overwritten.
With ENV=production an unset ADMIN_PASSWORD is an error; elsewhere it
defaults to "change-me".

Usage:
  python scripts/init_db.py
"""
import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.formhub.models import User  # noqa: E402


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
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


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@formhub.local").strip().lower()
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip()
    admin_password = os.environ.get("ADMIN_PASSWORD") or ""
    env = (os.environ.get("ENV") or "").strip().lower()
    if not admin_password:
        if env in ("prod", "production"):
            raise RuntimeError("ADMIN_PASSWORD must be set when ENV=production.")
        admin_password = "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///formhub.db").strip()

    with _session_scope(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                username=admin_username,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                is_admin=True,
                is_blocked=False,
            )
            s.add(user)
            print(f"Created admin account: {admin_email}")
        else:
            user.is_admin = True
            user.is_blocked = False
            print(f"Admin account already present: {admin_email} (password unchanged)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
