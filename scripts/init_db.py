"""
Create all tables directly from the models (local sqlite development only).

Deployed databases are managed by Alembic (`alembic upgrade head`, or
scripts/release.py); this script refuses to touch a production database.

Usage:
  python scripts/init_db.py
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.agritrace.models import Base  # noqa: E402
from scripts._db_utils import create_script_engine, script_database_url  # noqa: E402


def create_tables(*, database_url: str | None = None) -> None:
    db_url = database_url or script_database_url()
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        raise RuntimeError("init_db.py is for local development; use `alembic upgrade head` in production.")
    engine = create_script_engine(db_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    print(f"Tables created on {db_url[:50]}", flush=True)


def main() -> None:
    load_dotenv()
    create_tables()


if __name__ == "__main__":
    main()
