from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.agritrace.db import engine_kwargs_for


def script_database_url() -> str:
    return (os.environ.get("DATABASE_URL") or "sqlite:///agritrace.db").strip()


def create_script_engine(db_url: str):
    timeout = float(os.environ.get("DB_TIMEOUT_SECONDS") or 15.0)
    return create_engine(db_url, **engine_kwargs_for(db_url, timeout))


@contextmanager
def script_session(db_url: str):
    engine = create_script_engine(db_url)
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
