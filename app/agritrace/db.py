from __future__ import annotations

import logging
from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, g
from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.agritrace.errors import PersistenceError

logger = logging.getLogger(__name__)


def engine_kwargs_for(db_url: str, timeout_seconds: float) -> dict[str, object]:
    """
    Bounded timeouts per backend: sqlite waits on its busy lock, Postgres
    cancels statements server-side. Either way a slow write surfaces as an error.
    """
    kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if db_url.startswith("postgres"):
        kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
                "connect_args": {
                    "connect_timeout": max(1, int(timeout_seconds)),
                    "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
                },
            }
        )
    elif db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": timeout_seconds, "check_same_thread": False}
    return kwargs


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    timeout = float(app.config.get("DB_TIMEOUT_SECONDS") or 15.0)
    engine = create_engine(db_url, **engine_kwargs_for(db_url, timeout))
    if db_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _sqlite_fk_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.
    """
    if hasattr(g, "db_session") and g.db_session is not None:
        return g.db_session
    if app is None:
        from flask import current_app

        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        try:
            s.close()
        except SQLAlchemyError as e:
            logger.warning("Closing request session failed: %s", e)
        g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests: yields a session and commits/rolls back.
    """
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def commit_or_raise(s: Session, *, what: str) -> None:
    """Commit the unit of work; on failure roll back and raise PersistenceError."""
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Commit failed (%s): %s", what, e)
        raise PersistenceError(f"Could not save {what}.") from e
