"""Tests for trace/batch identifier generation and allocation."""
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.agritrace import create_app
from app.agritrace.db import session_scope
from app.agritrace.errors import CollisionError
from app.agritrace.identifiers import (
    CROCKFORD_ALPHABET,
    allocate_identifiers,
    is_fallback_id,
    new_batch_id,
    new_trace_id,
)
from app.agritrace.models import Base, User
from app.agritrace.modules.batches.models import Batch

STAMPED_TRACE_RE = re.compile(r"^TR-\d{8}-[0-9A-HJKMNP-TV-Z]{10}$")


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(User(email="farmer@example.com", password_hash=generate_password_hash("pw"), role="farmer", is_active=True))

    return app


def _insert_batch(s, trace_id, batch_id):
    producer = s.query(User).filter(User.email == "farmer@example.com").one()
    s.add(
        Batch(
            trace_id=trace_id,
            batch_id=batch_id,
            product_name="Onions",
            quantity=Decimal("10"),
            quantity_unit="kg",
            producer_id=producer.id,
            production_timestamp=datetime(2026, 10, 1, 6, 0),
            location_state="Maharashtra",
            location_district="Nashik",
        )
    )


def _tails(*values):
    it = iter(values)
    return lambda: next(it)


def test_trace_id_format():
    tid = new_trace_id()
    assert STAMPED_TRACE_RE.match(tid), tid
    assert not is_fallback_id(tid)
    assert new_batch_id().startswith("BT-")


def test_alphabet_excludes_ambiguous_letters():
    assert len(CROCKFORD_ALPHABET) == 32
    for ch in "ILOU":
        assert ch not in CROCKFORD_ALPHABET


def test_fallback_id_when_random_source_fails():
    def broken():
        raise RuntimeError("entropy unavailable")

    tid = new_trace_id(broken)
    assert re.match(r"^TR\d{13}$", tid), tid
    assert is_fallback_id(tid)


def test_fallback_ids_distinct_within_one_millisecond():
    def broken():
        raise RuntimeError("entropy unavailable")

    ids = [new_trace_id(broken) for _ in range(50)]
    assert len(set(ids)) == 50
    assert ids == sorted(ids)


def test_ids_unique_across_threads():
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda _i: new_trace_id(), range(2000)))
    assert len(set(ids)) == len(ids)


def test_allocate_retries_after_collision(app):
    with session_scope(app) as s:
        taken = allocate_identifiers(s, tail_source=lambda: "AAAAAAAAAA")
        _insert_batch(s, taken.trace_id, taken.batch_id)

    with session_scope(app) as s:
        ids = allocate_identifiers(
            s,
            tail_source=_tails("AAAAAAAAAA", "AAAAAAAAAA", "BBBBBBBBBB", "CCCCCCCCCC"),
        )
    assert ids.attempts == 2
    assert ids.trace_id.endswith("-BBBBBBBBBB")
    assert ids.batch_id.endswith("-CCCCCCCCCC")


def test_allocate_gives_up_after_max_attempts(app):
    with session_scope(app) as s:
        taken = allocate_identifiers(s, tail_source=lambda: "ZZZZZZZZZZ")
        _insert_batch(s, taken.trace_id, taken.batch_id)

    with session_scope(app) as s:
        with pytest.raises(CollisionError) as exc:
            allocate_identifiers(s, max_attempts=3, tail_source=lambda: "ZZZZZZZZZZ")
    assert exc.value.details["attempts"] == 3
    assert exc.value.status_code == 409
