"""
Trace and batch identifier generation.

Identifiers are typed or scanned by downstream actors, so they use an
upper-case Crockford base32 alphabet (no I, L, O, U) after a date stamp:

    TR-20261018-7KQ9X2MDA4
    BT-20261018-N3F8WQ0ZKT

The random tail is the authoritative source. If it cannot be drawn, a
millisecond-timestamp fallback (``TR1760745600123``) is used; fallback IDs are
only advisory and the registry verifies them against the store before commit
like any other ID.
"""
from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.agritrace.errors import CollisionError

logger = logging.getLogger(__name__)

CROCKFORD_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
RANDOM_TAIL_LENGTH = 10  # 50 bits per day stamp

TRACE_PREFIX = "TR"
BATCH_PREFIX = "BT"


def random_tail(length: int = RANDOM_TAIL_LENGTH) -> str:
    return "".join(secrets.choice(CROCKFORD_ALPHABET) for _ in range(length))


_fallback_lock = threading.Lock()
_last_fallback_millis = 0


def _fallback_millis() -> int:
    """Wall-clock millis, bumped so no two fallback IDs in this process share a value."""
    global _last_fallback_millis
    with _fallback_lock:
        millis = max(int(time.time() * 1000), _last_fallback_millis + 1)
        _last_fallback_millis = millis
        return millis


def _stamped(prefix: str, tail_source: Callable[[], str]) -> str:
    try:
        tail = tail_source()
    except Exception as e:
        fallback = f"{prefix}{_fallback_millis()}"
        logger.warning("Identifier source unavailable (%s); using fallback %s", e, fallback)
        return fallback
    return f"{prefix}-{datetime.utcnow():%Y%m%d}-{tail}"


def new_trace_id(tail_source: Callable[[], str] = random_tail) -> str:
    return _stamped(TRACE_PREFIX, tail_source)


def new_batch_id(tail_source: Callable[[], str] = random_tail) -> str:
    return _stamped(BATCH_PREFIX, tail_source)


def is_fallback_id(value: str) -> bool:
    return "-" not in value


@dataclass(frozen=True)
class AllocatedIds:
    trace_id: str
    batch_id: str
    attempts: int


def identifiers_taken(s: Session, trace_id: str, batch_id: str) -> bool:
    """Fresh lookup against the batches table; never cached."""
    from app.agritrace.modules.batches.models import Batch

    stmt = select(Batch.id).where(or_(Batch.trace_id == trace_id, Batch.batch_id == batch_id)).limit(1)
    return s.execute(stmt).first() is not None


def allocate_identifiers(
    s: Session,
    *,
    max_attempts: int = 5,
    tail_source: Callable[[], str] = random_tail,
) -> AllocatedIds:
    """
    Draw a trace/batch ID pair that no existing batch uses, regenerating on a
    hit. Raises CollisionError once ``max_attempts`` draws have all collided.
    """
    attempts = max(1, int(max_attempts))
    seen: list[str] = []
    for attempt in range(1, attempts + 1):
        trace_id = new_trace_id(tail_source)
        batch_id = new_batch_id(tail_source)
        if not identifiers_taken(s, trace_id, batch_id):
            return AllocatedIds(trace_id=trace_id, batch_id=batch_id, attempts=attempt)
        seen.append(trace_id)
        logger.warning("Identifier collision (attempt %s/%s): trace_id=%s batch_id=%s", attempt, attempts, trace_id, batch_id)
    raise CollisionError(
        f"Could not allocate a unique trace ID after {attempts} attempts.",
        details={"attempts": attempts, "last_trace_ids": seen[-3:]},
    )
