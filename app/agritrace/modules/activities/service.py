"""
Activity ledger service layer.
Handles role gating, payload validation, composite submissions, and derived
metrics. Rows are only ever inserted.
"""
from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.agritrace.audit import record_event
from app.agritrace.constants import (
    ACTIVITY_TYPES,
    PLACED_ON_SHELF,
    PRODUCT_RECEIVED,
    PRODUCT_SOLD,
    QA_INSPECTION,
    STORAGE_END,
    STORAGE_START,
)
from app.agritrace.db import commit_or_raise
from app.agritrace.errors import ValidationError
from app.agritrace.modules.batches.service import get_batch
from app.agritrace.rbac import Actor, ensure_may_append
from app.agritrace.utils import combine_date_time, parse_timestamp

from .models import Activity
from .payloads import normalize_extra_data

logger = logging.getLogger(__name__)

# Within one submission the later type may not precede the earlier one.
SEQUENCED_PAIRS = (
    (PRODUCT_RECEIVED, STORAGE_START),
    (STORAGE_START, STORAGE_END),
)


@dataclass(frozen=True)
class ActivityEntry:
    activity_type: str
    timestamp: datetime
    extra_data: dict[str, Any]


def shelf_duration_hours(shelf_ts: datetime, sold_ts: datetime) -> int:
    """Whole hours on shelf, rounded half up. A sale before shelving is an input error."""
    seconds = (sold_ts - shelf_ts).total_seconds()
    if seconds < 0:
        raise ValidationError(
            "Sale time is earlier than shelf placement time.",
            details={"placed_on_shelf": shelf_ts.isoformat(), "product_sold": sold_ts.isoformat()},
        )
    return int(math.floor(seconds / 3600 + 0.5))


def _entry_timestamp(activity_type: str, raw: Mapping[str, Any]) -> datetime:
    if raw.get("timestamp"):
        return parse_timestamp(raw["timestamp"])
    if raw.get("date") or raw.get("time"):
        return combine_date_time(raw.get("date"), raw.get("time"))  # type: ignore[arg-type]
    # QA inspection is stamped at submission time when no time is given.
    if activity_type == QA_INSPECTION:
        return datetime.utcnow()
    raise ValueError("timestamp required")


def _latest_shelf_timestamp(s: Session, trace_id: str) -> datetime | None:
    stmt = (
        select(Activity.timestamp)
        .where(Activity.trace_id == trace_id, Activity.activity_type == PLACED_ON_SHELF)
        .order_by(Activity.id.desc())
        .limit(1)
    )
    return s.execute(stmt).scalar_one_or_none()


def _check_sequence(entries: list[ActivityEntry]) -> list[str]:
    errors: list[str] = []
    first_ts: dict[str, datetime] = {}
    for e in entries:
        first_ts.setdefault(e.activity_type, e.timestamp)
    for earlier, later in SEQUENCED_PAIRS:
        if earlier in first_ts and later in first_ts and first_ts[later] < first_ts[earlier]:
            errors.append(f"{later} cannot be earlier than {earlier}")
    return errors


def build_entries(actor: Actor, raw_entries: list[Mapping[str, Any]]) -> list[ActivityEntry]:
    """
    Validate a submission. Role violations raise immediately; input problems
    are collected and raised together as one ValidationError.
    """
    if not raw_entries:
        raise ValidationError("At least one activity is required.")

    errors: list[str] = []
    entries: list[ActivityEntry] = []
    for idx, raw in enumerate(raw_entries):
        if not isinstance(raw, Mapping):
            errors.append(f"activity #{idx + 1}: must be an object")
            continue
        activity_type = str(raw.get("activity_type") or "").strip()
        if activity_type not in ACTIVITY_TYPES:
            errors.append(f"activity #{idx + 1}: unknown activity type {activity_type!r}")
            continue
        ensure_may_append(actor, activity_type)

        try:
            ts = _entry_timestamp(activity_type, raw)
        except ValueError:
            errors.append(f"{activity_type}: timestamp is missing or not ISO-8601")
            continue

        extra, payload_errors = normalize_extra_data(activity_type, raw.get("extra_data"))
        if payload_errors:
            errors.extend(payload_errors)
            continue
        entries.append(ActivityEntry(activity_type=activity_type, timestamp=ts, extra_data=extra))

    if not errors:
        errors.extend(_check_sequence(entries))
    if errors:
        raise ValidationError("Invalid activity submission.", errors=errors)
    return entries


def append_activities(
    s: Session,
    actor: Actor | None,
    trace_id: str,
    raw_entries: list[Mapping[str, Any]],
) -> list[Activity]:
    """
    Append one composite submission to the ledger, all-or-nothing.

    Each call appends new rows; identical resubmissions are not deduplicated.
    ``product_sold`` picks up ``shelf_duration_hours`` from the latest prior
    ``placed_on_shelf`` (earlier in this submission, else already stored).
    """
    if actor is None:
        raise ValidationError("An authenticated actor is required to record activities.")

    batch = get_batch(s, trace_id)
    entries = build_entries(actor, raw_entries)

    shelf_ts = _latest_shelf_timestamp(s, batch.trace_id)
    for e in entries:
        if e.activity_type == PLACED_ON_SHELF:
            shelf_ts = e.timestamp
        elif e.activity_type == PRODUCT_SOLD and shelf_ts is not None:
            e.extra_data["shelf_duration_hours"] = shelf_duration_hours(shelf_ts, e.timestamp)

    submission_id = uuid.uuid4().hex
    rows = [
        Activity(
            trace_id=batch.trace_id,
            actor_role=actor.role,
            actor_id=actor.id,
            activity_type=e.activity_type,
            timestamp=e.timestamp,
            extra_data=e.extra_data,
            submission_id=submission_id,
        )
        for e in entries
    ]
    s.add_all(rows)
    record_event(
        s,
        actor=actor,
        action="activity.append",
        entity_type="Batch",
        entity_id=batch.trace_id,
        metadata={
            "submission_id": submission_id,
            "activity_types": [e.activity_type for e in entries],
        },
    )
    commit_or_raise(s, what="activities")

    logger.info(
        "Activities appended: trace_id=%s role=%s actor_id=%s types=%s",
        batch.trace_id,
        actor.role,
        actor.id,
        ",".join(e.activity_type for e in entries),
    )
    return rows


def append_activity(
    s: Session,
    actor: Actor | None,
    trace_id: str,
    activity_type: str,
    timestamp: datetime | str | None = None,
    extra_data: Mapping[str, Any] | None = None,
) -> Activity:
    """Single-entry form of append_activities."""
    raw: dict[str, Any] = {"activity_type": activity_type, "extra_data": dict(extra_data or {})}
    if timestamp is not None:
        raw["timestamp"] = timestamp
    return append_activities(s, actor, trace_id, [raw])[0]


def list_activities_for_trace(s: Session, trace_id: str) -> list[Activity]:
    stmt = select(Activity).where(Activity.trace_id == trace_id).order_by(Activity.timestamp, Activity.id)
    return list(s.execute(stmt).scalars())


def list_activities_for_actor(s: Session, actor: Actor, *, limit: int = 100) -> list[Activity]:
    stmt = (
        select(Activity)
        .where(Activity.actor_id == actor.id)
        .order_by(Activity.timestamp.desc(), Activity.id.desc())
        .limit(limit)
    )
    return list(s.execute(stmt).scalars())


def serialize_activity(a: Activity) -> dict:
    return {
        "id": a.id,
        "trace_id": a.trace_id,
        "actor_role": a.actor_role,
        "actor_id": a.actor_id,
        "activity_type": a.activity_type,
        "timestamp": a.timestamp.isoformat(),
        "extra_data": dict(a.extra_data or {}),
        "submission_id": a.submission_id,
    }
