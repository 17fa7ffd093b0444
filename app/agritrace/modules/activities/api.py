"""
Activity ledger routes (broker, mnc, retailer).
"""
from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy.orm import Session

from app.agritrace.db import db_session
from app.agritrace.errors import ValidationError
from app.agritrace.rbac import current_actor, require_role

from .service import append_activities, list_activities_for_actor, serialize_activity

bp = Blueprint("activities", __name__)


@bp.post("/traces/<trace_id>/activities")
@require_role()
def activities_append(trace_id: str):
    """
    Body: {"activities": [{"activity_type", "timestamp", "extra_data"}, ...]}
    or a single activity object. The role check happens in the ledger.
    """
    s: Session = db_session()
    body = request.get_json(silent=True)
    if isinstance(body, dict) and "activities" in body:
        entries = body["activities"]
    elif isinstance(body, dict):
        entries = [body]
    else:
        raise ValidationError("Expected a JSON body.")
    if not isinstance(entries, list):
        raise ValidationError("activities must be a list.")

    rows = append_activities(s, current_actor(), trace_id, entries)
    return jsonify({"activities": [serialize_activity(a) for a in rows]}), 201


@bp.get("/activities")
@require_role()
def activities_mine():
    s: Session = db_session()
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)
    rows = list_activities_for_actor(s, current_actor(), limit=limit)
    return jsonify({"activities": [serialize_activity(a) for a in rows]})
