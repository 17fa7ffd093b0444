from __future__ import annotations

from flask import Blueprint, jsonify
from sqlalchemy.orm import Session

from app.agritrace.db import db_session
from app.agritrace.rbac import require_role

from .service import get_trace

bp = Blueprint("trace", __name__)


@bp.get("/traces/<trace_id>")
@require_role()
def trace_detail(trace_id: str):
    """Full journey of a batch; open to every signed-in role, customers included."""
    s: Session = db_session()
    return jsonify(get_trace(s, trace_id))
