from __future__ import annotations

import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.agritrace.audit import record_event
from app.agritrace.constants import ACTOR_ROLES
from app.agritrace.db import commit_or_raise, db_session
from app.agritrace.errors import ValidationError
from app.agritrace.models import User
from app.agritrace.rbac import actor_from_user, require_role
from app.agritrace.utils import clean_str

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "state": user.state,
        "district": user.district,
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except (SQLAlchemyError, ValueError) as e:
        current_app.logger.error("load_current_user failed (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.post("/signup")
def signup_post():
    data = _payload()
    email = (clean_str(data.get("email")) or "").lower()
    password = data.get("password") or ""
    role = (clean_str(data.get("role")) or "").lower()

    errors: list[str] = []
    if not _EMAIL_RE.match(email):
        errors.append("A valid email is required")
    if len(password) < _MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters")
    if role not in ACTOR_ROLES:
        errors.append(f"Role must be one of: {', '.join(sorted(ACTOR_ROLES))}")
    if errors:
        raise ValidationError("Invalid signup.", errors=errors)

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        raise ValidationError("An account with this email already exists.", errors=["email already registered"])

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=clean_str(data.get("full_name")),
        role=role,
        state=clean_str(data.get("state")),
        district=clean_str(data.get("district")),
        is_active=True,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=actor_from_user(user), action="auth.signup", entity_type="User", entity_id=str(user.id))
    commit_or_raise(s, what="account")

    session["user_id"] = user.id
    current_app.logger.info("Signup: user_id=%s role=%s", user.id, user.role)
    return jsonify(serialize_user(user)), 201


@bp.post("/login")
def login_post():
    data = _payload()
    email = (clean_str(data.get("email")) or "").lower()
    password = data.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "rate_limited", "message": "Too many login attempts. Please wait 5 minutes."}), 429

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return jsonify({"error": "invalid_credentials", "message": "Invalid credentials."}), 401

        session["user_id"] = user.id
        _login_attempts[ip].clear()
        record_event(s, actor=actor_from_user(user), action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify(serialize_user(user))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=actor_from_user(user), action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return jsonify({"ok": True})


@bp.get("/me")
@require_role()
def me():
    return jsonify(serialize_user(g.current_user))
