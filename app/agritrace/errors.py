"""
Error taxonomy for the trace ledger.

Every error carries a stable ``code`` and an HTTP status so the blueprints can
render it without knowing which layer raised it. ``user_fixable`` separates
input problems (fix the request and resubmit) from system faults (retry later).
"""
from __future__ import annotations

from typing import Any


class TraceError(Exception):
    code = "trace_error"
    status_code = 500
    user_fixable = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "user_fixable": self.user_fixable,
        }
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(TraceError):
    code = "validation_error"
    status_code = 400
    user_fixable = True

    def __init__(self, message: str, *, errors: list[str] | None = None, details: dict[str, Any] | None = None) -> None:
        merged = dict(details or {})
        if errors:
            merged["errors"] = list(errors)
        super().__init__(message, details=merged)
        self.errors = list(errors or [])


class UnknownTraceError(TraceError):
    code = "unknown_trace"
    status_code = 404
    user_fixable = True

    def __init__(self, trace_id: str) -> None:
        super().__init__(f"Unknown trace ID: {trace_id}", details={"trace_id": trace_id})
        self.trace_id = trace_id


class RoleNotPermittedError(TraceError):
    code = "role_not_permitted"
    status_code = 403

    def __init__(self, role: str | None, action: str) -> None:
        super().__init__(
            f"Role {role!r} is not permitted to {action}",
            details={"role": role, "action": action},
        )
        self.role = role
        self.action = action


class StorageError(TraceError):
    code = "storage_error"
    status_code = 502


class PersistenceError(TraceError):
    code = "persistence_error"
    status_code = 503


class CollisionError(TraceError):
    code = "identifier_collision"
    status_code = 409
