from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import g, jsonify

from app.agritrace.constants import (
    PACKAGING,
    PLACED_ON_SHELF,
    PROCESSING,
    PRODUCT_RECEIVED,
    PRODUCT_SOLD,
    QA_INSPECTION,
    ROLE_BROKER,
    ROLE_CUSTOMER,
    ROLE_FARMER,
    ROLE_MNC,
    ROLE_RETAILER,
    SHIPMENT_TO_RETAILER,
    STORAGE_END,
    STORAGE_START,
)
from app.agritrace.errors import RoleNotPermittedError
from app.agritrace.models import User


# Which activity types each role may append to the ledger.
# Farmers create batches and media only; customers are read-only.
ROLE_ACTIVITY_TYPES: dict[str, frozenset[str]] = {
    ROLE_FARMER: frozenset(),
    ROLE_BROKER: frozenset({PRODUCT_RECEIVED, STORAGE_START, STORAGE_END}),
    ROLE_MNC: frozenset({QA_INSPECTION, PROCESSING, PACKAGING, SHIPMENT_TO_RETAILER}),
    ROLE_RETAILER: frozenset({PLACED_ON_SHELF, PRODUCT_SOLD}),
    ROLE_CUSTOMER: frozenset(),
}

BATCH_CREATOR_ROLES = frozenset({ROLE_FARMER})


@dataclass(frozen=True)
class Actor:
    """Identity and role of whoever is performing a ledger operation."""

    id: int
    role: str


def actor_from_user(user: User | None) -> Actor | None:
    if not user or not user.is_active:
        return None
    return Actor(id=user.id, role=user.role)


def current_actor() -> Actor | None:
    return actor_from_user(getattr(g, "current_user", None))


def role_may_append(role: str | None, activity_type: str) -> bool:
    if role is None:
        return False
    return activity_type in ROLE_ACTIVITY_TYPES.get(role, frozenset())


def ensure_may_append(actor: Actor, activity_type: str) -> None:
    if not role_may_append(actor.role, activity_type):
        raise RoleNotPermittedError(actor.role, f"append {activity_type}")


def ensure_may_create_batch(actor: Actor) -> None:
    if actor.role not in BATCH_CREATOR_ROLES:
        raise RoleNotPermittedError(actor.role, "create batches")


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Route guard. With no roles given, any authenticated actor passes.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            actor = current_actor()
            # Unauthenticated -> 401 (JSON clients handle the login flow).
            if actor is None:
                return jsonify({"error": "authentication_required", "message": "Please log in."}), 401
            if roles and actor.role not in roles:
                raise RoleNotPermittedError(actor.role, f"access {fn.__name__}")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
