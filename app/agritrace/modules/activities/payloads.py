"""
Per-activity-type shapes for ``Activity.extra_data``.

Each activity type declares which keys it accepts, which are required, and a
parser per key. Free-text ``remarks`` stays open on every type; everything
else is checked here so the ledger never stores a malformed payload.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from app.agritrace.constants import (
    PACKAGING,
    PLACED_ON_SHELF,
    PROCESSING,
    PRODUCT_RECEIVED,
    PRODUCT_SOLD,
    QA_INSPECTION,
    QA_STATUSES,
    SHIPMENT_TO_RETAILER,
    STORAGE_END,
    STORAGE_START,
)
from app.agritrace.utils import parse_iso_date

MAX_REMARKS_LENGTH = 2000

# Keys the ledger computes itself; callers may not supply them.
DERIVED_KEYS = frozenset({"shelf_duration_hours"})


def _remarks(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("remarks must be text")
    value = value.strip()
    if len(value) > MAX_REMARKS_LENGTH:
        raise ValueError(f"remarks longer than {MAX_REMARKS_LENGTH} characters")
    return value


def _qa_status(value: Any) -> str:
    v = str(value or "").strip().lower()
    if v not in QA_STATUSES:
        raise ValueError(f"qa_status must be one of: {', '.join(sorted(QA_STATUSES))}")
    return v


def _expiry_date(value: Any) -> str:
    try:
        return parse_iso_date(value).isoformat()
    except ValueError as e:
        raise ValueError("expiry_date must be an ISO date (YYYY-MM-DD)") from e


@dataclass(frozen=True)
class PayloadShape:
    fields: Mapping[str, Callable[[Any], Any]]
    required: frozenset[str] = field(default_factory=frozenset)


_REMARKS_ONLY = PayloadShape(fields={"remarks": _remarks})

PAYLOAD_SHAPES: dict[str, PayloadShape] = {
    PRODUCT_RECEIVED: _REMARKS_ONLY,
    STORAGE_START: _REMARKS_ONLY,
    STORAGE_END: _REMARKS_ONLY,
    QA_INSPECTION: PayloadShape(
        fields={"qa_status": _qa_status, "remarks": _remarks},
        required=frozenset({"qa_status"}),
    ),
    PROCESSING: PayloadShape(
        fields={"qa_status": _qa_status, "remarks": _remarks},
        required=frozenset({"qa_status"}),
    ),
    PACKAGING: PayloadShape(
        fields={"expiry_date": _expiry_date, "remarks": _remarks},
        required=frozenset({"expiry_date"}),
    ),
    SHIPMENT_TO_RETAILER: PayloadShape(
        fields={"expiry_date": _expiry_date, "remarks": _remarks},
        required=frozenset({"expiry_date"}),
    ),
    PLACED_ON_SHELF: _REMARKS_ONLY,
    PRODUCT_SOLD: _REMARKS_ONLY,
}


def normalize_extra_data(activity_type: str, extra: Mapping[str, Any] | None) -> tuple[dict[str, Any], list[str]]:
    """Return (clean payload, errors). Empty optional values are dropped."""
    shape = PAYLOAD_SHAPES.get(activity_type)
    if shape is None:
        return {}, [f"Unknown activity type: {activity_type}"]
    if extra is None:
        extra = {}
    if not isinstance(extra, Mapping):
        return {}, [f"{activity_type}: extra_data must be an object"]

    errors: list[str] = []
    clean: dict[str, Any] = {}
    for key, value in extra.items():
        if key in DERIVED_KEYS:
            errors.append(f"{activity_type}: {key} is computed by the ledger and cannot be supplied")
            continue
        parser = shape.fields.get(key)
        if parser is None:
            errors.append(f"{activity_type}: unexpected field {key!r}")
            continue
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        try:
            clean[key] = parser(value)
        except ValueError as e:
            errors.append(f"{activity_type}: {e}")

    for key in sorted(shape.required):
        if key not in clean and not any(key in err for err in errors):
            errors.append(f"{activity_type}: {key} is required")
    return clean, errors
