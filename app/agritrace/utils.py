from __future__ import annotations

import hashlib
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from werkzeug.utils import secure_filename


def clean_str(value: object) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_timestamp(value: object) -> datetime:
    """
    Accept a datetime or an ISO-8601 string; return naive UTC (the storage
    convention for every DateTime column). Raises ValueError on bad input.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def combine_date_time(date_str: str | None, time_str: str | None) -> datetime:
    """HTML forms send <input type="date"> and <input type="time"> separately."""
    d = (date_str or "").strip()
    t = (time_str or "").strip()
    if not d or not t:
        raise ValueError("date and time are both required")
    return parse_timestamp(f"{d}T{t}")


def parse_iso_date(value: object) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"not a date: {value!r}")
    return date.fromisoformat(value.strip())


def parse_positive_decimal(value: object, *, precision: int = 14, scale: int = 3) -> Decimal:
    """Positive decimal that fits a ``Numeric(precision, scale)`` column."""
    if isinstance(value, bool):
        raise ValueError("quantity must be a number")
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"not a number: {value!r}") from e
    if not d.is_finite() or d <= 0:
        raise ValueError("quantity must be a positive number")
    if d >= Decimal(10) ** (precision - scale):
        raise ValueError(f"quantity must be less than {10 ** (precision - scale)}")
    if d.normalize().as_tuple().exponent < -scale:
        raise ValueError(f"quantity allows at most {scale} decimal places")
    return d


def file_digest_and_size(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def sanitize_upload_filename(filename: str | None) -> str:
    fn = secure_filename(filename or "")
    return fn or "photo.bin"
