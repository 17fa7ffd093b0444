"""
Batch registry service layer.
Handles batch validation, identifier allocation, and the batch + photos insert.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.agritrace.audit import record_event
from app.agritrace.constants import QUANTITY_UNITS, REQUIRED_BATCH_MEDIA
from app.agritrace.errors import CollisionError, PersistenceError, UnknownTraceError, ValidationError
from app.agritrace.identifiers import AllocatedIds, allocate_identifiers, identifiers_taken
from app.agritrace.modules.media.service import (
    MediaFile,
    UploadedMedia,
    log_orphaned_uploads,
    media_row,
    serialize_media,
    upload_media_blob,
    validate_media_file,
)
from app.agritrace.rbac import Actor, ensure_may_create_batch
from app.agritrace.storage import Storage
from app.agritrace.utils import clean_str, combine_date_time, parse_positive_decimal, parse_timestamp

from .models import Batch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchDetails:
    product_name: str
    quantity: Decimal
    quantity_unit: str
    production_timestamp: datetime
    location_state: str
    location_district: str


@dataclass(frozen=True)
class CreatedBatch:
    trace_id: str
    batch_id: str


def parse_batch_details(data: Mapping[str, object]) -> BatchDetails:
    """
    Validate raw form/JSON input. Accepts either ``production_timestamp`` or the
    form pair ``production_date`` + ``production_time``.
    """
    errors: list[str] = []

    product_name = clean_str(data.get("product_name"))
    if not product_name:
        errors.append("Product name is required")

    quantity: Decimal | None = None
    raw_qty = data.get("quantity")
    if raw_qty is None or str(raw_qty).strip() == "":
        errors.append("Quantity is required")
    else:
        try:
            quantity = parse_positive_decimal(raw_qty)
        except ValueError as e:
            errors.append(f"Quantity is invalid: {e}")

    unit = clean_str(data.get("quantity_unit")) or "kg"
    if unit not in QUANTITY_UNITS:
        errors.append(f"Quantity unit must be one of: {', '.join(sorted(QUANTITY_UNITS))}")

    production_ts: datetime | None = None
    try:
        if data.get("production_timestamp"):
            production_ts = parse_timestamp(data.get("production_timestamp"))
        else:
            production_ts = combine_date_time(
                clean_str(data.get("production_date")),
                clean_str(data.get("production_time")),
            )
    except ValueError:
        errors.append("Production date and time are required (ISO format)")

    state = clean_str(data.get("location_state") or data.get("state"))
    if not state:
        errors.append("State is required")
    district = clean_str(data.get("location_district") or data.get("district"))
    if not district:
        errors.append("District is required")

    if errors:
        raise ValidationError("Invalid batch details.", errors=errors)

    return BatchDetails(
        product_name=product_name,  # type: ignore[arg-type]
        quantity=quantity,  # type: ignore[arg-type]
        quantity_unit=unit,
        production_timestamp=production_ts,  # type: ignore[arg-type]
        location_state=state,  # type: ignore[arg-type]
        location_district=district,  # type: ignore[arg-type]
    )


def validate_batch_media(media: list[MediaFile]) -> list[str]:
    """Both required photos, exactly once each, and nothing else."""
    errors: list[str] = []
    by_type: dict[str, int] = {}
    for f in media:
        by_type[f.media_type] = by_type.get(f.media_type, 0) + 1
    for required in REQUIRED_BATCH_MEDIA:
        if by_type.get(required, 0) == 0:
            errors.append(f"{required} is required")
        elif by_type[required] > 1:
            errors.append(f"{required} supplied more than once")
    extra = sorted(t for t in by_type if t not in REQUIRED_BATCH_MEDIA)
    if extra:
        errors.append(f"Unexpected media at batch creation: {', '.join(extra)}")
    for f in media:
        if f.media_type in REQUIRED_BATCH_MEDIA:
            errors.extend(validate_media_file(f))
    return errors


def _upload_batch_photos(storage: Storage, trace_id: str, media: list[MediaFile]) -> list[UploadedMedia]:
    uploads: list[UploadedMedia] = []
    try:
        for f in sorted(media, key=lambda m: REQUIRED_BATCH_MEDIA.index(m.media_type)):
            uploads.append(upload_media_blob(storage, trace_id, f))
    except Exception:
        log_orphaned_uploads(uploads, trace_id=trace_id, reason="second photo upload failed")
        raise
    return uploads


def _insert_batch(
    s: Session,
    actor: Actor,
    details: BatchDetails,
    ids: AllocatedIds,
    uploads: list[UploadedMedia],
    *,
    attempt: int,
) -> bool:
    """
    Batch + media + audit in one commit. Returns False when the identifiers
    were claimed by another batch after allocation.
    """
    # Re-check: the allocation read predates the uploads.
    if identifiers_taken(s, ids.trace_id, ids.batch_id):
        s.rollback()
        return False

    batch = Batch(
        trace_id=ids.trace_id,
        batch_id=ids.batch_id,
        product_name=details.product_name,
        quantity=details.quantity,
        quantity_unit=details.quantity_unit,
        producer_id=actor.id,
        production_timestamp=details.production_timestamp,
        location_state=details.location_state,
        location_district=details.location_district,
    )
    try:
        s.add(batch)
        s.flush()
        captured_at = datetime.utcnow()
        for u in uploads:
            s.add(media_row(ids.trace_id, u, uploaded_by=actor, captured_at=captured_at))
        record_event(
            s,
            actor=actor,
            action="batch.create",
            entity_type="Batch",
            entity_id=ids.trace_id,
            metadata={
                "batch_id": ids.batch_id,
                "product_name": details.product_name,
                "quantity": str(details.quantity),
                "quantity_unit": details.quantity_unit,
                "id_attempts": ids.attempts,
                "insert_attempt": attempt,
            },
        )
        s.commit()
    except IntegrityError as e:
        s.rollback()
        if identifiers_taken(s, ids.trace_id, ids.batch_id):
            return False
        log_orphaned_uploads(uploads, trace_id=ids.trace_id, reason="batch insert failed")
        logger.error("Batch insert failed (trace_id=%s): %s", ids.trace_id, e)
        raise PersistenceError("Could not save batch.") from e
    except SQLAlchemyError as e:
        s.rollback()
        log_orphaned_uploads(uploads, trace_id=ids.trace_id, reason="batch insert failed")
        logger.error("Batch insert failed (trace_id=%s): %s", ids.trace_id, e)
        raise PersistenceError("Could not save batch.") from e
    return True


def create_batch(
    s: Session,
    actor: Actor | None,
    details: BatchDetails | Mapping[str, object],
    media: list[MediaFile],
    *,
    storage: Storage,
    max_id_attempts: int = 5,
) -> CreatedBatch:
    """
    Register a new batch with its product and weighing photos.

    Order: validate everything, allocate IDs (checked against the store),
    upload both photos, re-check the IDs, then insert batch + media + audit in
    one transaction. IDs claimed by another batch in the meantime are
    regenerated, up to ``max_id_attempts`` times, before CollisionError.
    Photos uploaded for a failed or abandoned insert are logged as orphaned
    for the reconciliation sweep.
    """
    if actor is None:
        raise ValidationError("An authenticated producer is required to create a batch.")
    ensure_may_create_batch(actor)

    if not isinstance(details, BatchDetails):
        details = parse_batch_details(details)

    media_errors = validate_batch_media(media)
    if media_errors:
        raise ValidationError("Both a product photo and a weighing photo are required.", errors=media_errors)

    attempts = max(1, int(max_id_attempts))
    claimed: list[str] = []
    for attempt in range(1, attempts + 1):
        ids = allocate_identifiers(s, max_attempts=attempts)
        # Release the read transaction before slow uploads.
        s.rollback()

        uploads = _upload_batch_photos(storage, ids.trace_id, media)
        if _insert_batch(s, actor, details, ids, uploads, attempt=attempt):
            logger.info("Batch created: trace_id=%s batch_id=%s producer_id=%s", ids.trace_id, ids.batch_id, actor.id)
            return CreatedBatch(trace_id=ids.trace_id, batch_id=ids.batch_id)

        claimed.append(ids.trace_id)
        log_orphaned_uploads(uploads, trace_id=ids.trace_id, reason="trace ID claimed before commit")
        logger.warning(
            "Trace ID claimed before commit (attempt %s/%s): trace_id=%s; regenerating",
            attempt,
            attempts,
            ids.trace_id,
        )

    raise CollisionError(
        f"Could not register the batch under a unique trace ID after {attempts} attempts.",
        details={"attempts": attempts, "last_trace_ids": claimed[-3:]},
    )


def get_batch(s: Session, trace_id: str) -> Batch:
    trace_id = (trace_id or "").strip()
    batch = s.execute(select(Batch).where(Batch.trace_id == trace_id)).scalar_one_or_none()
    if batch is None:
        raise UnknownTraceError(trace_id)
    return batch


def list_batches_for_producer(s: Session, actor: Actor) -> list[Batch]:
    ensure_may_create_batch(actor)
    stmt = select(Batch).where(Batch.producer_id == actor.id).order_by(Batch.created_at.desc(), Batch.id.desc())
    return list(s.execute(stmt).scalars())


def serialize_batch(b: Batch, *, include_media: bool = False) -> dict:
    out = {
        "trace_id": b.trace_id,
        "batch_id": b.batch_id,
        "product_name": b.product_name,
        "quantity": str(b.quantity),
        "quantity_unit": b.quantity_unit,
        "producer_id": b.producer_id,
        "production_timestamp": b.production_timestamp.isoformat(),
        "location": {"state": b.location_state, "district": b.location_district},
        "created_at": b.created_at.isoformat() if b.created_at else None,
    }
    if include_media:
        out["media"] = [serialize_media(m) for m in b.media]
    return out
