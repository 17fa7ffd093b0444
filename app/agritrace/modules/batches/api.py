"""
Batch registry routes (farmer).
"""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.orm import Session

from app.agritrace.constants import MEDIA_PRODUCT_PHOTO, MEDIA_WEIGHING_PHOTO, ROLE_FARMER
from app.agritrace.db import db_session
from app.agritrace.modules.media.service import MediaFile
from app.agritrace.rbac import current_actor, require_role
from app.agritrace.storage import storage_from_config

from .service import create_batch, list_batches_for_producer, serialize_batch

bp = Blueprint("batches", __name__)

# form field -> media type
PHOTO_FIELDS = (
    ("product_photo", MEDIA_PRODUCT_PHOTO),
    ("weighing_photo", MEDIA_WEIGHING_PHOTO),
)


@bp.post("/batches")
@require_role(ROLE_FARMER)
def batch_create():
    """Create a batch from a multipart form with both photos attached."""
    s: Session = db_session()

    media: list[MediaFile] = []
    for field, media_type in PHOTO_FIELDS:
        fs = request.files.get(field)
        if fs is None or not fs.filename:
            continue
        media.append(MediaFile(media_type=media_type, file_bytes=fs.read(), filename=fs.filename, content_type=fs.mimetype))

    created = create_batch(
        s,
        current_actor(),
        request.form,
        media,
        storage=storage_from_config(current_app.config),
        max_id_attempts=int(current_app.config.get("ID_MAX_ATTEMPTS") or 5),
    )
    return jsonify({"trace_id": created.trace_id, "batch_id": created.batch_id}), 201


@bp.get("/batches")
@require_role(ROLE_FARMER)
def batch_list():
    s: Session = db_session()
    batches = list_batches_for_producer(s, current_actor())
    return jsonify({"batches": [serialize_batch(b, include_media=True) for b in batches]})
