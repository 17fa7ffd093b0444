"""
Media routes: attach photos to a trace, and serve locally stored blobs.
"""
from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, redirect, request, send_file
from sqlalchemy.orm import Session

from app.agritrace.constants import MEDIA_OTHER, ROLE_FARMER
from app.agritrace.db import db_session
from app.agritrace.errors import StorageError, ValidationError
from app.agritrace.rbac import current_actor, require_role
from app.agritrace.storage import LocalStorage, storage_from_config

from .service import IMAGE_EXTENSIONS, MediaFile, attach_media, serialize_media

# stored extension -> served content type
_SERVED_TYPES = {ext: ct for ct, ext in IMAGE_EXTENSIONS.items()}

bp = Blueprint("media", __name__)
public_bp = Blueprint("media_files", __name__)


@bp.post("/traces/<trace_id>/media")
@require_role(ROLE_FARMER)
def media_attach(trace_id: str):
    s: Session = db_session()
    fs = request.files.get("file")
    if fs is None or not fs.filename:
        raise ValidationError("A photo file is required.", errors=["file is required"])
    f = MediaFile(
        media_type=(request.form.get("media_type") or MEDIA_OTHER).strip(),
        file_bytes=fs.read(),
        filename=fs.filename,
        content_type=fs.mimetype,
    )
    m = attach_media(s, current_actor(), trace_id, f, storage=storage_from_config(current_app.config))
    return jsonify(serialize_media(m)), 201


@public_bp.get("/<path:key>")
def media_file(key: str):
    """Public photo URLs resolve here for the local backend."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        return redirect(storage.public_url(key), code=302)
    mimetype = _SERVED_TYPES.get(key.rsplit(".", 1)[-1].lower())
    if mimetype is None:
        abort(404)
    try:
        if not storage.exists(key):
            abort(404)
        fh = storage.open(key)
    except StorageError:
        abort(404)
    resp = send_file(fh, mimetype=mimetype, max_age=3600)
    resp.headers["X-Content-Type-Options"] = "nosniff"
    return resp
