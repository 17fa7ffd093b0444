"""
Media service layer.
Handles photo validation, blob upload + URL resolution, media rows, and the
orphaned-upload reconciliation sweep.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.agritrace.audit import record_event
from app.agritrace.constants import MEDIA_BUCKETS, MEDIA_TYPES
from app.agritrace.db import commit_or_raise
from app.agritrace.errors import RoleNotPermittedError, UnknownTraceError, ValidationError
from app.agritrace.modules.batches.models import Batch
from app.agritrace.rbac import Actor, ensure_may_create_batch
from app.agritrace.storage import Storage
from app.agritrace.utils import file_digest_and_size, sanitize_upload_filename

from .models import Media

logger = logging.getLogger(__name__)

MAX_PHOTO_BYTES = 10 * 1024 * 1024

# Accepted photo formats: content type -> stored file extension.
IMAGE_EXTENSIONS: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def detect_image_type(file_bytes: bytes) -> str | None:
    """Content type read from the leading bytes; None for anything outside IMAGE_EXTENSIONS."""
    if file_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if file_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if file_bytes.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if len(file_bytes) >= 12 and file_bytes[:4] == b"RIFF" and file_bytes[8:12] == b"WEBP":
        return "image/webp"
    return None


@dataclass(frozen=True)
class MediaFile:
    """A photo as received from the client, before upload."""

    media_type: str
    file_bytes: bytes
    filename: str | None
    content_type: str | None


@dataclass(frozen=True)
class UploadedMedia:
    """A blob that is stored and has a resolved URL, but no media row yet."""

    media_type: str
    storage_key: str
    url: str
    original_filename: str | None
    content_type: str
    sha256: str
    size_bytes: int


def validate_media_file(f: MediaFile) -> list[str]:
    """
    The stored format is whatever the bytes say, never the client's content
    type or filename. A declared type that disagrees with the bytes is rejected.
    """
    errors: list[str] = []
    if f.media_type not in MEDIA_TYPES:
        errors.append(f"Unknown media type: {f.media_type}")
    declared = (f.content_type or "").split(";")[0].strip().lower()
    if not declared.startswith("image/"):
        errors.append(f"{f.media_type}: only image files are accepted (got {declared or 'unknown'})")
        return errors
    if not f.file_bytes:
        errors.append(f"{f.media_type}: file is empty")
        return errors
    if len(f.file_bytes) > MAX_PHOTO_BYTES:
        errors.append(f"{f.media_type}: file exceeds {MAX_PHOTO_BYTES // (1024 * 1024)}MB")
    detected = detect_image_type(f.file_bytes)
    if detected is None:
        errors.append(f"{f.media_type}: file is not a JPEG, PNG, GIF or WebP image")
    elif declared in IMAGE_EXTENSIONS and declared != detected:
        errors.append(f"{f.media_type}: file content is not a valid {declared}")
    return errors


def build_media_storage_key(
    trace_id: str,
    media_type: str,
    content_type: str,
    *,
    epoch_millis: int | None = None,
) -> str:
    """Key layout: {bucket}/{trace_id}/{prefix}_{epoch_millis}.{ext}"""
    bucket, prefix = MEDIA_BUCKETS[media_type]
    ext = IMAGE_EXTENSIONS[content_type]
    if epoch_millis is None:
        epoch_millis = int(time.time() * 1000)
    safe_trace = trace_id.replace("/", "_").replace("\\", "_")
    return f"{bucket}/{safe_trace}/{prefix}_{epoch_millis}.{ext}"


def upload_media_blob(storage: Storage, trace_id: str, f: MediaFile) -> UploadedMedia:
    """
    Upload, then resolve the public URL. Raises StorageError from either step;
    nothing is returned for a blob whose URL could not be resolved.
    """
    errors = validate_media_file(f)
    if errors:
        raise ValidationError("Invalid photo upload.", errors=errors)

    content_type = detect_image_type(f.file_bytes)
    assert content_type is not None
    sha256, size_bytes = file_digest_and_size(f.file_bytes)

    millis = int(time.time() * 1000)
    key = build_media_storage_key(trace_id, f.media_type, content_type, epoch_millis=millis)
    while storage.exists(key):
        millis += 1
        key = build_media_storage_key(trace_id, f.media_type, content_type, epoch_millis=millis)

    storage.put_bytes(key, f.file_bytes, content_type=content_type)
    url = storage.resolve_url(key)
    logger.info("Media uploaded: trace_id=%s type=%s key=%s size=%s", trace_id, f.media_type, key, size_bytes)

    return UploadedMedia(
        media_type=f.media_type,
        storage_key=key,
        url=url,
        original_filename=sanitize_upload_filename(f.filename) if f.filename else None,
        content_type=content_type,
        sha256=sha256,
        size_bytes=size_bytes,
    )


def media_row(trace_id: str, upload: UploadedMedia, *, uploaded_by: Actor, captured_at: datetime | None = None) -> Media:
    return Media(
        trace_id=trace_id,
        media_type=upload.media_type,
        url=upload.url,
        storage_key=upload.storage_key,
        original_filename=upload.original_filename,
        content_type=upload.content_type,
        sha256=upload.sha256,
        size_bytes=upload.size_bytes,
        captured_at=captured_at or datetime.utcnow(),
        uploaded_by_user_id=uploaded_by.id,
    )


def log_orphaned_uploads(uploads: list[UploadedMedia], *, trace_id: str, reason: str) -> None:
    for u in uploads:
        logger.error(
            "ORPHANED UPLOAD: trace_id=%s key=%s reason=%s (run scripts/reconcile_media.py)",
            trace_id,
            u.storage_key,
            reason,
        )


def attach_media(
    s: Session,
    actor: Actor,
    trace_id: str,
    f: MediaFile,
    *,
    storage: Storage,
) -> Media:
    """Attach one more photo to an existing trace (producer only)."""
    ensure_may_create_batch(actor)
    trace_id = (trace_id or "").strip()
    batch = s.execute(select(Batch).where(Batch.trace_id == trace_id)).scalar_one_or_none()
    if batch is None:
        raise UnknownTraceError(trace_id)
    if batch.producer_id != actor.id:
        raise RoleNotPermittedError(actor.role, f"attach media to trace {trace_id} owned by another producer")

    upload = upload_media_blob(storage, trace_id, f)

    m = media_row(trace_id, upload, uploaded_by=actor)
    s.add(m)
    record_event(
        s,
        actor=actor,
        action="media.attach",
        entity_type="Media",
        entity_id=trace_id,
        metadata={"media_type": upload.media_type, "storage_key": upload.storage_key},
    )
    try:
        commit_or_raise(s, what="media record")
    except Exception:
        log_orphaned_uploads([upload], trace_id=trace_id, reason="media insert failed")
        raise
    return m


def media_prefixes() -> list[str]:
    return sorted({bucket + "/" for bucket, _prefix in MEDIA_BUCKETS.values()})


# Blobs younger than this may belong to a batch whose insert has not committed yet.
ORPHAN_MIN_AGE_SECONDS = 3600

_KEY_MILLIS_RE = re.compile(r"_(\d{1,15})\.[A-Za-z0-9]+$")


def upload_millis_from_key(key: str) -> int | None:
    """The ``{prefix}_{epoch_millis}`` stamp written by build_media_storage_key."""
    m = _KEY_MILLIS_RE.search(key)
    return int(m.group(1)) if m else None


def find_orphaned_media(
    s: Session,
    storage: Storage,
    *,
    min_age_seconds: float = ORPHAN_MIN_AGE_SECONDS,
    now_millis: int | None = None,
) -> list[str]:
    """
    Blob keys under the media buckets that no media row references and that
    were uploaded at least ``min_age_seconds`` ago. Keys without an upload
    stamp are never reported.
    """
    if now_millis is None:
        now_millis = int(time.time() * 1000)
    cutoff = now_millis - int(min_age_seconds * 1000)
    known = set(s.execute(select(Media.storage_key)).scalars())
    orphans: list[str] = []
    for prefix in media_prefixes():
        for key in storage.list_keys(prefix):
            if key in known:
                continue
            uploaded = upload_millis_from_key(key)
            if uploaded is None:
                logger.warning("Media reconciliation: skipping unrecognised key %s", key)
                continue
            if uploaded > cutoff:
                continue
            orphans.append(key)
    return orphans


def reconcile_orphaned_media(
    s: Session,
    storage: Storage,
    *,
    delete: bool = False,
    actor: Actor | None = None,
    min_age_seconds: float = ORPHAN_MIN_AGE_SECONDS,
) -> list[str]:
    """
    Report (and optionally delete) uploads left behind by failed batch inserts.
    Deletions are recorded to the audit trail; the caller commits.
    """
    orphans = find_orphaned_media(s, storage, min_age_seconds=min_age_seconds)
    logger.info("Media reconciliation: %d orphaned object(s) older than %ss", len(orphans), min_age_seconds)
    if not delete:
        return orphans
    for key in orphans:
        storage.delete(key)
        logger.info("Media reconciliation: deleted %s", key)
    if orphans:
        record_event(
            s,
            actor=actor,
            action="media.reconcile",
            entity_type="Storage",
            metadata={"deleted": orphans, "min_age_seconds": min_age_seconds},
        )
    return orphans


def serialize_media(m: Media) -> dict:
    return {
        "id": m.id,
        "trace_id": m.trace_id,
        "type": m.media_type,
        "url": m.url,
        "content_type": m.content_type,
        "size_bytes": m.size_bytes,
        "captured_at": m.captured_at.isoformat() if m.captured_at else None,
    }
