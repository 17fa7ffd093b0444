"""Tests for media upload, URL resolution, and the orphaned-upload sweep."""
import pytest
from werkzeug.security import generate_password_hash

from app.agritrace import create_app
from app.agritrace.constants import MEDIA_OTHER, MEDIA_PRODUCT_PHOTO, MEDIA_SHELF_PHOTO, MEDIA_WEIGHING_PHOTO
from app.agritrace.db import session_scope
from app.agritrace.errors import RoleNotPermittedError, StorageError, UnknownTraceError, ValidationError
from app.agritrace.models import AuditEvent, Base, User
from app.agritrace.modules.batches.service import create_batch
from app.agritrace.modules.media.models import Media
from app.agritrace.modules.media.service import (
    MediaFile,
    attach_media,
    build_media_storage_key,
    detect_image_type,
    find_orphaned_media,
    reconcile_orphaned_media,
    upload_millis_from_key,
    validate_media_file,
)
from app.agritrace.rbac import Actor
from app.agritrace.storage import LocalStorage

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add_all(
            [
                User(email="farmer@example.com", password_hash=generate_password_hash("pw"), role="farmer", is_active=True),
                User(email="neighbour@example.com", password_hash=generate_password_hash("pw"), role="farmer", is_active=True),
                User(email="retailer@example.com", password_hash=generate_password_hash("pw"), role="retailer", is_active=True),
            ]
        )

    return app


@pytest.fixture()
def storage(tmp_path):
    return LocalStorage(root=tmp_path / "storage")


@pytest.fixture()
def trace_id(app, storage):
    photos = [
        MediaFile(media_type=MEDIA_PRODUCT_PHOTO, file_bytes=PNG, filename="mango.png", content_type="image/png"),
        MediaFile(media_type=MEDIA_WEIGHING_PHOTO, file_bytes=PNG, filename="scale.png", content_type="image/png"),
    ]
    details = {
        "product_name": "Alphonso mangoes",
        "quantity": "12",
        "quantity_unit": "bags",
        "production_date": "2026-05-02",
        "production_time": "07:15",
        "state": "Maharashtra",
        "district": "Ratnagiri",
    }
    with session_scope(app) as s:
        return create_batch(s, _actor(app, "farmer@example.com"), details, photos, storage=storage).trace_id


def _actor(app, email):
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == email).one()
        return Actor(id=u.id, role=u.role)


def _shelf_photo():
    return MediaFile(media_type=MEDIA_SHELF_PHOTO, file_bytes=PNG, filename="stall.png", content_type="image/png")


def test_storage_key_layout():
    key = build_media_storage_key("TR-20261018-ABC", MEDIA_PRODUCT_PHOTO, "image/png", epoch_millis=1760745600123)
    assert key == "product-photos/TR-20261018-ABC/product_1760745600123.png"

    key = build_media_storage_key("TR-1", MEDIA_OTHER, "image/jpeg", epoch_millis=5)
    assert key == "trace-media/TR-1/media_5.jpg"


def test_validate_media_file():
    assert validate_media_file(_shelf_photo()) == []
    assert validate_media_file(MediaFile(media_type="selfie", file_bytes=PNG, filename="a.png", content_type="image/png"))
    assert validate_media_file(MediaFile(media_type=MEDIA_OTHER, file_bytes=b"", filename="a.png", content_type="image/png"))
    assert validate_media_file(MediaFile(media_type=MEDIA_OTHER, file_bytes=PNG, filename="a.png", content_type="image/jpeg"))


def test_resolve_url_fails_closed(storage):
    with pytest.raises(StorageError):
        storage.resolve_url("trace-media/TR-1/missing.png")

    storage.put_bytes("trace-media/TR-1/present.png", PNG, content_type="image/png")
    assert storage.resolve_url("trace-media/TR-1/present.png") == "/media/trace-media/TR-1/present.png"


def test_local_storage_rejects_path_escape(storage):
    with pytest.raises(StorageError):
        storage.put_bytes("../outside.png", PNG)


def test_producer_attaches_more_media(app, storage, trace_id):
    farmer = _actor(app, "farmer@example.com")
    with session_scope(app) as s:
        m = attach_media(s, farmer, trace_id, _shelf_photo(), storage=storage)
    assert m.storage_key.startswith(f"trace-media/{trace_id}/shelf_")
    assert storage.exists(m.storage_key)

    with session_scope(app) as s:
        assert s.query(Media).filter(Media.trace_id == trace_id).count() == 3
        assert s.query(AuditEvent).filter(AuditEvent.action == "media.attach").count() == 1


def test_other_producer_cannot_attach(app, storage, trace_id):
    with session_scope(app) as s:
        with pytest.raises(RoleNotPermittedError):
            attach_media(s, _actor(app, "neighbour@example.com"), trace_id, _shelf_photo(), storage=storage)


def test_non_farmer_cannot_attach(app, storage, trace_id):
    with session_scope(app) as s:
        with pytest.raises(RoleNotPermittedError):
            attach_media(s, _actor(app, "retailer@example.com"), trace_id, _shelf_photo(), storage=storage)


def test_attach_to_unknown_trace(app, storage, trace_id):
    with session_scope(app) as s:
        with pytest.raises(UnknownTraceError):
            attach_media(s, _actor(app, "farmer@example.com"), "TR-20261018-NOTREAL000", _shelf_photo(), storage=storage)


def test_attach_rejects_non_image(app, storage, trace_id):
    bad = MediaFile(media_type=MEDIA_OTHER, file_bytes=b"%PDF-1.7", filename="invoice.pdf", content_type="application/pdf")
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            attach_media(s, _actor(app, "farmer@example.com"), trace_id, bad, storage=storage)


def test_reconcile_finds_and_deletes_orphans(app, storage, trace_id):
    orphan = f"trace-media/{trace_id}/media_1.png"
    storage.put_bytes(orphan, PNG, content_type="image/png")

    with session_scope(app) as s:
        assert find_orphaned_media(s, storage) == [orphan]

    # Dry run leaves the blob alone
    with session_scope(app) as s:
        assert reconcile_orphaned_media(s, storage) == [orphan]
    assert storage.exists(orphan)

    with session_scope(app) as s:
        assert reconcile_orphaned_media(s, storage, delete=True) == [orphan]
    assert not storage.exists(orphan)

    with session_scope(app) as s:
        assert find_orphaned_media(s, storage) == []
        assert s.query(Media).filter(Media.trace_id == trace_id).count() == 2
        assert s.query(AuditEvent).filter(AuditEvent.action == "media.reconcile").count() == 1


def test_detect_image_type():
    assert detect_image_type(PNG) == "image/png"
    assert detect_image_type(b"\xff\xd8\xff\xdb" + b"\x00" * 8) == "image/jpeg"
    assert detect_image_type(b"GIF89a" + b"\x00" * 8) == "image/gif"
    assert detect_image_type(b"RIFF\x24\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert detect_image_type(b"RIFF\x24\x00\x00\x00WAVEfmt ") is None
    assert detect_image_type(b"<svg xmlns='http://www.w3.org/2000/svg'/>") is None


def test_attach_rejects_markup_declared_as_image(app, storage, trace_id):
    html = MediaFile(
        media_type=MEDIA_OTHER,
        file_bytes=b"<script>alert(document.cookie)</script>",
        filename="x.html",
        content_type="image/x-anything",
    )
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            attach_media(s, _actor(app, "farmer@example.com"), trace_id, html, storage=storage)

    assert list(storage.list_keys("trace-media/")) == []
    with session_scope(app) as s:
        assert s.query(Media).filter(Media.trace_id == trace_id).count() == 2


def test_stored_extension_follows_content_not_filename(app, storage, trace_id):
    disguised = MediaFile(media_type=MEDIA_OTHER, file_bytes=PNG, filename="page.html", content_type="image/x-anything")
    with session_scope(app) as s:
        m = attach_media(s, _actor(app, "farmer@example.com"), trace_id, disguised, storage=storage)
        key, content_type, original = m.storage_key, m.content_type, m.original_filename
    assert key.endswith(".png")
    assert content_type == "image/png"
    assert original == "page.html"


def test_upload_millis_from_key():
    assert upload_millis_from_key("trace-media/TR-1/media_1760745600123.png") == 1760745600123
    assert upload_millis_from_key("trace-media/TR-1/notes.txt") is None


def test_reconcile_skips_recent_uploads(app, storage, trace_id):
    # A blob from an insert that may still be in flight
    fresh = build_media_storage_key(trace_id, MEDIA_OTHER, "image/png")
    storage.put_bytes(fresh, PNG, content_type="image/png")

    with session_scope(app) as s:
        assert find_orphaned_media(s, storage) == []
        assert reconcile_orphaned_media(s, storage, delete=True) == []
    assert storage.exists(fresh)

    with session_scope(app) as s:
        assert find_orphaned_media(s, storage, min_age_seconds=0) == [fresh]
