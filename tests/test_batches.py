"""Tests for the batch registry."""
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.agritrace import create_app
from app.agritrace.constants import MEDIA_PRODUCT_PHOTO, MEDIA_WEIGHING_PHOTO
from app.agritrace.db import session_scope
from app.agritrace.errors import CollisionError, RoleNotPermittedError, StorageError, UnknownTraceError, ValidationError
from app.agritrace.models import AuditEvent, Base, User
from app.agritrace.modules.batches.models import Batch
from app.agritrace.modules.batches.service import create_batch, get_batch, parse_batch_details
from app.agritrace.modules.media.models import Media
from app.agritrace.modules.media.service import MediaFile, find_orphaned_media
from app.agritrace.rbac import Actor
from app.agritrace.storage import LocalStorage

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 64

DETAILS = {
    "product_name": "Tomatoes",
    "quantity": "120.5",
    "quantity_unit": "kg",
    "production_timestamp": "2026-10-01T06:30:00Z",
    "state": "Karnataka",
    "district": "Kolar",
}


class WeighingUploadDown(LocalStorage):
    def put_bytes(self, key, data, *, content_type=None):
        if key.startswith("weighing-photos/"):
            raise StorageError("simulated outage", details={"key": key})
        super().put_bytes(key, data, content_type=content_type)


class NoPublicUrl(LocalStorage):
    def public_url(self, key):
        return ""


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
                User(email="broker@example.com", password_hash=generate_password_hash("pw"), role="broker", is_active=True),
            ]
        )

    return app


@pytest.fixture()
def storage(tmp_path):
    return LocalStorage(root=tmp_path / "storage")


def _actor(app, email):
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == email).one()
        return Actor(id=u.id, role=u.role)


def _photos(product=PNG, weighing=JPEG):
    return [
        MediaFile(media_type=MEDIA_PRODUCT_PHOTO, file_bytes=product, filename="tomatoes.png", content_type="image/png"),
        MediaFile(media_type=MEDIA_WEIGHING_PHOTO, file_bytes=weighing, filename="scale.jpg", content_type="image/jpeg"),
    ]


def _counts(app):
    with session_scope(app) as s:
        return s.query(Batch).count(), s.query(Media).count()


def test_create_batch_writes_batch_and_both_photos(app, storage):
    farmer = _actor(app, "farmer@example.com")
    with session_scope(app) as s:
        created = create_batch(s, farmer, DETAILS, _photos(), storage=storage)

    assert created.trace_id.startswith("TR-")
    assert created.batch_id.startswith("BT-")

    with session_scope(app) as s:
        batch = get_batch(s, created.trace_id)
        assert batch.product_name == "Tomatoes"
        assert batch.quantity == Decimal("120.5")
        assert batch.producer_id == farmer.id
        assert batch.location_state == "Karnataka"

        media = s.query(Media).filter(Media.trace_id == created.trace_id).order_by(Media.id).all()
        assert [m.media_type for m in media] == [MEDIA_PRODUCT_PHOTO, MEDIA_WEIGHING_PHOTO]
        assert media[0].storage_key.startswith(f"product-photos/{created.trace_id}/product_")
        assert media[0].url == f"/media/{media[0].storage_key}"
        assert media[1].storage_key.startswith(f"weighing-photos/{created.trace_id}/weighing_")
        for m in media:
            assert storage.exists(m.storage_key)

        evt = s.query(AuditEvent).filter(AuditEvent.action == "batch.create").one()
        assert evt.entity_id == created.trace_id
        assert evt.actor_role == "farmer"


def test_missing_weighing_photo_rejected(app, storage):
    farmer = _actor(app, "farmer@example.com")
    with session_scope(app) as s:
        with pytest.raises(ValidationError) as exc:
            create_batch(s, farmer, DETAILS, _photos()[:1], storage=storage)
    assert "weighing_photo is required" in exc.value.errors
    assert _counts(app) == (0, 0)
    assert list(storage.list_keys("")) == []


def test_non_image_photo_rejected(app, storage):
    farmer = _actor(app, "farmer@example.com")
    photos = _photos()
    photos[1] = MediaFile(media_type=MEDIA_WEIGHING_PHOTO, file_bytes=b"hello", filename="notes.txt", content_type="text/plain")
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            create_batch(s, farmer, DETAILS, photos, storage=storage)
    assert _counts(app) == (0, 0)


def test_photo_content_must_match_declared_type(app, storage):
    farmer = _actor(app, "farmer@example.com")
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            create_batch(s, farmer, DETAILS, _photos(product=b"not really a png"), storage=storage)
    assert _counts(app) == (0, 0)


@pytest.mark.parametrize("quantity", ["-3", "0", "abc", "NaN", "", "1e20", "100000000000", "0.0001"])
def test_bad_quantity_rejected(quantity):
    with pytest.raises(ValidationError) as exc:
        parse_batch_details({**DETAILS, "quantity": quantity})
    assert any("Quantity" in e for e in exc.value.errors)


def test_largest_quantity_that_fits_accepted():
    assert parse_batch_details({**DETAILS, "quantity": "99999999999.999"}).quantity == Decimal("99999999999.999")


def test_form_date_and_time_fields_accepted():
    data = {k: v for k, v in DETAILS.items() if k != "production_timestamp"}
    details = parse_batch_details({**data, "production_date": "2026-10-01", "production_time": "06:30"})
    assert details.production_timestamp.isoformat() == "2026-10-01T06:30:00"


def test_missing_fields_reported_together():
    with pytest.raises(ValidationError) as exc:
        parse_batch_details({"quantity": "5", "quantity_unit": "crates"})
    joined = " ".join(exc.value.errors)
    assert "Product name" in joined
    assert "Quantity unit" in joined
    assert "State" in joined
    assert "District" in joined


def test_non_farmer_cannot_create_batch(app, storage):
    broker = _actor(app, "broker@example.com")
    with session_scope(app) as s:
        with pytest.raises(RoleNotPermittedError):
            create_batch(s, broker, DETAILS, _photos(), storage=storage)
    assert _counts(app) == (0, 0)


def test_upload_failure_writes_no_rows(app, tmp_path):
    farmer = _actor(app, "farmer@example.com")
    flaky = WeighingUploadDown(root=tmp_path / "storage")
    with session_scope(app) as s:
        with pytest.raises(StorageError):
            create_batch(s, farmer, DETAILS, _photos(), storage=flaky)
    assert _counts(app) == (0, 0)

    # The product photo landed before the failure and is picked up by the sweep.
    with session_scope(app) as s:
        orphans = find_orphaned_media(s, flaky, min_age_seconds=0)
    assert len(orphans) == 1
    assert orphans[0].startswith("product-photos/")


def test_unresolvable_url_writes_no_rows(app, tmp_path):
    farmer = _actor(app, "farmer@example.com")
    with session_scope(app) as s:
        with pytest.raises(StorageError):
            create_batch(s, farmer, DETAILS, _photos(), storage=NoPublicUrl(root=tmp_path / "storage"))
    assert _counts(app) == (0, 0)


def test_get_batch_unknown_trace(app):
    with session_scope(app) as s:
        with pytest.raises(UnknownTraceError):
            get_batch(s, "TR-20261018-0000000000")


def test_concurrent_creates_get_distinct_trace_ids(app, storage):
    farmer = _actor(app, "farmer@example.com")

    def _create(_i):
        with session_scope(app) as s:
            return create_batch(s, farmer, DETAILS, _photos(), storage=storage).trace_id

    with ThreadPoolExecutor(max_workers=4) as pool:
        trace_ids = list(pool.map(_create, range(4)))

    assert len(set(trace_ids)) == 4
    assert _counts(app) == (4, 8)


DETAILS_TS = parse_batch_details(DETAILS).production_timestamp


def _claiming_storage(app, root, producer_id, *, claim_every_attempt=False):
    """Storage that, while the first photo uploads, lets another batch take the trace ID."""
    claimed: list[str] = []

    class ClaimsTraceId(LocalStorage):
        def put_bytes(self, key, data, *, content_type=None):
            trace_id = key.split("/")[1]
            if key.startswith("product-photos/") and (claim_every_attempt or not claimed):
                with session_scope(app) as other:
                    other.add(
                        Batch(
                            trace_id=trace_id,
                            batch_id=f"BT-claimed-{len(claimed)}",
                            product_name="Chillies",
                            quantity=Decimal("3"),
                            quantity_unit="kg",
                            producer_id=producer_id,
                            production_timestamp=DETAILS_TS,
                            location_state="Karnataka",
                            location_district="Kolar",
                        )
                    )
                claimed.append(trace_id)
            super().put_bytes(key, data, content_type=content_type)

    return ClaimsTraceId(root=root), claimed


def test_trace_id_claimed_before_commit_is_regenerated(app, tmp_path):
    farmer = _actor(app, "farmer@example.com")
    storage, claimed = _claiming_storage(app, tmp_path / "storage", farmer.id)

    with session_scope(app) as s:
        created = create_batch(s, farmer, DETAILS, _photos(), storage=storage)

    assert len(claimed) == 1
    assert created.trace_id != claimed[0]
    assert _counts(app) == (2, 2)

    with session_scope(app) as s:
        assert s.query(Media).filter(Media.trace_id == created.trace_id).count() == 2
        evt = s.query(AuditEvent).filter(AuditEvent.action == "batch.create").one()
        assert evt.entity_id == created.trace_id


def test_trace_id_claimed_on_every_attempt_raises_collision(app, tmp_path):
    farmer = _actor(app, "farmer@example.com")
    storage, claimed = _claiming_storage(app, tmp_path / "storage", farmer.id, claim_every_attempt=True)

    with session_scope(app) as s:
        with pytest.raises(CollisionError) as exc:
            create_batch(s, farmer, DETAILS, _photos(), storage=storage, max_id_attempts=2)

    assert exc.value.details["attempts"] == 2
    assert len(claimed) == 2
    # Only the two claiming batches exist; the abandoned photos await the sweep.
    assert _counts(app) == (2, 0)
    with session_scope(app) as s:
        assert len(find_orphaned_media(s, storage, min_age_seconds=0)) == 4
