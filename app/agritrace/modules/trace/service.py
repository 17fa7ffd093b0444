from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.agritrace.modules.activities.service import list_activities_for_trace, serialize_activity
from app.agritrace.modules.batches.service import get_batch, serialize_batch
from app.agritrace.modules.media.models import Media
from app.agritrace.modules.media.service import serialize_media


def get_trace(s: Session, trace_id: str) -> dict:
    """Batch, its media, and its activities in (timestamp, id) order."""
    batch = get_batch(s, trace_id)
    media = s.execute(select(Media).where(Media.trace_id == batch.trace_id).order_by(Media.id)).scalars()
    activities = list_activities_for_trace(s, batch.trace_id)
    return {
        "batch": serialize_batch(batch),
        "media": [serialize_media(m) for m in media],
        "activities": [serialize_activity(a) for a in activities],
    }
