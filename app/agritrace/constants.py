"""
Central constants for the trace ledger.
"""
from __future__ import annotations

# Actor roles (mirrors users.role)
ROLE_FARMER = "farmer"
ROLE_BROKER = "broker"
ROLE_MNC = "mnc"
ROLE_RETAILER = "retailer"
ROLE_CUSTOMER = "customer"

ACTOR_ROLES = frozenset({ROLE_FARMER, ROLE_BROKER, ROLE_MNC, ROLE_RETAILER, ROLE_CUSTOMER})

# Activity types
PRODUCT_RECEIVED = "product_received"
STORAGE_START = "storage_start"
STORAGE_END = "storage_end"
QA_INSPECTION = "qa_inspection"
PROCESSING = "processing"
PACKAGING = "packaging"
SHIPMENT_TO_RETAILER = "shipment_to_retailer"
PLACED_ON_SHELF = "placed_on_shelf"
PRODUCT_SOLD = "product_sold"

ACTIVITY_TYPES = frozenset(
    {
        PRODUCT_RECEIVED,
        STORAGE_START,
        STORAGE_END,
        QA_INSPECTION,
        PROCESSING,
        PACKAGING,
        SHIPMENT_TO_RETAILER,
        PLACED_ON_SHELF,
        PRODUCT_SOLD,
    }
)

QUANTITY_UNITS = frozenset({"kg", "tonnes", "quintals", "bags"})

QA_STATUSES = frozenset({"passed", "failed", "conditional", "pending"})

# Media types -> storage bucket and filename prefix
MEDIA_PRODUCT_PHOTO = "product_photo"
MEDIA_WEIGHING_PHOTO = "weighing_photo"
MEDIA_SHELF_PHOTO = "shelf_photo"
MEDIA_OTHER = "other"

MEDIA_BUCKETS = {
    MEDIA_PRODUCT_PHOTO: ("product-photos", "product"),
    MEDIA_WEIGHING_PHOTO: ("weighing-photos", "weighing"),
    MEDIA_SHELF_PHOTO: ("trace-media", "shelf"),
    MEDIA_OTHER: ("trace-media", "media"),
}

MEDIA_TYPES = frozenset(MEDIA_BUCKETS)

# Photos every new batch must carry
REQUIRED_BATCH_MEDIA = (MEDIA_PRODUCT_PHOTO, MEDIA_WEIGHING_PHOTO)
