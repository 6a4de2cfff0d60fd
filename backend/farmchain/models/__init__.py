"""Aggregate model imports for Alembic auto-detection."""

# ── Lifecycle aggregates ─────────────────────────────────────
from farmchain.models.batch import BatchRecord
from farmchain.models.crop import Crop
from farmchain.models.batch_trace import BatchTrace

# ── Downstream ───────────────────────────────────────────────
from farmchain.models.listing import Listing
from farmchain.models.notification import Notification, NotificationType
from farmchain.models.outbox import OutboxEvent

__all__ = [
    "BatchRecord", "Crop", "BatchTrace",
    "Listing", "Notification", "NotificationType", "OutboxEvent",
]
