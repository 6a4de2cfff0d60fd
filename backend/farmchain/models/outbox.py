"""OutboxEvent — a side effect staged inside a batch transaction.

Listing publications and notifications are written here in the same
transaction as the batch mutation, then delivered after commit by
``farmchain.services.outbox.OutboxDispatcher``.  A rolled-back operation
therefore never leaks a notification or a listing.

Payload structure depends on ``kind``:
    listing:       ListingDraft fields (decimals as strings)
    notification:  {"user_id", "role", "title", "body", "notification_type", "entity_id"}
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from farmchain.database import Base, utcnow


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # listing | notification
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    # pending | delivering (claimed) | delivered | failed
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime)
