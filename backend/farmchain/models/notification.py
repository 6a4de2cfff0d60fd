"""Notification — one message for a user, or for every user of a role.

``user_id == "ALL"`` is a broadcast to all users holding ``user_role``.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from farmchain.database import Base, utcnow

BROADCAST = "ALL"


class NotificationType:
    BATCH_APPROVED = "BATCH_APPROVED"
    BATCH_REJECTED = "BATCH_REJECTED"
    BATCH_SUBMITTED = "BATCH_SUBMITTED"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # ── Recipient ────────────────────────────────────────────
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # FARMER | DISTRIBUTOR | CONSUMER | ADMIN
    user_role: Mapped[str] = mapped_column(String(20), nullable=False)

    # ── Content ──────────────────────────────────────────────
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    notification_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64))

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
