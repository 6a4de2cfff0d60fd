"""Crop — a quantity-bearing lot belonging to exactly one batch at a time.

Crops are created at intake or by a split, and re-owned (``batch_id``
reassigned) by a merge.  The quantity column keeps the legacy string
format; use ``quantity_value`` for arithmetic.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from farmchain.database import Base, utcnow
from farmchain.utils.numbering import BATCH_ID_MAX_LENGTH
from farmchain.utils.quantity import parse_quantity


class Crop(Base):
    __tablename__ = "crops"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    batch_id: Mapped[str] = mapped_column(
        String(BATCH_ID_MAX_LENGTH), ForeignKey("batch_records.batch_id"),
        nullable=False, index=True,
    )
    farmer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # ── Lot details ──────────────────────────────────────────
    crop_name: Mapped[str | None] = mapped_column(String(100))
    # Decimal string, e.g. "40.00"; parsed leniently on read
    quantity: Mapped[str | None] = mapped_column(String(32))
    location: Mapped[str | None] = mapped_column(String(255))
    expected_harvest_date: Mapped[date | None] = mapped_column(Date)
    quality_grade: Mapped[str | None] = mapped_column(String(20))
    # Per-unit farm-gate price
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))

    # ── Status (mirrors the owning batch) ────────────────────
    status: Mapped[str | None] = mapped_column(String(40))
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, onupdate=utcnow)

    @property
    def quantity_value(self) -> Decimal:
        return parse_quantity(self.quantity)
