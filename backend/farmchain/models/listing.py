"""Listing — a sellable marketplace offer derived from an approved crop.

Owned by the listing publisher, not by the lifecycle engine.  At most one
listing exists per (batch, crop); approving again reactivates it.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from farmchain.database import Base, utcnow
from farmchain.utils.numbering import BATCH_ID_MAX_LENGTH


class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (
        UniqueConstraint("batch_id", "crop_id", name="uq_listings_batch_crop"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    batch_id: Mapped[str] = mapped_column(
        String(BATCH_ID_MAX_LENGTH), nullable=False, index=True
    )
    crop_id: Mapped[str] = mapped_column(String(36), nullable=False)
    farmer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    distributor_id: Mapped[str | None] = mapped_column(String(64), index=True)

    # ── Offer ────────────────────────────────────────────────
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    # Final market price: base + farmer profit + distributor profit
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    farmer_profit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    distributor_profit: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00")
    )

    # ACTIVE | INACTIVE | SOLD_OUT
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, onupdate=utcnow)
