"""BatchRecord — one planted/harvested lot under a single farmer.

A batch is created at planting (or at harvest intake) and moves through
approval into the marketplace.  Its crop lots live in ``crops``; the batch's
``total_quantity`` always equals the sum of its non-blocked crop quantities
once an engine operation has committed.

Lifecycle (observed, not enforced):
    PLANTED → HARVESTED → SUBMITTED_FOR_APPROVAL → APPROVED | REJECTED
    APPROVED → ACTIVE (merge target) | MERGED (merged away, blocked)

Batches are never deleted.  Rejection and merge-away set ``blocked``,
which removes the batch from farmer/distributor active views for good.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from farmchain.database import Base, utcnow
from farmchain.utils.numbering import BATCH_ID_MAX_LENGTH


class BatchRecord(Base):
    __tablename__ = "batch_records"

    # FCX-<PFX>-<YYMMDD>-<RAND6>, or <parent>-S<RAND3> for split children
    batch_id: Mapped[str] = mapped_column(String(BATCH_ID_MAX_LENGTH), primary_key=True)

    # ── Ownership ────────────────────────────────────────────
    farmer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Assigned on approval
    distributor_id: Mapped[str | None] = mapped_column(String(64), index=True)

    # ── Crop details ─────────────────────────────────────────
    crop_type: Mapped[str] = mapped_column(String(100), nullable=False)
    total_quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    avg_quality_score: Mapped[float | None] = mapped_column(Float)
    harvest_date: Mapped[date | None] = mapped_column(Date)

    # ── Status ───────────────────────────────────────────────
    status: Mapped[str] = mapped_column(String(40), default="PLANTED", index=True)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rejected_by: Mapped[str | None] = mapped_column(String(64))
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    # ── Metadata ─────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Optimistic lock: every UPDATE checks and bumps this counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
