"""Pydantic schemas for batch lifecycle operations."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from farmchain.utils.numbering import BATCH_ID_MAX_LENGTH


# ── Intake ───────────────────────────────────────────────────

class CropCreate(BaseModel):
    """One crop lot registered under a batch.

    ``quantity`` accepts the legacy string format as well as numbers.
    """
    crop_name: str | None = None
    quantity: str | float | None = None
    location: str | None = None
    expected_harvest_date: date | None = None
    quality_grade: str | None = None
    price: Decimal | None = Field(None, ge=0)


class BatchCreate(BaseModel):
    """Payload for creating a batch.

    ``farmer_id`` and ``crop_type`` are checked by the engine so that a
    missing value surfaces as InvalidOperation, same as every other
    validation failure.
    """
    farmer_id: str | None = None
    crop_type: str | None = None

    batch_id: str | None = Field(None, max_length=BATCH_ID_MAX_LENGTH)
    status: str | None = None
    harvest_date: date | None = None
    total_quantity: Decimal | None = Field(None, ge=0)
    crops: list[CropCreate] = Field(default_factory=list)


# ── Lifecycle requests ───────────────────────────────────────

class ActorRequest(BaseModel):
    actor: str | None = None


class ApproveRequest(BaseModel):
    distributor_id: str


class RejectRequest(BaseModel):
    distributor_id: str
    reason: str | None = None


class StatusUpdate(BaseModel):
    status: str
    actor: str | None = None


class QualityUpdate(BaseModel):
    grade: str | None = None
    confidence: float | None = None
    actor: str | None = None


class SplitRequest(BaseModel):
    split_quantity: float
    actor: str | None = None


class MergeRequest(BaseModel):
    source_batch_ids: list[str]
    actor: str | None = None


class AddCropRequest(CropCreate):
    actor: str | None = None


# ── Responses ────────────────────────────────────────────────

class BatchOut(BaseModel):
    batch_id: str
    farmer_id: str
    distributor_id: str | None
    crop_type: str
    total_quantity: float
    avg_quality_score: float | None
    harvest_date: date | None
    status: str
    blocked: bool
    rejected_by: str | None
    rejection_reason: str | None
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class CropOut(BaseModel):
    id: str
    batch_id: str
    farmer_id: str
    crop_name: str | None
    # Legacy wire format: decimal string
    quantity: str | None
    location: str | None
    expected_harvest_date: date | None
    quality_grade: str | None
    price: float | None
    status: str | None
    blocked: bool

    model_config = {"from_attributes": True}


class TraceOut(BaseModel):
    id: int
    batch_id: str
    farmer_id: str | None
    label: str
    changed_by: str | None
    timestamp: datetime

    model_config = {"from_attributes": True}
