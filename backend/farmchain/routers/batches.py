"""Batch router — thin HTTP mapping onto the lifecycle engine.

Endpoints:
    POST   /api/batches/                          Create batch (optionally with crops)
    GET    /api/batches/pending                   Distributor pending queue
    GET    /api/batches/approved/{distributor_id} Distributor approved queue
    GET    /api/batches/farmer/{farmer_id}        Farmer's batches
    GET    /api/batches/{batch_id}                Single batch
    GET    /api/batches/{batch_id}/crops          Crops under a batch
    POST   /api/batches/{batch_id}/crops          Add a crop lot
    GET    /api/batches/{batch_id}/trace          Audit trail, oldest first
    POST   /api/batches/{batch_id}/approve        Approve + publish listings
    POST   /api/batches/{batch_id}/reject         Reject (permanent block)
    POST   /api/batches/{batch_id}/submit         Submit for approval
    PATCH  /api/batches/{batch_id}/status         Free-form status write
    PATCH  /api/batches/{batch_id}/quality        Quality grade / confidence
    POST   /api/batches/{batch_id}/split          Split into a child batch
    POST   /api/batches/{batch_id}/merge          Merge sources into this batch

Engine errors (NotFound, InvalidOperation, ConcurrentModification) are
rendered by the handlers in ``farmchain.exceptions``.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from farmchain.schemas.batch import (
    ActorRequest,
    AddCropRequest,
    ApproveRequest,
    BatchCreate,
    BatchOut,
    CropOut,
    MergeRequest,
    QualityUpdate,
    RejectRequest,
    SplitRequest,
    StatusUpdate,
    TraceOut,
)
from farmchain.services.lifecycle import BatchLifecycleEngine, get_engine
from farmchain.utils.cache import cached, invalidate_cache

router = APIRouter()


# ── Create ───────────────────────────────────────────────────

@router.post("/", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
async def create_batch(
    body: BatchCreate,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batch = await engine.create_batch(body)
    await invalidate_cache("batches:*")
    return BatchOut.model_validate(batch)


# ── Distributor queues ───────────────────────────────────────

@router.get("/pending", response_model=list[BatchOut])
@cached(prefix="batches")
async def list_pending(engine: BatchLifecycleEngine = Depends(get_engine)):
    batches = await engine.get_pending_batches_for_distributor()
    return [BatchOut.model_validate(b) for b in batches]


@router.get("/approved/{distributor_id}", response_model=list[BatchOut])
@cached(prefix="batches")
async def list_approved(
    distributor_id: str,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batches = await engine.get_approved_batches(distributor_id)
    return [BatchOut.model_validate(b) for b in batches]


# ── Farmer view ──────────────────────────────────────────────

@router.get("/farmer/{farmer_id}", response_model=list[BatchOut])
async def list_farmer_batches(
    farmer_id: str,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batches = await engine.get_batches_by_farmer(farmer_id)
    return [BatchOut.model_validate(b) for b in batches]


# ── Single batch ─────────────────────────────────────────────

@router.get("/{batch_id}", response_model=BatchOut)
async def get_batch(
    batch_id: str,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batch = await engine.get_batch(batch_id)
    if not batch:
        raise HTTPException(status_code=404, detail="Batch not found")
    return BatchOut.model_validate(batch)


@router.get("/{batch_id}/crops", response_model=list[CropOut])
async def list_crops(
    batch_id: str,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    crops = await engine.get_crops_for_batch(batch_id)
    return [CropOut.model_validate(c) for c in crops]


@router.post("/{batch_id}/crops", response_model=CropOut, status_code=status.HTTP_201_CREATED)
async def add_crop(
    batch_id: str,
    body: AddCropRequest,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    crop = await engine.add_crop(batch_id, body, actor=body.actor)
    await invalidate_cache("batches:*")
    return CropOut.model_validate(crop)


@router.get("/{batch_id}/trace", response_model=list[TraceOut])
async def get_trace(
    batch_id: str,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    traces = await engine.get_batch_trace(batch_id)
    return [TraceOut.model_validate(t) for t in traces]


# ── Approval workflow ────────────────────────────────────────

@router.post("/{batch_id}/approve", response_model=BatchOut)
async def approve_batch(
    batch_id: str,
    body: ApproveRequest,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batch = await engine.approve_batch(batch_id, body.distributor_id)
    await invalidate_cache("batches:*")
    return BatchOut.model_validate(batch)


@router.post("/{batch_id}/reject", response_model=BatchOut)
async def reject_batch(
    batch_id: str,
    body: RejectRequest,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batch = await engine.reject_batch(batch_id, body.distributor_id, body.reason)
    await invalidate_cache("batches:*")
    return BatchOut.model_validate(batch)


@router.post("/{batch_id}/submit", response_model=BatchOut)
async def submit_batch(
    batch_id: str,
    body: ActorRequest,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batch = await engine.submit_for_approval(batch_id, body.actor)
    await invalidate_cache("batches:*")
    return BatchOut.model_validate(batch)


@router.patch("/{batch_id}/status", response_model=BatchOut)
async def update_status(
    batch_id: str,
    body: StatusUpdate,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batch = await engine.update_status(batch_id, body.status, body.actor)
    await invalidate_cache("batches:*")
    return BatchOut.model_validate(batch)


@router.patch("/{batch_id}/quality", response_model=BatchOut)
async def update_quality(
    batch_id: str,
    body: QualityUpdate,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batch = await engine.update_quality_grade(
        batch_id, body.grade, body.confidence, body.actor
    )
    await invalidate_cache("batches:*")
    return BatchOut.model_validate(batch)


# ── Split / merge ────────────────────────────────────────────

@router.post("/{batch_id}/split", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
async def split_batch(
    batch_id: str,
    body: SplitRequest,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    child = await engine.split_batch(batch_id, body.split_quantity, body.actor)
    await invalidate_cache("batches:*")
    return BatchOut.model_validate(child)


@router.post("/{batch_id}/merge", response_model=list[BatchOut])
async def merge_batches(
    batch_id: str,
    body: MergeRequest,
    engine: BatchLifecycleEngine = Depends(get_engine),
):
    batches = await engine.merge_batches(batch_id, body.source_batch_ids, body.actor)
    await invalidate_cache("batches:*")
    return [BatchOut.model_validate(b) for b in batches]
