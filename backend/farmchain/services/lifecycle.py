"""Batch lifecycle engine — planting through approval, split and merge.

Every mutating operation runs inside one ``UnitOfWork``: the batch, its
crops, the trace entries and any outbound events commit together or not
at all.  Listings and notifications are only *staged* here (outbox rows);
they are delivered after commit by the ``OutboxDispatcher`` and can never
roll back or fail the batch operation.

Quantity rules:
  - all arithmetic is Decimal, rounded half-up to 2 dp after each step
  - after any operation, total_quantity == sum of non-blocked crop quantities
  - split is proportional per crop; merge moves crops and sums them

Status writes are free-form unless ``settings.enforce_status_transitions``
is on (see ``farmchain.services.transitions``).
"""

import decimal
import logging
from datetime import date
from decimal import Decimal
from typing import Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from farmchain.config import settings
from farmchain.database import async_session, utcnow
from farmchain.exceptions import InvalidOperation, NotFound
from farmchain.models.batch import BatchRecord
from farmchain.models.batch_trace import BatchTrace
from farmchain.models.crop import Crop
from farmchain.models.notification import BROADCAST, NotificationType
from farmchain.schemas.batch import BatchCreate, CropCreate
from farmchain.services.listings import ListingDraft, SqlListingPublisher
from farmchain.services.notifications import SqlNotificationSink
from farmchain.services.outbox import KIND_LISTING, KIND_NOTIFICATION, OutboxDispatcher
from farmchain.services.transitions import BatchStatus, check_transition
from farmchain.stores import UnitOfWork
from farmchain.utils.numbering import (
    BATCH_ID_MAX_LENGTH,
    can_split,
    generate_batch_id,
    generate_split_id,
)
from farmchain.utils.quantity import EPSILON, ZERO, format_quantity, parse_quantity, round2

logger = logging.getLogger("farmchain.lifecycle")

PENDING_STATUSES = [
    BatchStatus.HARVESTED.value,
    BatchStatus.SUBMITTED_FOR_APPROVAL.value,
]

ROLE_FARMER = "FARMER"
ROLE_DISTRIBUTOR = "DISTRIBUTOR"

# Attempts at drawing an unused random id before giving up
_ID_ATTEMPTS = 5


def _is_harvested(status: str | None) -> bool:
    return (status or "").upper() == BatchStatus.HARVESTED.value


class BatchLifecycleEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        dispatcher: OutboxDispatcher | None = None,
        *,
        inline_dispatch: bool | None = None,
        farmer_margin: float | None = None,
        distributor_margin: float | None = None,
    ):
        self._session_factory = session_factory
        self.dispatcher = dispatcher
        self.inline_dispatch = (
            settings.outbox_inline_dispatch if inline_dispatch is None else inline_dispatch
        )
        self.farmer_margin = (
            settings.farmer_margin if farmer_margin is None else farmer_margin
        )
        self.distributor_margin = (
            settings.distributor_margin if distributor_margin is None else distributor_margin
        )

    # ── Internals ────────────────────────────────────────────

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self._session_factory)

    async def _after_commit(self, uow: UnitOfWork) -> None:
        """Deliver what the committed transaction staged, if inline delivery is on."""
        if not uow.staged_event_ids or self.dispatcher is None or not self.inline_dispatch:
            return
        try:
            await self.dispatcher.dispatch(uow.staged_event_ids)
        except Exception:
            logger.exception("Post-commit dispatch failed; events stay pending")

    async def _require(
        self,
        uow: UnitOfWork,
        batch_id: str,
        operation: str,
        *,
        for_update: bool = False,
    ) -> BatchRecord:
        batch = await uow.batches.get(batch_id, for_update=for_update)
        if batch is None:
            raise NotFound("Batch", batch_id, operation)
        return batch

    async def _unique_id(self, uow: UnitOfWork, generate: Callable[[], str]) -> str:
        for _ in range(_ID_ATTEMPTS):
            candidate = generate()
            if not await uow.batches.exists(candidate):
                return candidate
        raise InvalidOperation("Could not allocate a unique batch id; retry")

    async def _notify(
        self,
        uow: UnitOfWork,
        user_id: str | None,
        role: str,
        title: str,
        body: str,
        notification_type: str,
        entity_id: str,
    ) -> None:
        await uow.outbox.stage(KIND_NOTIFICATION, {
            "user_id": user_id,
            "role": role,
            "title": title,
            "body": body,
            "notification_type": notification_type,
            "entity_id": entity_id,
        })

    @staticmethod
    def _new_crop(batch: BatchRecord, data: CropCreate, quantity: Decimal) -> Crop:
        return Crop(
            batch_id=batch.batch_id,
            farmer_id=batch.farmer_id,
            crop_name=data.crop_name,
            quantity=format_quantity(quantity),
            location=data.location,
            expected_harvest_date=data.expected_harvest_date,
            quality_grade=data.quality_grade,
            price=round2(data.price) if data.price is not None else None,
            status=batch.status,
            blocked=False,
        )

    # ── Create ───────────────────────────────────────────────

    async def create_batch(self, data: BatchCreate) -> BatchRecord:
        """Create a batch, optionally with its initial crop lots.

        With crops, ``total_quantity`` is their rounded sum; a supplied
        total that disagrees by more than 0.01 is rejected.  No trace
        entry is written; the batch row itself records creation.
        """
        farmer_id = (data.farmer_id or "").strip()
        crop_type = (data.crop_type or "").strip()
        if not farmer_id:
            raise InvalidOperation("Farmer ID is required")
        if not crop_type:
            raise InvalidOperation("Crop type is required")

        status = data.status or BatchStatus.PLANTED.value
        harvest_date = data.harvest_date
        if _is_harvested(status) and harvest_date is None:
            harvest_date = date.today()

        quantities = [parse_quantity(c.quantity) for c in data.crops]
        if any(q < 0 for q in quantities):
            raise InvalidOperation("Crop quantity cannot be negative")

        if data.crops:
            total = round2(sum(quantities, ZERO))
            if (
                data.total_quantity is not None
                and abs(round2(data.total_quantity) - total) > EPSILON
            ):
                raise InvalidOperation(
                    f"total_quantity {round2(data.total_quantity)} does not match "
                    f"crop quantities {total}"
                )
        else:
            total = round2(data.total_quantity) if data.total_quantity is not None else ZERO

        requested_id = (data.batch_id or "").strip()

        async with self._uow() as uow:
            if requested_id:
                if await uow.batches.exists(requested_id):
                    raise InvalidOperation(f"Batch id already exists: {requested_id}")
                batch_id = requested_id
            else:
                batch_id = await self._unique_id(uow, lambda: generate_batch_id(crop_type))

            batch = BatchRecord(
                batch_id=batch_id,
                farmer_id=farmer_id,
                crop_type=crop_type,
                total_quantity=total,
                harvest_date=harvest_date,
                status=status,
                blocked=False,
                created_at=utcnow(),
            )
            await uow.batches.save(batch)

            crops = [
                self._new_crop(batch, crop_data, quantity)
                for crop_data, quantity in zip(data.crops, quantities)
            ]
            if crops:
                await uow.crops.save_all(crops)

        logger.info(
            "Created batch %s (%s, %s kg, %d crops) for farmer %s",
            batch.batch_id, crop_type, total, len(crops), farmer_id,
        )
        return batch

    async def add_crop(self, batch_id: str, data: CropCreate, actor: str | None) -> Crop:
        """Register another crop lot under an existing batch."""
        quantity = parse_quantity(data.quantity)
        if quantity < 0:
            raise InvalidOperation("Crop quantity cannot be negative")

        async with self._uow() as uow:
            batch = await self._require(uow, batch_id, "add_crop", for_update=True)
            if batch.blocked:
                raise InvalidOperation(f"Batch {batch_id} is blocked")

            crop = await uow.crops.save(self._new_crop(batch, data, quantity))

            batch.total_quantity = round2(round2(batch.total_quantity) + quantity)
            batch.updated_at = utcnow()
            await uow.batches.save(batch)
            await uow.traces.append(batch.batch_id, batch.farmer_id, "CROP_ADDED", actor)

        logger.info("Added crop %s (%s kg) to batch %s", crop.id, quantity, batch_id)
        return crop

    # ── Reads ────────────────────────────────────────────────

    async def get_batch(self, batch_id: str) -> BatchRecord | None:
        async with self._uow() as uow:
            return await uow.batches.get(batch_id)

    async def get_batches_by_farmer(self, farmer_id: str) -> list[BatchRecord]:
        async with self._uow() as uow:
            return await uow.batches.find_by_farmer(farmer_id)

    async def get_crops_for_batch(self, batch_id: str) -> list[Crop]:
        async with self._uow() as uow:
            return await uow.crops.find_by_batch(batch_id)

    async def get_pending_batches_for_distributor(self) -> list[BatchRecord]:
        """Harvested or submitted batches that are unblocked and own an active crop."""
        async with self._uow() as uow:
            return await uow.batches.find_active_by_status_in(PENDING_STATUSES)

    async def get_approved_batches(self, distributor_id: str) -> list[BatchRecord]:
        async with self._uow() as uow:
            return await uow.batches.find_active_by_status_in(
                [BatchStatus.APPROVED.value], distributor_id=distributor_id
            )

    async def get_batch_trace(self, batch_id: str) -> list[BatchTrace]:
        async with self._uow() as uow:
            return await uow.traces.find_by_batch_ordered_by_time(batch_id)

    # ── Approval ─────────────────────────────────────────────

    async def approve_batch(self, batch_id: str, distributor_id: str) -> BatchRecord:
        """Approve a batch and publish one listing per crop.

        Idempotent: an already-approved batch is returned untouched, with
        no new listings and no second notification.
        """
        async with self._uow() as uow:
            batch = await self._require(uow, batch_id, "approve_batch", for_update=True)
            if batch.status == BatchStatus.APPROVED.value:
                return batch

            check_transition(batch.status, BatchStatus.APPROVED.value)

            batch.status = BatchStatus.APPROVED.value
            batch.distributor_id = distributor_id
            batch.updated_at = utcnow()

            crops = await uow.crops.find_by_batch(batch_id)
            for crop in crops:
                draft = ListingDraft.priced(
                    batch_id=batch_id,
                    crop_id=crop.id,
                    farmer_id=batch.farmer_id,
                    distributor_id=distributor_id,
                    quantity=crop.quantity_value,
                    base_price=crop.price,
                    farmer_margin=self.farmer_margin,
                    distributor_margin=self.distributor_margin,
                )
                await uow.outbox.stage(KIND_LISTING, draft.to_payload())

            await uow.batches.save(batch)
            await uow.traces.append(
                batch.batch_id, batch.farmer_id, BatchStatus.APPROVED.value, distributor_id
            )
            await self._notify(
                uow,
                batch.farmer_id,
                ROLE_FARMER,
                "Batch Approved",
                f"Your batch {batch_id} has been approved and listed in the marketplace.",
                NotificationType.BATCH_APPROVED,
                batch_id,
            )

        await self._after_commit(uow)
        logger.info(
            "Batch %s approved by %s (%d listings staged)",
            batch_id, distributor_id, len(crops),
        )
        return batch

    async def reject_batch(
        self,
        batch_id: str,
        distributor_id: str,
        reason: str | None,
    ) -> BatchRecord:
        """Reject and permanently block a batch."""
        async with self._uow() as uow:
            batch = await self._require(uow, batch_id, "reject_batch", for_update=True)
            check_transition(batch.status, BatchStatus.REJECTED.value)

            batch.status = BatchStatus.REJECTED.value
            batch.rejected_by = distributor_id
            batch.rejection_reason = reason
            batch.blocked = True
            batch.updated_at = utcnow()
            await uow.batches.save(batch)

            await uow.traces.append(
                batch.batch_id,
                batch.farmer_id,
                f"REJECTED - Reason: {reason or 'N/A'}",
                distributor_id,
            )
            await self._notify(
                uow,
                batch.farmer_id,
                ROLE_FARMER,
                "Batch Rejected",
                f"Your batch {batch_id} was rejected. Reason: {reason or 'Not specified'}",
                NotificationType.BATCH_REJECTED,
                batch_id,
            )

        await self._after_commit(uow)
        logger.info("Batch %s rejected by %s", batch_id, distributor_id)
        return batch

    async def submit_for_approval(self, batch_id: str, actor: str | None) -> BatchRecord:
        async with self._uow() as uow:
            batch = await self._require(uow, batch_id, "submit_for_approval", for_update=True)
            check_transition(batch.status, BatchStatus.SUBMITTED_FOR_APPROVAL.value)

            batch.status = BatchStatus.SUBMITTED_FOR_APPROVAL.value
            batch.updated_at = utcnow()
            await uow.batches.save(batch)
            await uow.traces.append(
                batch.batch_id,
                batch.farmer_id,
                BatchStatus.SUBMITTED_FOR_APPROVAL.value,
                actor,
            )

        logger.info("Batch %s submitted for approval by %s", batch_id, actor)
        return batch

    # ── Status and quality ───────────────────────────────────

    async def update_status(self, batch_id: str, status: str, actor: str | None) -> BatchRecord:
        """Write a status to the batch and all of its crops.

        Moving to HARVESTED stamps the harvest date (if unset) and tells
        every distributor a batch is waiting for approval.
        """
        if not status or not status.strip():
            raise InvalidOperation("Status is required")

        async with self._uow() as uow:
            batch = await self._require(uow, batch_id, "update_status", for_update=True)
            check_transition(batch.status, status)

            batch.status = status
            batch.updated_at = utcnow()
            if _is_harvested(status) and batch.harvest_date is None:
                batch.harvest_date = date.today()

            crops = await uow.crops.find_by_batch(batch_id)
            for crop in crops:
                crop.status = status
            await uow.crops.save_all(crops)

            await uow.batches.save(batch)
            await uow.traces.append(batch.batch_id, batch.farmer_id, status, actor)

            if _is_harvested(status):
                await self._notify(
                    uow,
                    BROADCAST,
                    ROLE_DISTRIBUTOR,
                    "New Batch Ready for Approval",
                    f"Batch {batch.batch_id} is harvested and waiting for approval",
                    NotificationType.BATCH_SUBMITTED,
                    batch.batch_id,
                )

        await self._after_commit(uow)
        logger.info("Batch %s status -> %s by %s", batch_id, status, actor)
        return batch

    async def update_quality_grade(
        self,
        batch_id: str,
        grade: str | None,
        confidence: float | None,
        actor: str | None,
    ) -> BatchRecord:
        """Apply a quality grade to every crop; record confidence on the batch."""
        async with self._uow() as uow:
            batch = await self._require(uow, batch_id, "update_quality_grade", for_update=True)

            crops = await uow.crops.find_by_batch(batch_id)
            for crop in crops:
                crop.quality_grade = grade
            if crops:
                await uow.crops.save_all(crops)

            if confidence is not None:
                batch.avg_quality_score = float(confidence)
            batch.updated_at = utcnow()
            await uow.batches.save(batch)
            await uow.traces.append(batch.batch_id, batch.farmer_id, "QUALITY_UPDATED", actor)

        logger.info(
            "Batch %s graded %s (confidence %s, %d crops)",
            batch_id, grade, confidence, len(crops),
        )
        return batch

    # ── Split / merge ────────────────────────────────────────

    async def split_batch(
        self,
        parent_batch_id: str,
        split_quantity,
        actor: str | None,
    ) -> BatchRecord:
        """Carve ``split_quantity`` kg off a batch into a new child batch.

        Each parent crop gives up the same fraction of its quantity:

            ratio      = split_quantity / parent_total
            child_qty  = round2(q * ratio)
            remaining  = round2(q - child_qty)

        Crops whose share rounds to zero stay entirely with the parent.
        Returns the child batch.
        """
        try:
            split = Decimal(str(split_quantity))
        except decimal.InvalidOperation:
            raise InvalidOperation(f"Invalid split quantity: {split_quantity!r}")
        if not split.is_finite():
            raise InvalidOperation(f"Invalid split quantity: {split_quantity!r}")

        async with self._uow() as uow:
            parent = await self._require(uow, parent_batch_id, "split_batch", for_update=True)

            parent_total = round2(parent.total_quantity)
            if split <= 0 or split > parent_total:
                raise InvalidOperation(
                    f"Invalid split quantity {split}: must be > 0 and <= {parent_total}"
                )

            parent_crops = await uow.crops.find_by_batch(parent_batch_id)
            if not parent_crops:
                raise InvalidOperation(f"Batch {parent_batch_id} has no crops to split")

            if not can_split(parent.batch_id):
                raise InvalidOperation(
                    f"Batch {parent_batch_id} cannot be split further: "
                    f"child id would exceed {BATCH_ID_MAX_LENGTH} characters"
                )

            ratio = split / parent_total

            child = BatchRecord(
                batch_id=await self._unique_id(
                    uow, lambda: generate_split_id(parent.batch_id)
                ),
                farmer_id=parent.farmer_id,
                crop_type=parent.crop_type,
                status=parent.status,
                total_quantity=round2(split),
                blocked=False,
                created_at=utcnow(),
            )
            # Child row must exist before its crops reference it
            await uow.batches.save(child)

            child_crops = []
            for crop in parent_crops:
                quantity = crop.quantity_value
                child_qty = round2(quantity * ratio)
                remaining = round2(quantity - child_qty)

                crop.quantity = format_quantity(remaining)

                if child_qty > 0:
                    child_crops.append(Crop(
                        batch_id=child.batch_id,
                        farmer_id=parent.farmer_id,
                        crop_name=crop.crop_name,
                        quantity=format_quantity(child_qty),
                        location=crop.location,
                        expected_harvest_date=crop.expected_harvest_date,
                        quality_grade=crop.quality_grade,
                        price=crop.price,
                        status=child.status,
                        blocked=False,
                    ))

            await uow.crops.save_all(parent_crops)
            if child_crops:
                await uow.crops.save_all(child_crops)

            parent.total_quantity = round2(parent_total - split)
            parent.updated_at = utcnow()
            await uow.batches.save(parent)

            await uow.traces.append(parent.batch_id, parent.farmer_id, "SPLIT", actor)
            await uow.traces.append(child.batch_id, child.farmer_id, "CREATED_BY_SPLIT", actor)

        logger.info(
            "Split %s kg from %s into %s (%d crops)",
            child.total_quantity, parent_batch_id, child.batch_id, len(child_crops),
        )
        return child

    async def merge_batches(
        self,
        target_batch_id: str,
        source_batch_ids: list[str],
        actor: str | None,
    ) -> list[BatchRecord]:
        """Fold source batches of the same crop type into a target batch.

        All sources are resolved and checked before anything is touched;
        a single mismatched crop type aborts the whole merge.  Sources end
        blocked and MERGED with zero quantity, the target ends ACTIVE.
        Returns the farmer's remaining (non-blocked) batches.
        """
        if not source_batch_ids:
            raise InvalidOperation("No source batches provided")

        async with self._uow() as uow:
            target = await self._require(uow, target_batch_id, "merge_batches", for_update=True)

            # Skip the target itself; collapse duplicates, keep order
            source_ids = list(dict.fromkeys(
                sid for sid in source_batch_ids if sid != target_batch_id
            ))

            sources = []
            for source_id in source_ids:
                sources.append(
                    await self._require(uow, source_id, "merge_batches", for_update=True)
                )

            for source in sources:
                if source.crop_type != target.crop_type:
                    raise InvalidOperation(
                        f"Cannot merge batches of different crop types: "
                        f"{source.batch_id} is {source.crop_type}, "
                        f"{target.batch_id} is {target.crop_type}"
                    )

            total_added = ZERO
            moved = []
            now = utcnow()

            for source in sources:
                for crop in await uow.crops.find_by_batch(source.batch_id):
                    crop.batch_id = target.batch_id
                    total_added += crop.quantity_value
                    moved.append(crop)

                source.blocked = True
                source.status = BatchStatus.MERGED.value
                source.total_quantity = ZERO
                source.updated_at = now
                await uow.batches.save(source)
                await uow.traces.append(
                    source.batch_id,
                    source.farmer_id,
                    f"MERGED_INTO -> {target.batch_id}",
                    actor,
                )

            if moved:
                await uow.crops.save_all(moved)

            target.total_quantity = round2(round2(target.total_quantity) + round2(total_added))
            target.status = BatchStatus.ACTIVE.value
            target.updated_at = now
            await uow.batches.save(target)
            await uow.traces.append(
                target.batch_id, target.farmer_id, "MERGED_FROM_SOURCES", actor
            )

            remaining = await uow.batches.find_by_farmer_and_not_blocked(target.farmer_id)

        logger.info(
            "Merged %d batches (%s kg, %d crops) into %s",
            len(sources), round2(total_added), len(moved), target_batch_id,
        )
        return remaining


# ── Default wiring ───────────────────────────────────────────

_engine: BatchLifecycleEngine | None = None


def build_engine(session_factory: async_sessionmaker) -> BatchLifecycleEngine:
    """Engine with DB-backed listing publisher and notification sink."""
    dispatcher = OutboxDispatcher(
        session_factory,
        publisher=SqlListingPublisher(session_factory),
        sink=SqlNotificationSink(session_factory),
    )
    return BatchLifecycleEngine(session_factory, dispatcher)


def get_engine() -> BatchLifecycleEngine:
    """FastAPI dependency: the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = build_engine(async_session)
    return _engine
