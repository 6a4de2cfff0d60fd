"""Persistence contracts for the lifecycle engine, over one AsyncSession.

    BatchStore    batch_records reads/writes
    CropStore     crops reads/writes
    TraceLog      append-only batch_traces
    OutboxStore   side effects staged for after-commit delivery

``UnitOfWork`` binds all four to a single session so that an engine
operation commits batch, crop, trace and outbox writes together or not at
all:

    async with UnitOfWork(async_session) as uow:
        batch = await uow.batches.get(batch_id, for_update=True)
        ...
    # committed here; uow.staged_event_ids lists outbox rows to deliver

Nothing in this module commits on its own; ``save`` only adds to the
session and flushes where an id or ordering is needed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from farmchain.database import utcnow
from farmchain.exceptions import ConcurrentModification
from farmchain.models.batch import BatchRecord
from farmchain.models.batch_trace import BatchTrace
from farmchain.models.crop import Crop
from farmchain.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)


class BatchStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, batch_id: str, *, for_update: bool = False) -> BatchRecord | None:
        """Load one batch; ``for_update`` takes a row lock where the DB supports it."""
        stmt = select(BatchRecord).where(BatchRecord.batch_id == batch_id)
        if for_update:
            stmt = stmt.with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def exists(self, batch_id: str) -> bool:
        stmt = select(BatchRecord.batch_id).where(BatchRecord.batch_id == batch_id)
        return (await self.session.execute(stmt)).first() is not None

    async def save(self, batch: BatchRecord) -> BatchRecord:
        self.session.add(batch)
        await self.session.flush()
        return batch

    async def find_by_farmer(self, farmer_id: str) -> list[BatchRecord]:
        stmt = (
            select(BatchRecord)
            .where(BatchRecord.farmer_id == farmer_id)
            .order_by(BatchRecord.created_at.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def find_by_status_in(self, statuses: list[str]) -> list[BatchRecord]:
        stmt = (
            select(BatchRecord)
            .where(BatchRecord.status.in_(statuses))
            .order_by(BatchRecord.created_at.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def find_by_distributor_and_status(
        self, distributor_id: str, status: str
    ) -> list[BatchRecord]:
        stmt = (
            select(BatchRecord)
            .where(
                BatchRecord.distributor_id == distributor_id,
                BatchRecord.status == status,
            )
            .order_by(BatchRecord.created_at.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def find_by_farmer_and_not_blocked(self, farmer_id: str) -> list[BatchRecord]:
        stmt = (
            select(BatchRecord)
            .where(
                BatchRecord.farmer_id == farmer_id,
                BatchRecord.blocked == False,  # noqa: E712
            )
            .order_by(BatchRecord.created_at.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def find_active_by_status_in(
        self,
        statuses: list[str],
        distributor_id: str | None = None,
    ) -> list[BatchRecord]:
        """Non-blocked batches in ``statuses`` that still own a non-blocked crop.

        The crop check is a correlated EXISTS, so the whole queue is one
        query instead of one crop lookup per batch.
        """
        has_active_crop = exists().where(
            Crop.batch_id == BatchRecord.batch_id,
            Crop.blocked == False,  # noqa: E712
        )
        stmt = select(BatchRecord).where(
            BatchRecord.status.in_(statuses),
            BatchRecord.blocked == False,  # noqa: E712
            has_active_crop,
        )
        if distributor_id is not None:
            stmt = stmt.where(BatchRecord.distributor_id == distributor_id)
        stmt = stmt.order_by(BatchRecord.created_at.asc())
        return list((await self.session.execute(stmt)).scalars().all())


class CropStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_batch(self, batch_id: str) -> list[Crop]:
        stmt = (
            select(Crop)
            .where(Crop.batch_id == batch_id)
            .order_by(Crop.created_at.asc(), Crop.id.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def save(self, crop: Crop) -> Crop:
        self.session.add(crop)
        await self.session.flush()
        return crop

    async def save_all(self, crops: list[Crop]) -> list[Crop]:
        self.session.add_all(crops)
        await self.session.flush()
        return crops


class TraceLog:
    """Append-only audit sink; entries are never updated or removed."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        batch_id: str,
        farmer_id: str | None,
        label: str,
        actor: str | None,
        timestamp: datetime | None = None,
    ) -> BatchTrace:
        trace = BatchTrace(
            batch_id=batch_id,
            farmer_id=farmer_id,
            label=label,
            changed_by=actor,
            timestamp=timestamp or utcnow(),
        )
        self.session.add(trace)
        await self.session.flush()
        return trace

    async def find_by_batch_ordered_by_time(self, batch_id: str) -> list[BatchTrace]:
        stmt = (
            select(BatchTrace)
            .where(BatchTrace.batch_id == batch_id)
            .order_by(BatchTrace.timestamp.asc(), BatchTrace.id.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())


class OutboxStore:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.staged_ids: list[str] = []

    async def stage(self, kind: str, payload: dict) -> OutboxEvent:
        event = OutboxEvent(kind=kind, payload=payload, status="pending", attempts=0)
        self.session.add(event)
        await self.session.flush()
        self.staged_ids.append(event.id)
        return event


class UnitOfWork:
    """One session, one transaction, four stores."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self.session: AsyncSession | None = None
        self.staged_event_ids: list[str] = []

    async def __aenter__(self) -> UnitOfWork:
        self.session = self._session_factory()
        self.batches = BatchStore(self.session)
        self.crops = CropStore(self.session)
        self.traces = TraceLog(self.session)
        self.outbox = OutboxStore(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                try:
                    await self.session.commit()
                except StaleDataError as stale:
                    await self.session.rollback()
                    logger.warning("Optimistic lock failure on commit: %s", stale)
                    raise ConcurrentModification("Batch") from stale
                self.staged_event_ids = list(self.outbox.staged_ids)
            else:
                await self.session.rollback()
                if isinstance(exc, StaleDataError):
                    logger.warning("Optimistic lock failure on flush: %s", exc)
                    raise ConcurrentModification("Batch") from exc
        finally:
            await self.session.close()
