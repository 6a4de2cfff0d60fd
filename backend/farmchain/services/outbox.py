"""Outbox dispatcher — delivers side effects staged by batch transactions.

The lifecycle engine stages listing publications and notifications as
``OutboxEvent`` rows inside its transaction.  Once that transaction has
committed, this dispatcher hands each event to the listing publisher or
the notification sink.

Delivery is best-effort:
  - each event is first claimed (pending → delivering) by a conditional
    UPDATE, so concurrent dispatchers never deliver it twice
  - it is then delivered and marked in its own short transaction
  - a failure is logged, counted in ``attempts`` and kept ``pending``
  - after ``max_attempts`` failures the event is marked ``failed``
  - nothing raised by a publisher or sink ever reaches the caller

Pending events are retried by ``outbox_loop`` (started from the FastAPI
lifespan) or by ``python -m farmchain.cli dispatch-outbox``.
"""

import asyncio
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from farmchain.config import settings
from farmchain.database import utcnow
from farmchain.models.outbox import OutboxEvent
from farmchain.services.listings import ListingDraft, ListingPublisher
from farmchain.services.notifications import NotificationSink

logger = logging.getLogger("farmchain.outbox")

KIND_LISTING = "listing"
KIND_NOTIFICATION = "notification"


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        publisher: ListingPublisher,
        sink: NotificationSink,
        max_attempts: int | None = None,
    ):
        self._session_factory = session_factory
        self.publisher = publisher
        self.sink = sink
        self.max_attempts = max_attempts or settings.outbox_max_attempts

    async def _deliver(self, event: OutboxEvent) -> None:
        payload = event.payload or {}
        if event.kind == KIND_LISTING:
            await self.publisher.create_or_activate(ListingDraft.from_payload(payload))
        elif event.kind == KIND_NOTIFICATION:
            await self.sink.notify(
                payload.get("user_id"),
                payload.get("role"),
                payload.get("title"),
                payload.get("body"),
                payload.get("notification_type"),
                payload.get("entity_id"),
            )
        else:
            raise ValueError(f"Unknown outbox event kind: {event.kind}")

    async def _claim(self, event_id: str) -> bool:
        """Move a pending event to ``delivering``; False if someone else has it.

        The conditional UPDATE is the only point where two dispatchers
        (inline delivery, the poll loop, another worker) can meet, so at
        most one of them ever delivers a given event.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == event_id, OutboxEvent.status == "pending")
                .values(status="delivering")
            )
            await session.commit()
        return result.rowcount == 1

    async def _dispatch_one(self, event_id: str) -> bool:
        """Claim and deliver one pending event.  Returns True when delivered."""
        if not await self._claim(event_id):
            return False

        async with self._session_factory() as session:
            event = await session.get(OutboxEvent, event_id)

            try:
                await self._deliver(event)
            except Exception as exc:
                event.attempts = (event.attempts or 0) + 1
                event.last_error = f"{type(exc).__name__}: {exc}"[:2000]
                event.status = "failed" if event.attempts >= self.max_attempts else "pending"
                logger.warning(
                    "Outbox event %s (%s) delivery failed, attempt %d/%d",
                    event.id, event.kind, event.attempts, self.max_attempts,
                    exc_info=True,
                )
                await session.commit()
                return False

            event.attempts = (event.attempts or 0) + 1
            event.status = "delivered"
            event.delivered_at = utcnow()
            event.last_error = None
            await session.commit()
            return True

    async def dispatch(self, event_ids: list[str]) -> int:
        """Deliver the given events, in order.  Returns the delivered count."""
        delivered = 0
        for event_id in event_ids:
            try:
                if await self._dispatch_one(event_id):
                    delivered += 1
            except Exception:
                # Bookkeeping itself failed (e.g. DB down); the event stays
                # pending for the next loop.
                logger.exception("Outbox bookkeeping failed for event %s", event_id)
        return delivered

    async def dispatch_pending(self, limit: int = 100) -> int:
        """Deliver up to ``limit`` pending events, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(OutboxEvent.id)
                .where(OutboxEvent.status == "pending")
                .order_by(OutboxEvent.created_at.asc())
                .limit(limit)
            )
            event_ids = [row[0] for row in result.all()]

        if not event_ids:
            return 0
        delivered = await self.dispatch(event_ids)
        logger.info("Outbox run: %d/%d events delivered", delivered, len(event_ids))
        return delivered


async def outbox_loop(dispatcher: OutboxDispatcher, interval: int | None = None) -> None:
    """Poll for pending events forever; cancelled by the app lifespan."""
    interval = interval or settings.outbox_poll_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            await dispatcher.dispatch_pending()
        except Exception:
            logger.exception("Unhandled error in outbox loop")
