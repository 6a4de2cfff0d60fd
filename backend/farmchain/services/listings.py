"""Marketplace listing publication.

The lifecycle engine never writes listings itself: on approval it stages
one ``ListingDraft`` per crop in the outbox, and the dispatcher hands each
draft to a ``ListingPublisher`` after the batch transaction commits.

Pricing (computed by the engine, carried on the draft):
    farmer_profit       = base_price * farmer_margin         (default 10 %)
    distributor_profit  = base_price * distributor_margin    (default 10 %)
    price               = base_price + farmer_profit + distributor_profit
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from farmchain.models.listing import Listing
from farmchain.utils.quantity import round2

logger = logging.getLogger(__name__)

_DECIMAL_FIELDS = (
    "quantity", "base_price", "price", "farmer_profit", "distributor_profit",
)


@dataclass
class ListingDraft:
    batch_id: str
    crop_id: str
    farmer_id: str
    distributor_id: str | None
    quantity: Decimal
    base_price: Decimal
    price: Decimal
    farmer_profit: Decimal
    distributor_profit: Decimal

    @classmethod
    def priced(
        cls,
        *,
        batch_id: str,
        crop_id: str,
        farmer_id: str,
        distributor_id: str | None,
        quantity,
        base_price,
        farmer_margin,
        distributor_margin,
    ) -> "ListingDraft":
        base = round2(base_price or 0)
        farmer_profit = round2(base * Decimal(str(farmer_margin)))
        distributor_profit = round2(base * Decimal(str(distributor_margin)))
        return cls(
            batch_id=batch_id,
            crop_id=crop_id,
            farmer_id=farmer_id,
            distributor_id=distributor_id,
            quantity=round2(quantity),
            base_price=base,
            price=round2(base + farmer_profit + distributor_profit),
            farmer_profit=farmer_profit,
            distributor_profit=distributor_profit,
        )

    def to_payload(self) -> dict:
        """JSON-safe dict for the outbox (decimals as strings)."""
        data = asdict(self)
        for name in _DECIMAL_FIELDS:
            data[name] = str(data[name])
        return data

    @classmethod
    def from_payload(cls, payload: dict) -> "ListingDraft":
        data = dict(payload)
        for name in _DECIMAL_FIELDS:
            data[name] = round2(data.get(name))
        return cls(**data)


class ListingPublisher(Protocol):
    async def create_or_activate(self, draft: ListingDraft) -> None: ...


class SqlListingPublisher:
    """Upserts listings by (batch_id, crop_id) in their own transaction."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create_or_activate(self, draft: ListingDraft) -> None:
        async with self._session_factory() as session:
            try:
                listing = (
                    await session.execute(
                        select(Listing).where(
                            Listing.batch_id == draft.batch_id,
                            Listing.crop_id == draft.crop_id,
                        )
                    )
                ).scalar_one_or_none()

                if listing is None:
                    listing = Listing(batch_id=draft.batch_id, crop_id=draft.crop_id)
                    session.add(listing)
                    action = "created"
                else:
                    action = "reactivated"

                listing.farmer_id = draft.farmer_id
                listing.distributor_id = draft.distributor_id
                listing.quantity = draft.quantity
                listing.base_price = draft.base_price
                listing.price = draft.price
                listing.farmer_profit = draft.farmer_profit
                listing.distributor_profit = draft.distributor_profit
                listing.status = "ACTIVE"

                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(
            "Listing %s for batch %s crop %s at %s",
            action, draft.batch_id, draft.crop_id, draft.price,
        )
