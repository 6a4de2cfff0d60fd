"""Batch creation, crop intake and read queries."""

import re
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from farmchain.exceptions import InvalidOperation, NotFound
from farmchain.models.crop import Crop
from farmchain.schemas.batch import BatchCreate, CropCreate


@pytest.mark.integration
@pytest.mark.asyncio
class TestCreateBatch:
    """create_batch validation, defaults and id allocation."""

    async def test_generates_id_and_defaults(self, lifecycle):
        batch = await lifecycle.create_batch(
            BatchCreate(farmer_id="farmer-1", crop_type="Tomato")
        )

        assert re.fullmatch(r"FCX-TOM-\d{6}-[0-9A-F]{6}", batch.batch_id)
        assert batch.status == "PLANTED"
        assert batch.total_quantity == Decimal("0.00")
        assert batch.blocked is False
        assert batch.harvest_date is None
        assert batch.created_at is not None

    async def test_no_trace_on_create(self, lifecycle, make_batch):
        batch = await make_batch(10)
        assert await lifecycle.get_batch_trace(batch.batch_id) == []

    @pytest.mark.parametrize("farmer_id,crop_type", [
        (None, "Tomato"),
        ("", "Tomato"),
        ("   ", "Tomato"),
        ("farmer-1", None),
        ("farmer-1", ""),
    ])
    async def test_requires_farmer_and_crop_type(self, lifecycle, farmer_id, crop_type):
        with pytest.raises(InvalidOperation):
            await lifecycle.create_batch(
                BatchCreate(farmer_id=farmer_id, crop_type=crop_type)
            )

    async def test_keeps_supplied_id(self, lifecycle):
        batch = await lifecycle.create_batch(
            BatchCreate(batch_id="FCX-TOM-260101-AAAAAA", farmer_id="f", crop_type="Tomato")
        )
        assert batch.batch_id == "FCX-TOM-260101-AAAAAA"

    async def test_duplicate_supplied_id_rejected(self, lifecycle):
        data = BatchCreate(batch_id="DUP-1", farmer_id="f", crop_type="Tomato")
        await lifecycle.create_batch(data)

        with pytest.raises(InvalidOperation, match="already exists"):
            await lifecycle.create_batch(data)

    @pytest.mark.parametrize("status", ["HARVESTED", "harvested"])
    async def test_harvested_sets_harvest_date(self, lifecycle, status):
        batch = await lifecycle.create_batch(
            BatchCreate(farmer_id="f", crop_type="Maize", status=status)
        )
        assert batch.harvest_date == date.today()

    async def test_explicit_harvest_date_kept(self, lifecycle):
        batch = await lifecycle.create_batch(BatchCreate(
            farmer_id="f", crop_type="Maize", status="HARVESTED",
            harvest_date=date(2026, 1, 15),
        ))
        assert batch.harvest_date == date(2026, 1, 15)

    async def test_total_without_crops(self, lifecycle):
        batch = await lifecycle.create_batch(BatchCreate(
            farmer_id="f", crop_type="Maize", total_quantity=Decimal("12.345"),
        ))
        assert batch.total_quantity == Decimal("12.35")

    async def test_total_is_sum_of_crops(self, lifecycle, make_batch):
        batch = await make_batch("33.33", "33.33", "33.34")

        assert batch.total_quantity == Decimal("100.00")
        crops = await lifecycle.get_crops_for_batch(batch.batch_id)
        assert sorted(c.quantity for c in crops) == ["33.33", "33.33", "33.34"]
        assert all(c.farmer_id == "farmer-1" for c in crops)
        assert all(c.status == "PLANTED" for c in crops)

    async def test_mismatched_total_rejected(self, lifecycle):
        with pytest.raises(InvalidOperation, match="does not match"):
            await lifecycle.create_batch(BatchCreate(
                farmer_id="f", crop_type="Maize",
                total_quantity=Decimal("90"),
                crops=[CropCreate(quantity="100")],
            ))

    async def test_negative_crop_quantity_rejected(self, lifecycle, fetch):
        with pytest.raises(InvalidOperation, match="negative"):
            await lifecycle.create_batch(BatchCreate(
                batch_id="NEG-1", farmer_id="f", crop_type="Maize",
                crops=[CropCreate(quantity="-5")],
            ))
        assert await lifecycle.get_batch("NEG-1") is None

    async def test_unparsable_quantity_becomes_zero(self, lifecycle, make_batch):
        batch = await make_batch("a lot", "10")

        assert batch.total_quantity == Decimal("10.00")
        crops = await lifecycle.get_crops_for_batch(batch.batch_id)
        assert sorted(c.quantity for c in crops) == ["0.00", "10.00"]


@pytest.mark.integration
@pytest.mark.asyncio
class TestAddCrop:
    """Registering extra lots under an existing batch."""

    async def test_adds_quantity_and_trace(self, lifecycle, make_batch):
        batch = await make_batch(10)

        crop = await lifecycle.add_crop(
            batch.batch_id, CropCreate(crop_name="Roma", quantity="5.5"), actor="farmer-1"
        )

        assert crop.quantity == "5.50"
        assert crop.batch_id == batch.batch_id
        refreshed = await lifecycle.get_batch(batch.batch_id)
        assert refreshed.total_quantity == Decimal("15.50")
        trace = await lifecycle.get_batch_trace(batch.batch_id)
        assert [t.label for t in trace] == ["CROP_ADDED"]
        assert trace[0].changed_by == "farmer-1"

    async def test_missing_batch(self, lifecycle):
        with pytest.raises(NotFound) as exc_info:
            await lifecycle.add_crop("NOPE", CropCreate(quantity="1"), actor="x")
        assert exc_info.value.identifier == "NOPE"
        assert exc_info.value.operation == "add_crop"

    async def test_blocked_batch(self, lifecycle, make_batch):
        batch = await make_batch(10)
        await lifecycle.reject_batch(batch.batch_id, "dist-1", "mould")

        with pytest.raises(InvalidOperation, match="blocked"):
            await lifecycle.add_crop(batch.batch_id, CropCreate(quantity="1"), actor="x")


@pytest.mark.integration
@pytest.mark.asyncio
class TestReads:
    """Farmer and distributor views."""

    async def test_get_batch_unknown(self, lifecycle):
        assert await lifecycle.get_batch("NOPE") is None

    async def test_batches_by_farmer(self, lifecycle, make_batch):
        first = await make_batch(1, farmer_id="farmer-a")
        second = await make_batch(2, farmer_id="farmer-a")
        await make_batch(3, farmer_id="farmer-b")

        batches = await lifecycle.get_batches_by_farmer("farmer-a")

        assert [b.batch_id for b in batches] == [first.batch_id, second.batch_id]

    async def test_pending_requires_active_crop(self, lifecycle, make_batch, session_factory):
        ready = await make_batch(10, status="HARVESTED")
        submitted = await make_batch(10, status="SUBMITTED_FOR_APPROVAL")
        await make_batch(status="HARVESTED")  # no crops
        await make_batch(10, status="PLANTED")
        all_blocked = await make_batch(10, status="HARVESTED")

        async with session_factory() as session:
            await session.execute(
                update(Crop).where(Crop.batch_id == all_blocked.batch_id).values(blocked=True)
            )
            await session.commit()

        pending = await lifecycle.get_pending_batches_for_distributor()

        assert {b.batch_id for b in pending} == {ready.batch_id, submitted.batch_id}

    async def test_approved_filtered_by_distributor(self, lifecycle, make_batch):
        mine = await make_batch(10, status="HARVESTED")
        theirs = await make_batch(10, status="HARVESTED")
        await lifecycle.approve_batch(mine.batch_id, "dist-1")
        await lifecycle.approve_batch(theirs.batch_id, "dist-2")

        approved = await lifecycle.get_approved_batches("dist-1")

        assert [b.batch_id for b in approved] == [mine.batch_id]

    async def test_crops_for_unknown_batch(self, lifecycle, fetch):
        assert await lifecycle.get_crops_for_batch("NOPE") == []
        assert await fetch(select(Crop)) == []
