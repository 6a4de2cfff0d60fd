"""HTTP surface of the batch lifecycle, including the error envelope."""

import pytest
from httpx import AsyncClient


async def _create(client: AsyncClient, *quantities, status="HARVESTED", crop_type="Tomato", price=10):
    response = await client.post("/api/batches/", json={
        "farmer_id": "farmer-1",
        "crop_type": crop_type,
        "status": status,
        "crops": [{"crop_name": crop_type, "quantity": str(q), "price": price} for q in quantities],
    })
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.api
@pytest.mark.asyncio
class TestBatchEndpoints:
    """Happy paths through the router."""

    async def test_create_and_get(self, client: AsyncClient):
        created = await _create(client, 60, 40)

        assert created["total_quantity"] == 100.0
        assert created["status"] == "HARVESTED"
        assert created["blocked"] is False

        response = await client.get(f"/api/batches/{created['batch_id']}")
        assert response.status_code == 200
        assert response.json()["batch_id"] == created["batch_id"]

        crops = (await client.get(f"/api/batches/{created['batch_id']}/crops")).json()
        assert sorted(c["quantity"] for c in crops) == ["40.00", "60.00"]

    async def test_farmer_batches(self, client: AsyncClient):
        first = await _create(client, 1)
        second = await _create(client, 2)

        response = await client.get("/api/batches/farmer/farmer-1")

        assert [b["batch_id"] for b in response.json()] == [first["batch_id"], second["batch_id"]]

    async def test_add_crop(self, client: AsyncClient):
        created = await _create(client, 10)

        response = await client.post(
            f"/api/batches/{created['batch_id']}/crops",
            json={"crop_name": "Roma", "quantity": "2.5", "actor": "farmer-1"},
        )

        assert response.status_code == 201
        assert response.json()["quantity"] == "2.50"
        batch = (await client.get(f"/api/batches/{created['batch_id']}")).json()
        assert batch["total_quantity"] == 12.5

    async def test_approval_flow(self, client: AsyncClient):
        created = await _create(client, 25)
        batch_id = created["batch_id"]

        pending = (await client.get("/api/batches/pending")).json()
        assert [b["batch_id"] for b in pending] == [batch_id]

        submitted = await client.post(f"/api/batches/{batch_id}/submit", json={"actor": "farmer-1"})
        assert submitted.json()["status"] == "SUBMITTED_FOR_APPROVAL"

        approved = await client.post(f"/api/batches/{batch_id}/approve", json={"distributor_id": "dist-1"})
        assert approved.status_code == 200
        assert approved.json()["distributor_id"] == "dist-1"

        assert (await client.get("/api/batches/pending")).json() == []
        queue = (await client.get("/api/batches/approved/dist-1")).json()
        assert [b["batch_id"] for b in queue] == [batch_id]

        trace = (await client.get(f"/api/batches/{batch_id}/trace")).json()
        assert [t["label"] for t in trace] == ["SUBMITTED_FOR_APPROVAL", "APPROVED"]

    async def test_reject(self, client: AsyncClient):
        created = await _create(client, 5)

        response = await client.post(
            f"/api/batches/{created['batch_id']}/reject",
            json={"distributor_id": "dist-1", "reason": "Bruised"},
        )

        body = response.json()
        assert body["blocked"] is True
        assert body["rejection_reason"] == "Bruised"

    async def test_status_and_quality(self, client: AsyncClient):
        created = await _create(client, 5, status="PLANTED")
        batch_id = created["batch_id"]

        status_response = await client.patch(
            f"/api/batches/{batch_id}/status", json={"status": "HARVESTED", "actor": "farmer-1"}
        )
        assert status_response.json()["harvest_date"] is not None

        quality_response = await client.patch(
            f"/api/batches/{batch_id}/quality",
            json={"grade": "A", "confidence": 0.87, "actor": "inspector-1"},
        )
        assert quality_response.json()["avg_quality_score"] == pytest.approx(0.87)

    async def test_split(self, client: AsyncClient):
        created = await _create(client, 100)

        response = await client.post(
            f"/api/batches/{created['batch_id']}/split",
            json={"split_quantity": 40, "actor": "farmer-1"},
        )

        assert response.status_code == 201
        child = response.json()
        assert child["batch_id"].startswith(created["batch_id"] + "-S")
        assert child["total_quantity"] == 40.0
        parent = (await client.get(f"/api/batches/{created['batch_id']}")).json()
        assert parent["total_quantity"] == 60.0

    async def test_merge(self, client: AsyncClient):
        target = await _create(client, 10)
        source = await _create(client, 5)

        response = await client.post(
            f"/api/batches/{target['batch_id']}/merge",
            json={"source_batch_ids": [source["batch_id"]], "actor": "farmer-1"},
        )

        assert response.status_code == 200
        remaining = response.json()
        assert [b["batch_id"] for b in remaining] == [target["batch_id"]]
        assert remaining[0]["total_quantity"] == 15.0
        assert remaining[0]["status"] == "ACTIVE"


@pytest.mark.api
@pytest.mark.asyncio
class TestErrorResponses:
    """Engine errors map onto the shared error envelope."""

    async def test_get_unknown_batch(self, client: AsyncClient):
        response = await client.get("/api/batches/NOPE")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "HTTP_404"

    async def test_not_found_carries_id_and_operation(self, client: AsyncClient):
        response = await client.post("/api/batches/NOPE/approve", json={"distributor_id": "d"})

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "RESOURCE_NOT_FOUND"
        assert error["details"] == {
            "resource": "Batch", "id": "NOPE", "operation": "approve_batch",
        }

    async def test_missing_farmer_is_invalid_operation(self, client: AsyncClient):
        response = await client.post("/api/batches/", json={"crop_type": "Tomato"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "INVALID_OPERATION"
        assert "Farmer ID" in error["message"]

    async def test_split_too_large(self, client: AsyncClient):
        created = await _create(client, 10)

        response = await client.post(
            f"/api/batches/{created['batch_id']}/split", json={"split_quantity": 11}
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_OPERATION"

    async def test_merge_crop_type_mismatch(self, client: AsyncClient):
        target = await _create(client, 10)
        source = await _create(client, 5, crop_type="Onion")

        response = await client.post(
            f"/api/batches/{target['batch_id']}/merge",
            json={"source_batch_ids": [source["batch_id"]]},
        )

        assert response.status_code == 422
        source_after = (await client.get(f"/api/batches/{source['batch_id']}")).json()
        assert source_after["blocked"] is False

    async def test_request_validation(self, client: AsyncClient):
        created = await _create(client, 10)

        response = await client.post(f"/api/batches/{created['batch_id']}/approve", json={})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert any("distributor_id" in e["field"] for e in error["details"]["errors"])


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:
    async def test_liveness(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_readiness_without_cache(self, client: AsyncClient):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"] == {"database": "ok", "redis": "disabled"}


@pytest.mark.api
@pytest.mark.asyncio
class TestCacheInvalidation:
    """Every mutating route drops the cached distributor queues."""

    @pytest.fixture
    def invalidations(self, monkeypatch):
        patterns = []

        async def _record(pattern):
            patterns.append(pattern)

        monkeypatch.setattr("farmchain.routers.batches.invalidate_cache", _record)
        return patterns

    async def test_quality_update_invalidates(self, client: AsyncClient, invalidations):
        created = await _create(client, 5)
        invalidations.clear()

        response = await client.patch(
            f"/api/batches/{created['batch_id']}/quality",
            json={"grade": "B", "confidence": 0.6, "actor": "inspector-1"},
        )

        assert response.status_code == 200
        assert invalidations == ["batches:*"]

    async def test_split_invalidates(self, client: AsyncClient, invalidations):
        created = await _create(client, 10)
        invalidations.clear()

        await client.post(f"/api/batches/{created['batch_id']}/split", json={"split_quantity": 5})

        assert invalidations == ["batches:*"]
