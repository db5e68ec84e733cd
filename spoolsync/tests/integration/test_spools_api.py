"""Integration tests for spool listing and manual assignment."""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from spoolsync.app.models.activity_log import ActivityLogEntry
from spoolsync.app.services.spoolman import SpoolmanError

TRAY = "sensor.x1c_abc_ams_1_tray_2"


class TestSpoolsAPI:
    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_list_spools(self, async_client: AsyncClient, spoolman_configured, spool_factory):
        spoolman_configured.get_spools.return_value = [spool_factory(1), spool_factory(2)]

        response = await async_client.get("/api/v1/spools/")

        assert response.status_code == 200
        assert [s["id"] for s in response.json()["spools"]] == [1, 2]

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_list_spools_upstream_failure(self, async_client: AsyncClient, spoolman_configured):
        spoolman_configured.get_spools.side_effect = SpoolmanError("unreachable")

        response = await async_client.get("/api/v1/spools/")

        assert response.status_code == 502

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_not_configured(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/spools/assignments", json={"tray_id": TRAY, "spool_id": 1})

        assert response.status_code == 503
        assert response.json()["detail"] == "Spoolman is not configured"

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_assign(self, async_client: AsyncClient, spoolman_configured, spool_factory, received_events, db_session):
        spoolman_configured.assign_spool_to_tray.return_value = spool_factory(4, tray=TRAY, name="Matte Black")

        response = await async_client.post("/api/v1/spools/assignments", json={"tray_id": TRAY, "spool_id": 4})

        assert response.status_code == 200
        assert response.json()["spool"]["id"] == 4
        spoolman_configured.assign_spool_to_tray.assert_awaited_once_with(4, TRAY)
        assert [(e.type, e.spool_id, e.spool_name) for e in received_events] == [("assign", 4, "Matte Black")]

        result = await db_session.execute(select(ActivityLogEntry))
        entries = result.scalars().all()
        assert [e.type for e in entries] == ["spool_change"]

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_assign_validation(self, async_client: AsyncClient, spoolman_configured):
        response = await async_client.post("/api/v1/spools/assignments", json={"tray_id": TRAY})

        assert response.status_code == 422
        spoolman_configured.assign_spool_to_tray.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_assign_upstream_failure(self, async_client: AsyncClient, spoolman_configured, received_events):
        spoolman_configured.assign_spool_to_tray.side_effect = SpoolmanError("Spoolman returned 404")

        response = await async_client.post("/api/v1/spools/assignments", json={"tray_id": TRAY, "spool_id": 99})

        assert response.status_code == 502
        assert received_events == []

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_unassign(self, async_client: AsyncClient, spoolman_configured, spool_factory, received_events):
        claimed = spool_factory(4, tray=TRAY)
        spoolman_configured.get_spool.return_value = claimed
        spoolman_configured.clear_assignment.return_value = spool_factory(4, tray="")

        response = await async_client.delete("/api/v1/spools/4/assignment")

        assert response.status_code == 200
        spoolman_configured.clear_assignment.assert_awaited_once_with(4, spool=claimed)
        assert [(e.type, e.tray_id) for e in received_events] == [("unassign", TRAY)]
