"""
Tests for caller-supplied storage timeouts.
"""
import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.errors import StorageTimeoutError
from leadcrm.db.base import run_with_timeout
from leadcrm.models.lead_activity import LeadActivity, STAGE_CHANGED
from leadcrm.services import lead_pipeline


# ========== run_with_timeout ==========

class TestRunWithTimeout:
    """Awaiting storage-bound work with a deadline."""

    @pytest.mark.asyncio
    async def test_slow_operation_times_out(self):
        with pytest.raises(StorageTimeoutError):
            await run_with_timeout(asyncio.sleep(1), 0.01)

    @pytest.mark.asyncio
    async def test_fast_operation_returns_result(self):
        async def lookup():
            return 42

        assert await run_with_timeout(lookup(), 1) == 42


# ========== X-Request-Timeout ==========

class TestRequestTimeoutHeader:
    """Test the X-Request-Timeout header."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["0", "-1", "soon"])
    async def test_invalid_timeout_header(self, client: AsyncClient, manager_headers: dict, value: str):
        response = await client.get(
            "/api/v1/leads", headers={**manager_headers, "X-Request-Timeout": value}
        )
        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_timed_out_stage_change_is_rolled_back(
        self, client: AsyncClient, db_session: AsyncSession, manager_headers: dict, monkeypatch
    ):
        """Neither the new stage nor its stage_changed activity survives a timeout."""
        response = await client.post(
            "/api/v1/leads",
            json={"first_name": "Linus", "last_name": "Pauling", "email": "linus@caltech.edu"},
            headers=manager_headers,
        )
        lead_id = response.json()["lead"]["id"]

        async def slow_log(*args, **kwargs):
            await asyncio.sleep(1)

        monkeypatch.setattr(lead_pipeline, "_log_transition", slow_log)

        response = await client.post(
            f"/api/v1/leads/{lead_id}/stage",
            json={"status": "contacted"},
            headers={**manager_headers, "X-Request-Timeout": "0.05"},
        )
        assert response.status_code == 500
        assert response.json() == {"error": "Storage operation timed out"}

        monkeypatch.undo()
        response = await client.get(f"/api/v1/leads/{lead_id}", headers=manager_headers)
        assert response.json()["lead"]["status"] == "new"

        stage_changes = (await db_session.execute(
            select(func.count()).select_from(LeadActivity).where(
                LeadActivity.lead_id == lead_id, LeadActivity.activity_type == STAGE_CHANGED
            )
        )).scalar()
        assert stage_changes == 0
