"""
Tests for the lead pipeline: intake, listing, stage changes, conversion,
activity trail and scoring.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadcrm.core.errors import ConflictError
from leadcrm.models.activity import ActivityLogEntry
from leadcrm.models.app_setting import AppSetting
from leadcrm.models.contact import Contact
from leadcrm.models.lead import Lead
from leadcrm.models.lead_activity import LeadActivity
from leadcrm.models.role import Role
from leadcrm.models.user import User
from leadcrm.services import lead_pipeline
from leadcrm.services.pipeline_config import PIPELINE_SETTING_KEY

from conftest import auth_headers_for, create_user_with_role


LEAD_DATA = {
    "first_name": "John",
    "last_name": "Doe",
    "email": "john@x.com",
    "company": "Acme Corp",
}


async def create_lead(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/v1/leads", json={**LEAD_DATA, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["lead"]


async def move(client: AsyncClient, headers: dict, lead_id: str, status: str):
    return await client.post(
        f"/api/v1/leads/{lead_id}/stage", json={"status": status}, headers=headers
    )


async def log_activity(client: AsyncClient, headers: dict, lead_id: str, **data):
    payload = {"activity_type": "call", "subject": "Intro call", "outcome": "neutral"}
    payload.update(data)
    return await client.post(f"/api/v1/leads/{lead_id}/activities", json=payload, headers=headers)


async def walk_to(client: AsyncClient, headers: dict, lead_id: str, stages: list[str]) -> None:
    for stage in stages:
        response = await move(client, headers, lead_id, stage)
        assert response.status_code == 200, response.text


# ========== Intake ==========

class TestIntake:
    """Test lead creation."""

    @pytest.mark.asyncio
    async def test_create_lead_starts_in_initial_stage(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        assert lead["status"] == "new"
        assert lead["score"] == 0
        assert lead["full_name"] == "John Doe"
        assert lead["temperature"] == "cold"
        assert lead["priority"] == "medium"

    @pytest.mark.asyncio
    async def test_create_lead_missing_field(self, client: AsyncClient, manager_headers: dict):
        response = await client.post(
            "/api/v1/leads",
            json={"first_name": "John", "last_name": "Doe"},
            headers=manager_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required field: email"

    @pytest.mark.asyncio
    async def test_create_lead_blank_name_rejected(self, client: AsyncClient, manager_headers: dict):
        response = await client.post(
            "/api/v1/leads", json={**LEAD_DATA, "first_name": "   "}, headers=manager_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required field: first_name"

    @pytest.mark.asyncio
    async def test_create_lead_unknown_source(self, client: AsyncClient, manager_headers: dict):
        response = await client.post(
            "/api/v1/leads", json={**LEAD_DATA, "lead_source_id": "doesnotexist"}, headers=manager_headers
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_duplicate_emails_are_separate_leads(self, client: AsyncClient, manager_headers: dict):
        first = await create_lead(client, manager_headers)
        second = await create_lead(client, manager_headers)
        assert first["id"] != second["id"]

    @pytest.mark.asyncio
    async def test_create_lead_is_logged(
        self, client: AsyncClient, db_session: AsyncSession, manager_headers: dict
    ):
        lead = await create_lead(client, manager_headers)
        result = await db_session.execute(
            select(ActivityLogEntry).where(
                ActivityLogEntry.type == "lead_created",
                ActivityLogEntry.subject_id == lead["id"],
            )
        )
        assert result.scalar_one_or_none() is not None


# ========== Listing ==========

class TestListing:
    """Test lead listing, filters and pagination."""

    @pytest.mark.asyncio
    async def test_list_pagination(
        self, client: AsyncClient, db_session: AsyncSession, admin_user: User, admin_headers: dict
    ):
        for i in range(45):
            await lead_pipeline.create_lead(db_session, admin_user, {
                "first_name": f"Lead{i}", "last_name": "Bulk", "email": f"lead{i}@example.com"
            })
        await db_session.commit()

        response = await client.get("/api/v1/leads?page=2&limit=20", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert len(data["leads"]) == 20
        assert data["pagination"]["total_items"] == 45
        assert data["pagination"]["total_pages"] == 3
        assert data["pagination"]["current_page"] == 2

        response = await client.get("/api/v1/leads?page=3&limit=20", headers=admin_headers)
        assert len(response.json()["leads"]) == 5

    @pytest.mark.asyncio
    async def test_list_empty(self, client: AsyncClient, admin_headers: dict):
        response = await client.get("/api/v1/leads", headers=admin_headers)
        data = response.json()
        assert data["leads"] == []
        assert data["pagination"]["total_items"] == 0
        assert data["pagination"]["total_pages"] == 0

    @pytest.mark.asyncio
    async def test_list_filters(self, client: AsyncClient, admin_headers: dict):
        kept = await create_lead(client, admin_headers, email="jane@globex.com", company="Globex")
        other = await create_lead(client, admin_headers)
        await move(client, admin_headers, other["id"], "contacted")

        response = await client.get("/api/v1/leads?search=globex", headers=admin_headers)
        assert [lead["id"] for lead in response.json()["leads"]] == [kept["id"]]

        response = await client.get("/api/v1/leads?status=contacted", headers=admin_headers)
        assert [lead["id"] for lead in response.json()["leads"]] == [other["id"]]

    @pytest.mark.asyncio
    async def test_list_rejects_unknown_sort_field(self, client: AsyncClient, admin_headers: dict):
        response = await client.get("/api/v1/leads?sort_by=password", headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/v1/leads")
        assert response.status_code == 401


# ========== Lifecycle ==========

class TestLifecycle:
    """Test stage transitions and lead updates."""

    @pytest.mark.asyncio
    async def test_lead_lifecycle(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        lead_id = lead["id"]

        response = await log_activity(
            client, manager_headers, lead_id, activity_type="demo", subject="Product demo", outcome="positive"
        )
        assert response.status_code == 201
        demo_score = response.json()["score"]
        assert demo_score > 0

        response = await move(client, manager_headers, lead_id, "qualified")
        assert response.status_code == 200
        data = response.json()
        assert data["lead"]["status"] == "qualified"
        assert data["from_stage"] == "new"
        assert data["to_stage"] == "qualified"
        assert data["skipped"] is True
        assert data["activity"]["activity_type"] == "stage_changed"
        assert data["activity"]["details"]["skipped_stages"] == ["contacted"]
        assert data["lead"]["score"] >= demo_score

        response = await move(client, manager_headers, lead_id, "contacted")
        assert response.status_code == 409
        assert "qualified" in response.json()["error"]

        response = await client.get(f"/api/v1/leads/{lead_id}", headers=manager_headers)
        assert response.json()["lead"]["status"] == "qualified"

        response = await client.get(f"/api/v1/leads/{lead_id}/activities", headers=manager_headers)
        types = [a["activity_type"] for a in response.json()["activities"]]
        assert sorted(types) == ["demo", "stage_changed"]

    @pytest.mark.asyncio
    async def test_stage_change_is_logged_as_skip(
        self, client: AsyncClient, db_session: AsyncSession, manager_headers: dict
    ):
        lead = await create_lead(client, manager_headers)
        await walk_to(client, manager_headers, lead["id"], ["contacted", "proposal_sent"])

        result = await db_session.execute(
            select(ActivityLogEntry.type)
            .where(ActivityLogEntry.subject_id == lead["id"])
            .order_by(ActivityLogEntry.created.asc())
        )
        types = list(result.scalars().all())
        assert "lead_stage_changed" in types
        assert "lead_stage_skipped" in types

    @pytest.mark.asyncio
    async def test_stage_change_missing_status(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        response = await client.post(
            f"/api/v1/leads/{lead['id']}/stage", json={}, headers=manager_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required field: status"

    @pytest.mark.asyncio
    async def test_stage_change_unknown_stage(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        response = await move(client, manager_headers, lead["id"], "won_big")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_stage_change_unknown_lead(self, client: AsyncClient, manager_headers: dict):
        response = await move(client, manager_headers, "nosuchlead0000", "contacted")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_rejected_transition_leaves_no_activity(
        self, client: AsyncClient, db_session: AsyncSession, manager_headers: dict
    ):
        lead = await create_lead(client, manager_headers)
        await walk_to(client, manager_headers, lead["id"], ["contacted"])

        response = await move(client, manager_headers, lead["id"], "new")
        assert response.status_code == 409

        count = (await db_session.execute(
            select(func.count()).select_from(LeadActivity).where(LeadActivity.lead_id == lead["id"])
        )).scalar()
        assert count == 1

    @pytest.mark.asyncio
    async def test_lost_lead_is_terminal_but_accepts_activities(
        self, client: AsyncClient, manager_headers: dict
    ):
        lead = await create_lead(client, manager_headers)
        response = await move(client, manager_headers, lead["id"], "lost")
        assert response.status_code == 200
        assert response.json()["activity"]["outcome"] == "negative"

        for target in ("new", "contacted", "converted"):
            response = await move(client, manager_headers, lead["id"], target)
            assert response.status_code == 409

        response = await log_activity(client, manager_headers, lead["id"], subject="Post-mortem call")
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_update_does_not_touch_stage_or_score(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        response = await client.put(
            f"/api/v1/leads/{lead['id']}",
            json={"company": "Initech", "temperature": "hot"},
            headers=manager_headers,
        )
        assert response.status_code == 200
        updated = response.json()["lead"]
        assert updated["company"] == "Initech"
        assert updated["temperature"] == "hot"
        assert updated["status"] == "new"
        assert updated["version"] > lead["version"]

    @pytest.mark.asyncio
    async def test_update_with_only_unknown_fields(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        response = await client.put(
            f"/api/v1/leads/{lead['id']}", json={"status": "converted", "score": 99}, headers=manager_headers
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_update_invalid_temperature(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        response = await client.put(
            f"/api/v1/leads/{lead['id']}", json={"temperature": "lukewarm"}, headers=manager_headers
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_stale_write_is_a_conflict(
        self, db_engine, db_session: AsyncSession, admin_user: User
    ):
        """The loser of a race gets ConflictError and the winner's write survives."""
        lead = await lead_pipeline.create_lead(db_session, admin_user, dict(LEAD_DATA))
        await db_session.commit()
        lead_id = lead.id

        other_maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
        async with other_maker() as other:
            stale = await other.get(Lead, lead_id)
            await other.commit()

            await lead_pipeline.update_lead(db_session, admin_user, lead_id, {"company": "First"})
            await db_session.commit()

            stale.company = "Second"
            with pytest.raises(ConflictError):
                await lead_pipeline._flush_lead(other, stale)
            await other.rollback()

            company = (await other.execute(
                select(Lead.company).where(Lead.id == lead_id)
            )).scalar_one()
            assert company == "First"


# ========== Conversion ==========

class TestConversion:
    """Test lead conversion."""

    @pytest.mark.asyncio
    async def test_convert_requires_last_open_stage(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        response = await client.post(
            f"/api/v1/leads/{lead['id']}/convert", json={}, headers=manager_headers
        )
        assert response.status_code == 409

        await walk_to(client, manager_headers, lead["id"], ["negotiation"])
        response = await client.post(
            f"/api/v1/leads/{lead['id']}/convert",
            json={"conversion_value": "12500.00"},
            headers=manager_headers,
        )
        assert response.status_code == 200
        converted = response.json()["lead"]
        assert converted["status"] == "converted"
        assert converted["conversion_type"] == "qualified"
        assert converted["converted_at"] is not None
        assert response.json()["contact"] is None

        response = await move(client, manager_headers, lead["id"], "lost")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_convert_from_any_stage_when_configured(
        self, client: AsyncClient, db_session: AsyncSession, manager_headers: dict
    ):
        db_session.add(AppSetting(key=PIPELINE_SETTING_KEY, value={"allow_convert_from_any_stage": True}))
        await db_session.commit()

        lead = await create_lead(client, manager_headers)
        response = await client.post(
            f"/api/v1/leads/{lead['id']}/convert", json={}, headers=manager_headers
        )
        assert response.status_code == 200
        assert response.json()["lead"]["status"] == "converted"

    @pytest.mark.asyncio
    async def test_convert_creates_contact(
        self, client: AsyncClient, db_session: AsyncSession, manager_headers: dict
    ):
        lead = await create_lead(client, manager_headers)
        await walk_to(client, manager_headers, lead["id"], ["negotiation"])

        response = await client.post(
            f"/api/v1/leads/{lead['id']}/convert",
            json={"conversion_type": "customer", "create_contact": True},
            headers=manager_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["contact"]["email"] == "john@x.com"
        assert data["contact"]["source_lead_id"] == lead["id"]
        assert data["lead"]["converted_contact_id"] == data["contact"]["id"]

        count = (await db_session.execute(select(func.count()).select_from(Contact))).scalar()
        assert count == 1

    @pytest.mark.asyncio
    async def test_convert_requires_permission(
        self, client: AsyncClient, employee_headers: dict, manager_headers: dict
    ):
        lead = await create_lead(client, manager_headers)
        await walk_to(client, manager_headers, lead["id"], ["negotiation"])

        response = await client.post(
            f"/api/v1/leads/{lead['id']}/convert", json={}, headers=employee_headers
        )
        assert response.status_code == 403

        response = await client.get(f"/api/v1/leads/{lead['id']}", headers=manager_headers)
        assert response.json()["lead"]["status"] == "negotiation"

    @pytest.mark.asyncio
    async def test_convert_with_contact_requires_contact_permission(
        self, client: AsyncClient, db_session: AsyncSession
    ):
        """Creating a contact on conversion is guarded like any other contact create."""
        db_session.add(Role(
            name="closer",
            display_name="Closer",
            permissions=["leads.view", "leads.create", "leads.update", "leads.convert"],
            is_active=True,
        ))
        await db_session.commit()
        closer = await create_user_with_role(db_session, "closer@example.com", "closer")
        headers = await auth_headers_for(db_session, closer)

        lead = await create_lead(client, headers)
        await walk_to(client, headers, lead["id"], ["negotiation"])

        response = await client.post(
            f"/api/v1/leads/{lead['id']}/convert", json={"create_contact": True}, headers=headers
        )
        assert response.status_code == 403
        count = (await db_session.execute(select(func.count()).select_from(Contact))).scalar()
        assert count == 0

        response = await client.get(f"/api/v1/leads/{lead['id']}", headers=headers)
        assert response.json()["lead"]["status"] == "negotiation"

        response = await client.post(f"/api/v1/leads/{lead['id']}/convert", json={}, headers=headers)
        assert response.status_code == 200
        assert response.json()["contact"] is None


# ========== Activities and scoring ==========

class TestActivitiesAndScoring:
    """Test the activity trail and scoring."""

    @pytest.mark.asyncio
    async def test_activity_validation(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)

        response = await log_activity(client, manager_headers, lead["id"], activity_type="stage_changed")
        assert response.status_code == 400

        response = await log_activity(client, manager_headers, lead["id"], activity_type="fax")
        assert response.status_code == 400

        response = await log_activity(client, manager_headers, lead["id"], outcome="ecstatic")
        assert response.status_code == 400

        response = await client.post(
            f"/api/v1/leads/{lead['id']}/activities",
            json={"activity_type": "call"},
            headers=manager_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required field: subject"

    @pytest.mark.asyncio
    async def test_contact_activity_sets_last_contacted(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)

        await log_activity(client, manager_headers, lead["id"], activity_type="note", subject="Internal note")
        response = await client.get(f"/api/v1/leads/{lead['id']}", headers=manager_headers)
        assert response.json()["lead"]["last_contacted_at"] is None

        await log_activity(client, manager_headers, lead["id"], activity_type="email", subject="Follow-up")
        response = await client.get(f"/api/v1/leads/{lead['id']}", headers=manager_headers)
        detail = response.json()["lead"]
        assert detail["last_contacted_at"] is not None
        assert detail["days_since_last_contact"] == 0
        assert detail["activity_count"] == 2

    @pytest.mark.asyncio
    async def test_rescoring_is_idempotent(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        await log_activity(client, manager_headers, lead["id"], outcome="positive")
        await log_activity(client, manager_headers, lead["id"], activity_type="meeting", outcome="positive")

        first = await client.post(f"/api/v1/leads/{lead['id']}/score", headers=manager_headers)
        second = await client.post(f"/api/v1/leads/{lead['id']}/score", headers=manager_headers)
        assert first.status_code == 200
        assert first.json()["score"] == second.json()["score"] == 25

    @pytest.mark.asyncio
    async def test_negative_outcomes_do_not_raise_score(self, client: AsyncClient, manager_headers: dict):
        lead = await create_lead(client, manager_headers)
        response = await log_activity(client, manager_headers, lead["id"], outcome="negative")
        assert response.json()["score"] == 0


# ========== Delete and reference data ==========

class TestDeleteAndReferenceData:
    """Test lead deletion and pipeline reference data."""

    @pytest.mark.asyncio
    async def test_delete_lead_removes_trail(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        lead = await create_lead(client, admin_headers)
        await log_activity(client, admin_headers, lead["id"])

        response = await client.delete(f"/api/v1/leads/{lead['id']}", headers=admin_headers)
        assert response.status_code == 200

        response = await client.get(f"/api/v1/leads/{lead['id']}", headers=admin_headers)
        assert response.status_code == 404

        count = (await db_session.execute(select(func.count()).select_from(LeadActivity))).scalar()
        assert count == 0

    @pytest.mark.asyncio
    async def test_statuses_and_sources(self, client: AsyncClient, employee_headers: dict):
        response = await client.get("/api/v1/leads/statuses", headers=employee_headers)
        assert response.status_code == 200
        data = response.json()
        assert [s["slug"] for s in data["statuses"]][:2] == ["new", "contacted"]
        assert data["initial_stage"] == "new"
        terminal = {s["slug"] for s in data["statuses"] if s["is_terminal"]}
        assert terminal == {"converted", "lost"}

        response = await client.get("/api/v1/leads/sources", headers=employee_headers)
        names = [s["name"] for s in response.json()["sources"]]
        assert "Referral" in names
