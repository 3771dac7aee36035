"""
Tests for authentication: sessions, lockout, password reset, registration.

Tests cover:
- Login issues a token whose subject is the authenticated user
- Session revocation independent of token expiry
- Lockout after MAX_LOGIN_ATTEMPTS failures
- Password reset revokes every session
- Registration assigns the default role
"""
import pytest
from datetime import timedelta
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.errors import MalformedTokenError, TokenExpiredError
from leadcrm.core.permissions import permissions_for, primary_role
from leadcrm.core.security import create_access_token
from leadcrm.models.activity import ActivityLogEntry
from leadcrm.models.base import as_utc, utcnow
from leadcrm.models.session import UserSession
from leadcrm.models.user import User
from leadcrm.services import tokens

from conftest import TEST_PASSWORD, create_user_with_role


async def login(client: AsyncClient, email: str, password: str, **extra):
    return await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password, **extra},
    )


# ========== Token issuer ==========

class TestTokenIssuer:
    """Login, token issue and verification."""

    @pytest.mark.asyncio
    async def test_login_then_verify_returns_same_user(self, client: AsyncClient, employee_user: User):
        response = await login(client, employee_user.email, TEST_PASSWORD)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["user"]["id"] == employee_user.id
        assert data["user"]["role"] == "employee"
        assert len(data["session_token"]) == 64
        assert data["expires_in"] == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

        claims = tokens.verify(data["token"])
        assert claims["sub"] == employee_user.id
        assert claims["sid"]

    @pytest.mark.asyncio
    async def test_remember_me_extends_session(
        self, client: AsyncClient, db_session: AsyncSession, employee_user: User
    ):
        response = await login(client, employee_user.email, TEST_PASSWORD, remember_me=True)
        assert response.status_code == 200
        assert response.json()["expires_in"] == settings.REMEMBER_ME_EXPIRE_DAYS * 86400

        session = (await db_session.execute(
            select(UserSession).where(UserSession.user_id == employee_user.id)
        )).scalar_one()
        remaining = as_utc(session.expires_at) - utcnow()
        assert timedelta(days=settings.REMEMBER_ME_EXPIRE_DAYS - 1) < remaining <= timedelta(days=settings.REMEMBER_ME_EXPIRE_DAYS)

    @pytest.mark.asyncio
    async def test_login_logs_activity(self, client: AsyncClient, db_session: AsyncSession, employee_user: User):
        await login(client, employee_user.email, TEST_PASSWORD)

        entries = (await db_session.execute(
            select(ActivityLogEntry).where(ActivityLogEntry.type == "user_login")
        )).scalars().all()
        assert len(entries) == 1
        assert entries[0].user_id == employee_user.id

    @pytest.mark.asyncio
    async def test_login_missing_password(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/login", json={"email": "a@x.com"})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing required field: password"}

    @pytest.mark.asyncio
    async def test_login_unknown_user(self, client: AsyncClient):
        response = await login(client, "nobody@example.com", "whatever123")
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid credentials"

    def test_verify_rejects_expired_and_malformed_tokens(self):
        expired = create_access_token(subject="abc", expires_delta=timedelta(seconds=-10))
        with pytest.raises(TokenExpiredError):
            tokens.verify(expired)
        with pytest.raises(MalformedTokenError):
            tokens.verify("not-a-token")

    @pytest.mark.asyncio
    async def test_missing_or_bad_bearer_is_401(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 401

        response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_signed_token_without_session_is_rejected(self, client: AsyncClient, employee_user: User):
        """A cryptographically valid token still needs a live session row."""
        token = create_access_token(subject=employee_user.id, additional_claims={"sid": "missing"})
        response = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


# ========== Revocation ==========

class TestRevocation:
    """Session revocation."""

    @pytest.mark.asyncio
    async def test_logout_revokes_session(self, client: AsyncClient, employee_user: User):
        token = (await login(client, employee_user.email, TEST_PASSWORD)).json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 200

        response = await client.post("/api/v1/auth/logout", headers=headers)
        assert response.status_code == 200

        # Token signature is still valid, but the session is gone
        assert tokens.verify(token)["sub"] == employee_user.id
        assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 401

        # Revoking again is not an error
        response = await client.post("/api/v1/auth/logout", headers=headers)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_logout_with_session_token(self, client: AsyncClient, employee_user: User):
        data = (await login(client, employee_user.email, TEST_PASSWORD)).json()
        headers = {"Authorization": f"Bearer {data['token']}"}

        response = await client.post(
            "/api/v1/auth/logout", json={"session_token": data["session_token"]}
        )
        assert response.status_code == 200
        assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 401

    @pytest.mark.asyncio
    async def test_revoke_all_for_user(self, db_session: AsyncSession, employee_user: User):
        _, first = await tokens.issue(db_session, employee_user)
        _, second = await tokens.issue(db_session, employee_user)
        assert await tokens.is_session_active(db_session, first.id)

        await tokens.revoke_all_for_user(db_session, employee_user.id)

        assert not await tokens.is_session_active(db_session, first.id)
        assert not await tokens.is_session_active(db_session, second.id)

    @pytest.mark.asyncio
    async def test_expired_session_is_inactive(self, db_session: AsyncSession, employee_user: User):
        _, session = await tokens.issue(db_session, employee_user)
        session.expires_at = utcnow() - timedelta(minutes=1)
        await db_session.flush()

        assert not await tokens.is_session_active(db_session, session.id)


# ========== Lockout ==========

class TestLockout:
    """Failed-login counting and account lockout."""

    @pytest.mark.asyncio
    async def test_lockout_after_max_attempts(
        self, client: AsyncClient, db_session: AsyncSession
    ):
        user = await create_user_with_role(db_session, "a@x.com", "employee")

        statuses = []
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            response = await login(client, "a@x.com", "wrong-password")
            statuses.append(response.status_code)

        assert statuses == [401, 401, 401, 401, 423]

        await db_session.refresh(user)
        assert user.login_attempts == settings.MAX_LOGIN_ATTEMPTS
        remaining = as_utc(user.locked_until) - utcnow()
        assert timedelta(minutes=settings.LOCKOUT_MINUTES - 1) < remaining <= timedelta(minutes=settings.LOCKOUT_MINUTES)

        # Correct password is refused while locked
        response = await login(client, "a@x.com", TEST_PASSWORD)
        assert response.status_code == 423
        assert "Account locked" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_login_allowed_after_lock_elapses(
        self, client: AsyncClient, db_session: AsyncSession
    ):
        user = await create_user_with_role(db_session, "b@x.com", "employee")
        user.login_attempts = settings.MAX_LOGIN_ATTEMPTS
        user.locked_until = utcnow() - timedelta(seconds=1)
        await db_session.commit()

        response = await login(client, "b@x.com", TEST_PASSWORD)
        assert response.status_code == 200

        await db_session.refresh(user)
        assert user.login_attempts == 0
        assert user.locked_until is None
        assert user.last_login is not None

    @pytest.mark.asyncio
    async def test_successful_login_resets_counter(self, client: AsyncClient, db_session: AsyncSession):
        user = await create_user_with_role(db_session, "c@x.com", "employee")

        await login(client, "c@x.com", "wrong-password")
        await login(client, "c@x.com", "wrong-password")
        await db_session.refresh(user)
        assert user.login_attempts == 2

        assert (await login(client, "c@x.com", TEST_PASSWORD)).status_code == 200
        await db_session.refresh(user)
        assert user.login_attempts == 0


# ========== Password reset ==========

class TestPasswordReset:
    """Forgot/reset password flow."""

    @pytest.mark.asyncio
    async def test_forgot_password_does_not_enumerate(self, client: AsyncClient, employee_user: User):
        known = await client.post("/api/v1/auth/forgot-password", json={"email": employee_user.email})
        unknown = await client.post("/api/v1/auth/forgot-password", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    @pytest.mark.asyncio
    async def test_reset_password_revokes_sessions(
        self, client: AsyncClient, db_session: AsyncSession, employee_user: User
    ):
        email = employee_user.email
        old_token = (await login(client, email, TEST_PASSWORD)).json()["token"]
        old_headers = {"Authorization": f"Bearer {old_token}"}

        await client.post("/api/v1/auth/forgot-password", json={"email": email})
        await db_session.refresh(employee_user)
        reset_token = employee_user.password_reset_token
        assert reset_token and len(reset_token) == 64

        response = await client.post(
            "/api/v1/auth/reset-password",
            json={"token": reset_token, "new_password": "BrandNewPass1"},
        )
        assert response.status_code == 200

        assert (await client.get("/api/v1/auth/me", headers=old_headers)).status_code == 401
        assert (await login(client, email, TEST_PASSWORD)).status_code == 401
        assert (await login(client, email, "BrandNewPass1")).status_code == 200

        # Token is single use
        response = await client.post(
            "/api/v1/auth/reset-password",
            json={"token": reset_token, "new_password": "AnotherPass1"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reset_password_rejects_expired_token(
        self, client: AsyncClient, db_session: AsyncSession, employee_user: User
    ):
        employee_user.password_reset_token = "f" * 64
        employee_user.password_reset_expires = utcnow() - timedelta(minutes=1)
        await db_session.commit()

        response = await client.post(
            "/api/v1/auth/reset-password",
            json={"token": "f" * 64, "new_password": "BrandNewPass1"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid or expired reset token"


# ========== Registration ==========

class TestRegistration:
    """Self-service registration and email verification."""

    @pytest.mark.asyncio
    async def test_register_assigns_default_role(self, client: AsyncClient, db_session: AsyncSession):
        response = await client.post(
            "/api/v1/auth/register",
            json={
                "email": "New.User@Example.com",
                "password": "LongEnough1",
                "first_name": "New",
                "last_name": "User",
            },
        )
        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["verification_required"] is True

        user = await db_session.get(User, data["user_id"])
        assert user.email == "new.user@example.com"
        role = await primary_role(db_session, user.id)
        assert role.name == settings.DEFAULT_ROLE
        assert "leads.view" in await permissions_for(db_session, user.id)

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, client: AsyncClient, employee_user: User):
        response = await client.post(
            "/api/v1/auth/register",
            json={
                "email": employee_user.email,
                "password": "LongEnough1",
                "first_name": "Dup",
                "last_name": "User",
            },
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_register_weak_password(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "weak@example.com", "password": "short", "first_name": "W", "last_name": "P"},
        )
        assert response.status_code == 400
        assert "at least" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_verify_email(self, client: AsyncClient, db_session: AsyncSession):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "verify@example.com", "password": "LongEnough1", "first_name": "V", "last_name": "E"},
        )
        user = await db_session.get(User, response.json()["user_id"])
        token = user.email_verification_token

        response = await client.post("/api/v1/auth/verify-email", json={"token": token})
        assert response.status_code == 200
        await db_session.refresh(user)
        assert user.email_verified is True

        response = await client.post("/api/v1/auth/verify-email", json={"token": token})
        assert response.status_code == 400


# ========== Current user ==========

class TestCurrentUser:
    """Authenticated user endpoints."""

    @pytest.mark.asyncio
    async def test_me_includes_permissions(self, client: AsyncClient, manager_headers: dict):
        response = await client.get("/api/v1/auth/me", headers=manager_headers)
        assert response.status_code == 200
        user = response.json()["user"]
        assert user["role"] == "manager"
        assert "leads.convert" in user["permissions"]
        assert "leads.delete" not in user["permissions"]

        response = await client.get("/api/v1/auth/permissions", headers=manager_headers)
        assert response.json()["role"] == "manager"

    @pytest.mark.asyncio
    async def test_change_password(self, client: AsyncClient, employee_user: User, employee_headers: dict):
        response = await client.post(
            "/api/v1/auth/change-password",
            json={"old_password": "wrong", "new_password": "BrandNewPass1"},
            headers=employee_headers,
        )
        assert response.status_code == 400

        response = await client.post(
            "/api/v1/auth/change-password",
            json={"old_password": TEST_PASSWORD, "new_password": "BrandNewPass1"},
            headers=employee_headers,
        )
        assert response.status_code == 200
        assert (await login(client, employee_user.email, "BrandNewPass1")).status_code == 200
