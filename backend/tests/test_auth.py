"""Tests for authentication endpoints."""
import uuid

import pytest
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock, patch, MagicMock

from app.main import app
from app.db.session import get_session

ORG_ID = uuid.UUID("0b8f3a52-6f3c-4d8e-9d0e-3c1d2f4a5b6c")


# ─── Fixtures ─────────────────────────────────────────────────────────────────

class FakeUser:
    """Minimal user stub returned by DB mock."""

    def __init__(self, role: str = "admin"):
        self.id = uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e")
        self.organization_id = ORG_ID
        self.email = "admin@example.com"
        self.first_name = "Ada"
        self.last_name = "Admin"
        self.role = role
        self.phone = None
        self.is_active = True
        self.deleted_at = None
        self.password_hash = "$2b$12$placeholder"  # verify_password is mocked


def _session_returning(user) -> AsyncMock:
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = user

    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=mock_result)
    return mock_session


def _override(mock_session):
    async def override_get_session():
        yield mock_session
    return override_get_session


# ─── Login Tests ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_valid_credentials_returns_tokens():
    """POST /api/v1/auth/login with valid credentials returns access and refresh tokens."""
    mock_session = _session_returning(FakeUser())

    with patch("app.api.v1.auth.verify_password", return_value=True):
        app.dependency_overrides[get_session] = _override(mock_session)
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                response = await client.post(
                    "/api/v1/auth/login",
                    data={"username": "admin@example.com", "password": "changeme123"},
                )
        finally:
            app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["refresh_token"]
    assert data["token_type"] == "bearer"
    # successful login is audited
    mock_session.run_sync.assert_awaited_once()
    mock_session.commit.assert_awaited()


@pytest.mark.asyncio
async def test_login_unknown_user_returns_401():
    mock_session = _session_returning(None)

    app.dependency_overrides[get_session] = _override(mock_session)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/v1/auth/login",
                data={"username": "wrong@example.com", "password": "badpass"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
    mock_session.run_sync.assert_not_awaited()


@pytest.mark.asyncio
async def test_login_bad_password_is_a_security_event():
    """A wrong password for a known account writes a security audit entry before the 401."""
    mock_session = _session_returning(FakeUser())

    with patch("app.api.v1.auth.verify_password", return_value=False):
        app.dependency_overrides[get_session] = _override(mock_session)
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                response = await client.post(
                    "/api/v1/auth/login",
                    data={"username": "admin@example.com", "password": "nope"},
                )
        finally:
            app.dependency_overrides.clear()

    assert response.status_code == 401
    mock_session.run_sync.assert_awaited_once()
    mock_session.commit.assert_awaited_once()


# ─── Refresh Tests ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_refresh_issues_new_access_token():
    from app.core.security import create_refresh_token

    user = FakeUser()
    refresh = create_refresh_token(subject=str(user.id))
    app.dependency_overrides[get_session] = _override(_session_returning(user))
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["access_token"]


@pytest.mark.asyncio
async def test_refresh_rejects_access_token():
    from app.core.security import create_access_token

    token = create_access_token(subject=str(uuid.uuid4()), role="admin", organization_id=str(ORG_ID))
    app.dependency_overrides[get_session] = _override(_session_returning(None))
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/api/v1/auth/refresh", json={"refresh_token": token})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


# ─── /me Tests ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_me_with_valid_token_returns_user():
    """GET /api/v1/auth/me with valid Bearer token should return user data."""
    from app.core.security import create_access_token

    user = FakeUser(role="manager")
    token = create_access_token(subject=str(user.id), role=user.role, organization_id=str(ORG_ID))

    app.dependency_overrides[get_session] = _override(_session_returning(user))
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get(
                "/api/v1/auth/me",
                headers={"Authorization": f"Bearer {token}"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "admin@example.com"
    assert data["role"] == "manager"
    assert data["organization_id"] == str(ORG_ID)
    assert "password_hash" not in data


@pytest.mark.asyncio
async def test_me_rejects_token_for_other_organization():
    from app.core.security import create_access_token

    user = FakeUser()
    token = create_access_token(subject=str(user.id), role=user.role, organization_id=str(uuid.uuid4()))

    app.dependency_overrides[get_session] = _override(_session_returning(user))
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_without_token_returns_401():
    """GET /api/v1/auth/me without Authorization header should return 401."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401


# ─── Token claims ─────────────────────────────────────────────────────────────

def test_read_token_returns_typed_claims():
    from app.core.security import create_access_token, read_token

    user_id = uuid.uuid4()
    claims = read_token(create_access_token(str(user_id), "technician", str(ORG_ID)), "access")
    assert claims.user_id == user_id
    assert claims.organization_id == ORG_ID
    assert claims.role == "technician"


def test_read_token_rejects_wrong_type_and_bad_subject():
    from app.core.security import JWTError, create_access_token, create_refresh_token, read_token

    with pytest.raises(JWTError):
        read_token(create_refresh_token(str(uuid.uuid4())), "access")
    with pytest.raises(JWTError):
        read_token(create_access_token("not-a-uuid", "admin", str(ORG_ID)), "access")
