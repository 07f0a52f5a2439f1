import pytest
from httpx import AsyncClient
from jose import jwt

from src.core.auth.jwt import create_access_token, decode_token
from src.core.auth.models import UserRole
from src.core.config import settings
from src.core.exceptions import AuthenticationError
from tests.conftest import auth_headers, make_user


class TestTokens:
    def test_round_trip(self):
        token = create_access_token(42, UserRole.BURSAR.value)
        payload = decode_token(token)
        assert payload["sub"] == "42"
        assert payload["role"] == "Bursar"

    def test_rejects_other_token_type(self):
        token = jwt.encode(
            {"sub": "1", "type": "refresh"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
        )
        with pytest.raises(AuthenticationError):
            decode_token(token)

    def test_rejects_garbage(self):
        with pytest.raises(AuthenticationError):
            decode_token("not-a-token")


class TestEndpointGuards:
    async def test_missing_header(self, client: AsyncClient, school):
        response = await client.get("/api/v1/payments")
        assert response.status_code == 401

    async def test_inactive_user(self, client: AsyncClient, db_session, school):
        school.bursar.is_active = False
        await db_session.commit()

        response = await client.get("/api/v1/payments", headers=auth_headers(school.bursar))
        assert response.status_code == 401

    async def test_parent_cannot_list_payments(self, client: AsyncClient, school):
        response = await client.get("/api/v1/payments", headers=auth_headers(school.parent))
        assert response.status_code == 403

    async def test_platform_admin_has_no_school(self, client: AsyncClient, db_session, school):
        platform = await make_user(db_session, None, UserRole.PLATFORM_ADMIN, "ops@platform.test")
        await db_session.commit()

        response = await client.get("/api/v1/balances/summary", headers=auth_headers(platform))
        assert response.status_code == 403
