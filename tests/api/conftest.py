"""
API Test Layer Configuration

HTTP contract tests against the FastAPI app, served in-process through
httpx's ASGI transport. The lifespan does not run; each service conftest
installs the service instance the routes resolve.

Usage:
    pytest tests/api -v                    # Run all API tests
    pytest tests/api -v -k "delivery"      # Run delivery API tests
    pytest tests/api -v --tb=short         # Short traceback
"""

from datetime import timedelta
from typing import AsyncGenerator, Dict, Optional

import httpx
import pytest
import pytest_asyncio

from core.jwt_manager import JWTManager, TokenClaims, UserRole


# =============================================================================
# Configuration
# =============================================================================


class APITestConfig:
    """API test configuration"""

    BASE_URL = "http://testserver"
    HTTP_TIMEOUT = 30.0
    JWT_SECRET = "api-test-secret"
    JWT_ISSUER = "bagxtra"


# =============================================================================
# Tokens
# =============================================================================


@pytest.fixture
def jwt_manager() -> JWTManager:
    return JWTManager(secret_key=APITestConfig.JWT_SECRET, issuer=APITestConfig.JWT_ISSUER)


@pytest.fixture
def make_headers(jwt_manager):
    """Build an Authorization header for a user id and role"""

    def _headers(user_id: str, role: UserRole, expires_delta: Optional[timedelta] = None) -> Dict[str, str]:
        token = jwt_manager.create_access_token(TokenClaims(user_id=user_id, role=role), expires_delta=expires_delta)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


def make_http_client(app) -> httpx.AsyncClient:
    # Catch-all handlers answer 500 themselves; keep the response instead of re-raising
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    return httpx.AsyncClient(transport=transport, base_url=APITestConfig.BASE_URL, timeout=APITestConfig.HTTP_TIMEOUT)


class APIClient:
    """Base API client for service testing"""

    def __init__(self, http_client: httpx.AsyncClient, api_path: str):
        self.client = http_client
        self.api_path = api_path

    async def get(self, path: str = "", **kwargs) -> httpx.Response:
        return await self.client.get(f"{self.api_path}{path}", **kwargs)

    async def post(self, path: str = "", **kwargs) -> httpx.Response:
        return await self.client.post(f"{self.api_path}{path}", **kwargs)

    async def get_raw(self, path: str = "", **kwargs) -> httpx.Response:
        """GET request to raw path (bypasses api_path)"""
        return await self.client.get(path, **kwargs)


# =============================================================================
# Assertion Helpers
# =============================================================================


class APIAssertions:
    """API-specific assertion helpers"""

    @staticmethod
    def assert_success(response: httpx.Response, expected_status: int = 200) -> dict:
        """Assert a success envelope and return its data"""
        assert response.status_code == expected_status, (
            f"Expected {expected_status}, got {response.status_code}: {response.text}"
        )
        body = response.json()
        assert body["success"] is True, body
        return body["data"]

    @staticmethod
    def assert_error(response: httpx.Response, status_code: int, kind: str) -> dict:
        """Assert an error envelope with the given status and kind"""
        assert response.status_code == status_code, (
            f"Expected {status_code}, got {response.status_code}: {response.text}"
        )
        body = response.json()
        assert set(body) == {"error", "message"}, body
        assert body["error"] == kind, body
        return body

    @staticmethod
    def assert_has_fields(data: dict, fields: list):
        """Assert response has required fields"""
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"


@pytest.fixture
def api_assert() -> APIAssertions:
    """Provide API assertion helpers"""
    return APIAssertions()


@pytest_asyncio.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client bound to the match service app"""
    from microservices.match_service.main import app

    async with make_http_client(app) as client:
        yield client
