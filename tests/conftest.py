"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - api/        : HTTP contract tests through the FastAPI app (TestClient)
    - component/  : Service tests (in-memory repositories, mock event bus)
    - unit/       : Unit tests (pure functions, no I/O)
    - contracts/  : Test data factories and response contracts
"""
import os
import sys

import pytest

# Set testing environment BEFORE any imports of core.config
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tests.contracts.match.data_contract import MatchTestDataFactory


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def factory() -> MatchTestDataFactory:
    """Test data factory for match_service"""
    return MatchTestDataFactory()


@pytest.fixture
def shopper_request(factory):
    """Published shopper request with three bag items"""
    return factory.make_shopper_request(item_count=3)


@pytest.fixture
def trip(factory):
    return factory.make_trip()
