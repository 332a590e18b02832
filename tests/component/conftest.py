"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── match_service/   Engine and orchestration tests
    └── mocks/           In-memory repositories, clock and event bus

Usage:
    pytest tests/component -v
"""
import pytest

from core.auth_dependencies import Identity
from core.jwt_manager import UserRole
from microservices.match_service.audit import InMemoryAuditSink
from microservices.match_service.delivery import DeliveryVerificationEngine, PinHasher
from microservices.match_service.events.publishers import MatchEventPublisher
from microservices.match_service.lifecycle import MatchLifecycleEngine
from microservices.match_service.match_service import MatchService
from tests.component.mocks import (
    FrozenClock,
    InMemoryMatchRepository,
    InMemoryShopperRequestRepository,
    InMemoryTripRepository,
    MockEventBus,
)

# Low iteration count keeps PBKDF2 fast in tests
TEST_HASH_ITERATIONS = 1_000


# =============================================================================
# Mocks
# =============================================================================

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def match_repo() -> InMemoryMatchRepository:
    return InMemoryMatchRepository()


@pytest.fixture
def request_repo(shopper_request) -> InMemoryShopperRequestRepository:
    repo = InMemoryShopperRequestRepository()
    repo.set_request(shopper_request)
    return repo


@pytest.fixture
def trip_repo(trip) -> InMemoryTripRepository:
    repo = InMemoryTripRepository()
    repo.set_trip(trip)
    return repo


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    return MockEventBus()


@pytest.fixture
def audit_log(clock) -> InMemoryAuditSink:
    return InMemoryAuditSink(max_events=100, clock=clock)


# =============================================================================
# Engines and Service
# =============================================================================

@pytest.fixture
def hasher() -> PinHasher:
    return PinHasher(length=5, iterations=TEST_HASH_ITERATIONS)


@pytest.fixture
def lifecycle(match_repo, clock) -> MatchLifecycleEngine:
    return MatchLifecycleEngine(match_repo, clock=clock)


@pytest.fixture
def delivery(match_repo, hasher, clock) -> DeliveryVerificationEngine:
    return DeliveryVerificationEngine(match_repo, hasher=hasher, clock=clock)


@pytest.fixture
def service(match_repo, request_repo, trip_repo, lifecycle, delivery, audit_log, mock_event_bus, clock) -> MatchService:
    return MatchService(
        match_repository=match_repo,
        request_repository=request_repo,
        trip_repository=trip_repo,
        lifecycle=lifecycle,
        delivery=delivery,
        audit_sink=audit_log,
        event_publisher=MatchEventPublisher(mock_event_bus),
        clock=clock,
    )


# =============================================================================
# Identities
# =============================================================================

@pytest.fixture
def shopper(shopper_request) -> Identity:
    return Identity(user_id=shopper_request.shopper_id, role=UserRole.SHOPPER)


@pytest.fixture
def traveler(trip) -> Identity:
    return Identity(user_id=trip.traveler_id, role=UserRole.TRAVELER)


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id="admin_ops", role=UserRole.ADMIN)


@pytest.fixture
def stranger() -> Identity:
    return Identity(user_id="traveler_outsider", role=UserRole.TRAVELER)


@pytest.fixture
def pending_match(factory, shopper_request, trip, match_repo, clock):
    """Pending match over all of the request's items, stored"""
    match = factory.make_match(shopper_request, trip, created_at=clock())
    return match_repo.set_match(match)
