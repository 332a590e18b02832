"""
Match Service API Fixtures

Installs an in-memory MatchService into the app's globals and points the
identity gate at the test JWT secret.
"""
import pytest
import pytest_asyncio

from core.auth_dependencies import IdentityGate, get_identity_gate
from core.jwt_manager import UserRole
from microservices.match_service import main
from microservices.match_service.audit import InMemoryAuditSink
from microservices.match_service.delivery import DeliveryVerificationEngine, PinHasher
from microservices.match_service.events.publishers import MatchEventPublisher
from microservices.match_service.lifecycle import MatchLifecycleEngine
from microservices.match_service.match_service import MatchService
from tests.api.conftest import APIClient
from tests.component.mocks import (
    FrozenClock,
    InMemoryMatchRepository,
    InMemoryShopperRequestRepository,
    InMemoryTripRepository,
    MockEventBus,
)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def match_repo() -> InMemoryMatchRepository:
    return InMemoryMatchRepository()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    return MockEventBus()


@pytest.fixture
def audit_log(clock) -> InMemoryAuditSink:
    return InMemoryAuditSink(max_events=500, clock=clock)


@pytest.fixture
def installed_service(monkeypatch, match_repo, shopper_request, trip, audit_log, mock_event_bus, clock, jwt_manager):
    """Wire the app to in-memory collaborators for the duration of a test"""
    requests = InMemoryShopperRequestRepository()
    requests.set_request(shopper_request)
    trips = InMemoryTripRepository()
    trips.set_trip(trip)

    service = MatchService(
        match_repository=match_repo,
        request_repository=requests,
        trip_repository=trips,
        lifecycle=MatchLifecycleEngine(match_repo, clock=clock),
        delivery=DeliveryVerificationEngine(match_repo, hasher=PinHasher(iterations=1_000), clock=clock),
        audit_sink=audit_log,
        event_publisher=MatchEventPublisher(mock_event_bus),
        clock=clock,
    )

    monkeypatch.setattr(main, "match_service", service)
    monkeypatch.setattr(main, "audit_log", audit_log)
    main.app.dependency_overrides[get_identity_gate] = lambda: IdentityGate(jwt_manager)
    yield service
    main.app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def match_api(http_client, installed_service) -> APIClient:
    return APIClient(http_client, "/api/v1")


@pytest.fixture
def shopper_headers(make_headers, shopper_request):
    return make_headers(shopper_request.shopper_id, UserRole.SHOPPER)


@pytest.fixture
def traveler_headers(make_headers, trip):
    return make_headers(trip.traveler_id, UserRole.TRAVELER)


@pytest.fixture
def admin_headers(make_headers):
    return make_headers("admin_ops", UserRole.ADMIN)


@pytest.fixture
def pending_match(factory, shopper_request, trip, match_repo, clock):
    return match_repo.set_match(factory.make_match(shopper_request, trip, created_at=clock()))
