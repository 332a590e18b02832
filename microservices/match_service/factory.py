"""
Match Service Factory

Factory for creating MatchService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config import PlatformConfig, get_settings
from core.postgres_client import PostgresClientWrapper

from .audit import EventBusAuditSink, FanOutAuditSink, InMemoryAuditSink
from .delivery import DeliveryVerificationEngine, PinHasher
from .events.publishers import MatchEventPublisher
from .lifecycle import MatchLifecycleEngine
from .match_repository import MatchRepository, ShopperRequestRepository, TripRepository
from .match_service import MatchService
from .protocols import AuditSinkProtocol, Clock, EventBusProtocol

logger = logging.getLogger(__name__)


def create_audit_log(settings: Optional[PlatformConfig] = None, clock: Optional[Clock] = None) -> InMemoryAuditSink:
    """Bounded in-memory audit log sized from MatchPolicyConfig"""
    policy = (settings or get_settings()).match
    return InMemoryAuditSink(
        max_events=policy.audit_max_events,
        retention=policy.audit_retention,
        clock=clock,
    )


def create_match_service(
    settings: Optional[PlatformConfig] = None,
    event_bus: Optional[EventBusProtocol] = None,
    audit_log: Optional[InMemoryAuditSink] = None,
    db: Optional[PostgresClientWrapper] = None,
    clock: Optional[Clock] = None,
) -> MatchService:
    """
    Create MatchService with all real dependencies

    Args:
        settings: Platform settings (global settings if not provided)
        event_bus: Optional connected event bus; events and forwarded audit
            records are skipped without one
        audit_log: Optional in-memory audit log (created if not provided)
        db: Optional PostgreSQL client shared by the repositories
        clock: Optional clock override

    Returns:
        MatchService; call `match_repository.initialize()` before use
    """
    settings = settings or get_settings()
    policy = settings.match
    schema = settings.infrastructure.postgres_schema

    if db is None:
        db = PostgresClientWrapper("match_service")

    match_repository = MatchRepository(db, schema=schema)
    request_repository = ShopperRequestRepository(db, schema=schema)
    trip_repository = TripRepository(db, schema=schema)

    if audit_log is None:
        audit_log = create_audit_log(settings, clock)
    sinks: list = [audit_log]
    if event_bus is not None:
        sinks.append(EventBusAuditSink(event_bus))
        logger.info("Audit records will be forwarded to the event bus")
    audit_sink: AuditSinkProtocol = FanOutAuditSink(sinks)

    lifecycle = MatchLifecycleEngine(
        match_repository,
        cooldown=policy.cooldown,
        purchase_window=policy.purchase_window,
        clock=clock,
    )
    delivery = DeliveryVerificationEngine(
        match_repository,
        pin_ttl=policy.pin_ttl,
        max_attempts=policy.pin_max_attempts,
        hasher=PinHasher(length=policy.pin_length, iterations=policy.pin_hash_iterations),
        clock=clock,
    )

    return MatchService(
        match_repository=match_repository,
        request_repository=request_repository,
        trip_repository=trip_repository,
        lifecycle=lifecycle,
        delivery=delivery,
        audit_sink=audit_sink,
        event_publisher=MatchEventPublisher(event_bus),
        clock=clock,
    )


__all__ = ["create_match_service", "create_audit_log"]
