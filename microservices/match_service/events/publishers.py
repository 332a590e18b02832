"""
Match Event Publishers

Publishes match events to NATS JetStream. Publishing is best-effort: a
failure is logged and reported as False, never raised into a committed
transition.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.nats_client import Event, EventType, ServiceSource

from ..models import Match, MatchStatus, PinIssued
from ..protocols import EventBusProtocol
from .models import (
    DeliveryCompletedEventData,
    DeliveryPinFailedEventData,
    DeliveryPinIssuedEventData,
    MatchCreatedEventData,
    MatchPaidEventData,
    MatchTransitionedEventData,
)

logger = logging.getLogger(__name__)


class MatchEventPublisher:
    """Publisher for match service events"""

    def __init__(self, event_bus: Optional[EventBusProtocol] = None):
        self.event_bus = event_bus
        self.source = ServiceSource.MATCH_SERVICE

    async def publish(self, event_type: EventType, data: Dict[str, Any], subject: Optional[str] = None) -> bool:
        """
        Publish an event to NATS.

        Args:
            event_type: The event type enum
            data: Event data payload
            subject: Entity the event is about (match id)

        Returns:
            True if published successfully, False otherwise
        """
        if self.event_bus is None:
            logger.debug(f"Event bus not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = Event(event_type=event_type, source=self.source, data=data, subject=subject)
            return await self.event_bus.publish_event(event)
        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    # ====================
    # Match Lifecycle Events
    # ====================

    async def publish_match_created(self, match: Match) -> bool:
        data = MatchCreatedEventData(
            match_id=match.match_id,
            shopper_request_id=match.shopper_request_id,
            trip_id=match.trip_id,
            shopper_id=match.shopper_id,
            traveler_id=match.traveler_id,
            candidate_items=match.candidate_items,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(EventType.MATCH_CREATED, data.model_dump(mode="json"), match.match_id)

    async def publish_match_transitioned(
        self,
        match: Match,
        action: str,
        from_status: MatchStatus,
        actor_id: str,
    ) -> bool:
        """Publish match.transitioned event"""
        data = MatchTransitionedEventData(
            match_id=match.match_id,
            action=action,
            from_status=from_status.value,
            to_status=match.status.value,
            actor_id=actor_id,
            shopper_id=match.shopper_id,
            traveler_id=match.traveler_id,
            assigned_items=match.assigned_items,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(EventType.MATCH_TRANSITIONED, data.model_dump(mode="json"), match.match_id)

    async def publish_match_paid(self, match: Match) -> bool:
        data = MatchPaidEventData(
            match_id=match.match_id,
            shopper_id=match.shopper_id,
            status=match.status.value,
            paid_at=match.paid_at or datetime.now(timezone.utc),
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(EventType.MATCH_PAID, data.model_dump(mode="json"), match.match_id)

    # ====================
    # Delivery Events
    # ====================

    async def publish_pin_issued(self, match: Match, issued: PinIssued, reissued: bool = False) -> bool:
        """Publish match.delivery.pin_issued event (expiry only, never the PIN)"""
        data = DeliveryPinIssuedEventData(
            match_id=match.match_id,
            traveler_id=match.traveler_id or "",
            shopper_id=match.shopper_id,
            expires_at=issued.expires_at,
            store_location=issued.store_location,
            reissued=reissued,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(EventType.DELIVERY_PIN_ISSUED, data.model_dump(mode="json"), match.match_id)

    async def publish_pin_failed(self, match: Match, reason: str) -> bool:
        data = DeliveryPinFailedEventData(
            match_id=match.match_id,
            shopper_id=match.shopper_id,
            reason=reason,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(EventType.DELIVERY_PIN_FAILED, data.model_dump(mode="json"), match.match_id)

    async def publish_delivery_completed(self, match: Match) -> bool:
        data = DeliveryCompletedEventData(
            match_id=match.match_id,
            shopper_id=match.shopper_id,
            traveler_id=match.traveler_id,
            completed_at=match.completed_at or datetime.now(timezone.utc),
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(EventType.DELIVERY_COMPLETED, data.model_dump(mode="json"), match.match_id)
