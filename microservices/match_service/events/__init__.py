"""
Match Service Events

Event payload models and publisher for match service.
"""

from .models import (
    MatchStreamConfig,
    MatchCreatedEventData,
    MatchTransitionedEventData,
    MatchPaidEventData,
    DeliveryPinIssuedEventData,
    DeliveryPinFailedEventData,
    DeliveryCompletedEventData,
)
from .publishers import MatchEventPublisher

__all__ = [
    "MatchStreamConfig",
    # Event Data Models
    "MatchCreatedEventData",
    "MatchTransitionedEventData",
    "MatchPaidEventData",
    "DeliveryPinIssuedEventData",
    "DeliveryPinFailedEventData",
    "DeliveryCompletedEventData",
    # Publisher
    "MatchEventPublisher",
]
