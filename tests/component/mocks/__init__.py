"""
Component Test Mocks

Shared mock implementations for component testing.
These mocks replace real I/O dependencies (database, NATS).
"""

from .nats_mock import MockEventBus
from .match_repository_mock import (
    FrozenClock,
    InMemoryMatchRepository,
    InMemoryShopperRequestRepository,
    InMemoryTripRepository,
)

__all__ = [
    'MockEventBus',
    'FrozenClock',
    'InMemoryMatchRepository',
    'InMemoryShopperRequestRepository',
    'InMemoryTripRepository',
]
