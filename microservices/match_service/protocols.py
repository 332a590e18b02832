"""
Match Service Protocols

Defines interfaces for dependency injection and testing, plus the error
taxonomy every layer raises. Each error carries a stable machine-readable
`kind` and the HTTP status it maps to.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from core.nats_client import Event

from .models import (
    AuditEvent,
    Match,
    MatchFilter,
    MatchPredicate,
    MatchStatus,
    ShopperRequest,
    Trip,
)


Clock = Callable[[], datetime]


# ====================
# Repository Protocols
# ====================


class MatchRepositoryProtocol(Protocol):
    """Protocol for match persistence"""

    async def get_match(self, match_id: str) -> Optional[Match]:
        """Get match by ID"""
        ...

    async def find_matches(self, match_filter: MatchFilter) -> List[Match]:
        """Find matches by filter"""
        ...

    async def create_match(self, match: Match) -> Match:
        """Insert a new match"""
        ...

    async def atomic_update(
        self,
        match_id: str,
        predicate: MatchPredicate,
        patch: Dict[str, Any],
    ) -> Optional[Match]:
        """
        Apply `patch` only if the stored match satisfies `predicate`.

        Returns the updated match, or None when the predicate no longer
        holds (conflict). Check and write must be a single atomic step.
        """
        ...


class ShopperRequestRepositoryProtocol(Protocol):
    """Protocol for shopper request reads"""

    async def get_shopper_request(self, request_id: str) -> Optional[ShopperRequest]:
        ...


class TripRepositoryProtocol(Protocol):
    """Protocol for trip reads"""

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        ...


# ====================
# Collaborator Protocols
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event publishing"""

    async def publish_event(self, event: Event) -> bool:
        ...


class AuditSinkProtocol(Protocol):
    """Append-only audit capability"""

    async def record(self, event: AuditEvent) -> None:
        ...


# ====================
# Exceptions
# ====================


class MatchServiceError(Exception):
    """Base exception for match service errors"""

    kind = "InternalError"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthenticatedError(MatchServiceError):
    """Raised when no verified identity is available"""
    kind = "NotAuthenticated"
    http_status = 401


class NotAuthorizedError(MatchServiceError):
    """Raised when the caller's role or ownership does not permit the action"""
    kind = "NotAuthorized"
    http_status = 403


class EntityNotFoundError(MatchServiceError):
    """Raised when a match, shopper request or trip is missing"""
    kind = "NotFound"
    http_status = 404

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidStateError(MatchServiceError):
    """Raised when a transition is not legal from the current status"""
    kind = "InvalidState"
    http_status = 400

    def __init__(self, message: str, current_status: Optional[MatchStatus] = None, action: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
        self.action = action


class CooldownNotElapsedError(MatchServiceError):
    """Raised when purchase is attempted before the cooldown window closes"""
    kind = "CooldownNotElapsed"
    http_status = 400

    def __init__(self, message: str, cooldown_expires_at: Optional[datetime] = None):
        super().__init__(message)
        self.cooldown_expires_at = cooldown_expires_at


class CooldownExpiredError(MatchServiceError):
    """Raised when an approved match is cancelled after its cooldown window"""
    kind = "CooldownExpired"
    http_status = 400

    def __init__(self, message: str, cooldown_expires_at: Optional[datetime] = None):
        super().__init__(message)
        self.cooldown_expires_at = cooldown_expires_at


class ItemConflictError(MatchServiceError):
    """Raised when bag items are foreign to the request or held by another active match"""
    kind = "ItemConflict"
    http_status = 400

    def __init__(self, message: str, conflicting_items: Sequence[str] = ()):
        super().__init__(message)
        self.conflicting_items = list(conflicting_items)


class StaleStateError(MatchServiceError):
    """Raised when a compare-and-swap write loses to a concurrent change"""
    kind = "StaleState"
    http_status = 400

    def __init__(self, message: str, match_id: Optional[str] = None):
        super().__init__(message)
        self.match_id = match_id


class ConcurrentModificationError(StaleStateError):
    """Lost compare-and-swap as seen by an engine, before orchestration rewords it"""
    pass


class NoPinIssuedError(MatchServiceError):
    kind = "NoPinIssued"
    http_status = 400


class PinExpiredError(MatchServiceError):
    kind = "PinExpired"
    http_status = 400


class PinAttemptsExceededError(MatchServiceError):
    """Terminal for the current PIN; a resend is required"""
    kind = "PinAttemptsExceeded"
    http_status = 400


class PinMismatchError(MatchServiceError):
    """Recoverable until attempts run out"""
    kind = "PinMismatch"
    http_status = 400

    def __init__(self, message: str, attempts_remaining: int = 0):
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


class MatchValidationError(MatchServiceError):
    """Raised when input is malformed"""
    kind = "ValidationError"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


__all__ = [
    "Clock",
    "MatchRepositoryProtocol",
    "ShopperRequestRepositoryProtocol",
    "TripRepositoryProtocol",
    "EventBusProtocol",
    "AuditSinkProtocol",
    "MatchServiceError",
    "NotAuthenticatedError",
    "NotAuthorizedError",
    "EntityNotFoundError",
    "InvalidStateError",
    "CooldownNotElapsedError",
    "CooldownExpiredError",
    "ItemConflictError",
    "StaleStateError",
    "ConcurrentModificationError",
    "NoPinIssuedError",
    "PinExpiredError",
    "PinAttemptsExceededError",
    "PinMismatchError",
    "MatchValidationError",
]
