"""
Match Service Data Models

Pydantic models for matches, the entities they reference, delivery PIN
records, repository predicates and API envelopes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.jwt_manager import UserRole


class MatchStatus(str, Enum):
    """Match lifecycle status"""
    PENDING = "pending"
    CLAIMED = "claimed"
    APPROVED = "approved"
    PURCHASED = "purchased"
    BOARDED = "boarded"
    DELIVERED_TO_VENDOR = "delivered_to_vendor"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    """Payment sub-state, no back-transition"""
    UNPAID = "unpaid"
    PAID = "paid"


class ShopperRequestStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    MATCHED = "matched"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: FrozenSet[MatchStatus] = frozenset({
    MatchStatus.COMPLETED,
    MatchStatus.CANCELLED,
    MatchStatus.REJECTED,
})

# Matches in these states no longer hold their bag items
RELEASED_STATUSES: FrozenSet[MatchStatus] = frozenset({
    MatchStatus.CANCELLED,
    MatchStatus.REJECTED,
})

ITEM_HOLDING_STATUSES: FrozenSet[MatchStatus] = frozenset(
    s for s in MatchStatus if s not in RELEASED_STATUSES
)


# ====================
# Referenced entities
# ====================

class BagItem(BaseModel):
    """One product a shopper wants carried"""
    item_id: str
    request_id: str
    name: str
    product_link: Optional[str] = None
    price: float = 0.0
    currency: str = "USD"
    weight_kg: float = 0.0
    quantity: int = 1
    is_fragile: bool = False
    photos: List[str] = Field(default_factory=list)


class ShopperRequest(BaseModel):
    """A shopper's bag of items plus destination"""
    request_id: str
    shopper_id: str
    destination_country: str
    destination_city: Optional[str] = None
    status: ShopperRequestStatus = ShopperRequestStatus.PUBLISHED
    bag_items: List[BagItem] = Field(default_factory=list)

    @property
    def item_ids(self) -> List[str]:
        return [item.item_id for item in self.bag_items]


class Trip(BaseModel):
    """A traveler's declared route and carry capacity"""
    trip_id: str
    traveler_id: str
    origin_country: str
    destination_country: str
    departure_date: datetime
    arrival_date: datetime
    carry_on_capacity_kg: float = 0.0
    checked_capacity_kg: float = 0.0


# ====================
# Match
# ====================

class PinRecord(BaseModel):
    """Outstanding delivery PIN: salted hash, never the plaintext"""
    pin_hash: str
    salt: str
    issued_at: datetime
    expires_at: datetime
    attempt_count: int = 0
    store_location: Optional[str] = None


class Match(BaseModel):
    """Binding between a shopper request's items and a traveler's trip"""
    match_id: str
    shopper_request_id: str
    trip_id: str
    shopper_id: str
    traveler_id: Optional[str] = None

    status: MatchStatus = MatchStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    match_score: float = 0.0

    candidate_items: List[str] = Field(default_factory=list)
    assigned_items: List[str] = Field(default_factory=list)
    released_items: List[str] = Field(default_factory=list)

    receipt_url: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    dispute_reason: Optional[str] = None

    verification_pin: Optional[PinRecord] = None

    claimed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    cooldown_expires_at: Optional[datetime] = None
    purchase_deadline_at: Optional[datetime] = None
    purchased_at: Optional[datetime] = None
    boarded_at: Optional[datetime] = None
    delivered_to_vendor_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def holds_items(self) -> bool:
        return self.status not in RELEASED_STATUSES

    def is_purchase_overdue(self, now: datetime) -> bool:
        """Approved but still unpurchased past the traveler's purchase deadline"""
        return (
            self.status == MatchStatus.APPROVED
            and self.purchase_deadline_at is not None
            and now > self.purchase_deadline_at
        )

    def is_party(self, user_id: str) -> bool:
        return user_id == self.shopper_id or (
            self.traveler_id is not None and user_id == self.traveler_id
        )

    def public_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """JSON-ready view without the PIN hash and salt"""
        data = self.model_dump(mode="json", exclude={"verification_pin"})
        data["pin_outstanding"] = self.verification_pin is not None
        data["purchase_overdue"] = self.is_purchase_overdue(now or datetime.now(timezone.utc))
        return data


# Lifecycle timestamps, each written once by the transition that reaches it
TRANSITION_TIMESTAMPS: Dict[MatchStatus, str] = {
    MatchStatus.CLAIMED: "claimed_at",
    MatchStatus.APPROVED: "approved_at",
    MatchStatus.PURCHASED: "purchased_at",
    MatchStatus.BOARDED: "boarded_at",
    MatchStatus.DELIVERED_TO_VENDOR: "delivered_to_vendor_at",
    MatchStatus.COMPLETED: "completed_at",
    MatchStatus.CANCELLED: "cancelled_at",
    MatchStatus.REJECTED: "rejected_at",
    MatchStatus.DISPUTED: "disputed_at",
}


# ====================
# Repository contract types
# ====================

@dataclass(frozen=True)
class MatchPredicate:
    """
    Conditions a conditional write requires of the stored match.

    `expected_status` is always checked. `exclusive_items` additionally
    requires that no other item-holding match of the same shopper request
    holds any of those items at commit time.
    """
    expected_status: MatchStatus
    expected_payment_status: Optional[PaymentStatus] = None
    expected_pin_hash: Optional[str] = None
    expected_pin_attempts: Optional[int] = None
    exclusive_items: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchFilter:
    shopper_request_id: Optional[str] = None
    trip_id: Optional[str] = None
    shopper_id: Optional[str] = None
    traveler_id: Optional[str] = None
    statuses: Optional[FrozenSet[MatchStatus]] = None

    def matches(self, match: Match) -> bool:
        if self.shopper_request_id is not None and match.shopper_request_id != self.shopper_request_id:
            return False
        if self.trip_id is not None and match.trip_id != self.trip_id:
            return False
        if self.shopper_id is not None and match.shopper_id != self.shopper_id:
            return False
        if self.traveler_id is not None and match.traveler_id != self.traveler_id:
            return False
        if self.statuses is not None and match.status not in self.statuses:
            return False
        return True


# ====================
# Delivery projections
# ====================

class PinIssued(BaseModel):
    """Returned once to the traveler; the plaintext is never stored"""
    match_id: str
    pin: str
    expires_at: datetime
    store_location: Optional[str] = None


class DeliveryStatus(BaseModel):
    """Read-only delivery projection shared by both parties"""
    match_id: str
    status: MatchStatus
    payment_status: PaymentStatus
    boarded_at: Optional[datetime] = None
    delivered_to_vendor_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    purchase_deadline_at: Optional[datetime] = None
    purchase_overdue: bool = False
    pin_outstanding: bool = False
    pin_expires_at: Optional[datetime] = None
    pin_expired: bool = False
    pin_attempts_remaining: Optional[int] = None
    store_location: Optional[str] = None


# ====================
# Audit
# ====================

class AuditEventKind(str, Enum):
    MATCH_CREATED = "match_created"
    TRANSITION = "transition"
    PAYMENT_RECORDED = "payment_recorded"
    PIN_ISSUED = "pin_issued"
    PIN_VERIFY_FAILED = "pin_verify_failed"
    ACCESS_DENIED = "access_denied"
    AUTHENTICATION_FAILED = "authentication_failed"


class AuditEvent(BaseModel):
    """Append-only audit record"""
    event_id: str
    kind: AuditEventKind
    occurred_at: datetime
    match_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: Optional[UserRole] = None
    action: Optional[str] = None
    from_status: Optional[MatchStatus] = None
    to_status: Optional[MatchStatus] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


# ====================
# Request / Response Models
# ====================

class MatchCreateRequest(BaseModel):
    """Create a pending match from upstream matching"""
    shopper_request_id: str = Field(..., min_length=1)
    trip_id: str = Field(..., min_length=1)
    candidate_items: List[str] = Field(..., min_length=1, description="Items proposed for this trip")
    match_score: float = Field(default=0.0, ge=0, description="Upstream compatibility score")


class SuccessEnvelope(BaseModel):
    success: bool = True
    data: Any = None


class ErrorEnvelope(BaseModel):
    error: str
    message: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: datetime


class ReadinessResponse(BaseModel):
    ready: bool
    database: bool
    event_bus: bool
