"""
Match Service - Booking Orchestration

Composes the lifecycle and delivery engines with cross-entity checks:
- loads the match and, for item-binding actions, its shopper request
- enforces the caller's role for each action
- rewords a lost compare-and-swap as a retryable StaleState error
- records audit entries and publishes events after each committed change
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from core.auth_dependencies import Identity
from core.jwt_manager import UserRole

from .actions import (
    ACTION_ROLES,
    AcceptAction,
    ApproveAction,
    BoardAction,
    CancelAction,
    ClaimAction,
    DeliverToVendorAction,
    DisputeAction,
    GeneratePinAction,
    MatchAction,
    PayAction,
    PurchaseAction,
    RejectAction,
    ResendPinAction,
    VerifyPinAction,
)
from .delivery import DeliveryVerificationEngine
from .events.publishers import MatchEventPublisher
from .lifecycle import MatchLifecycleEngine, utc_now
from .models import (
    AuditEvent,
    AuditEventKind,
    DeliveryStatus,
    Match,
    MatchCreateRequest,
    MatchFilter,
    MatchStatus,
    PaymentStatus,
    PinIssued,
    ShopperRequest,
    ShopperRequestStatus,
    Trip,
)
from .protocols import (
    AuditSinkProtocol,
    Clock,
    ConcurrentModificationError,
    EntityNotFoundError,
    InvalidStateError,
    MatchRepositoryProtocol,
    MatchValidationError,
    NotAuthorizedError,
    PinAttemptsExceededError,
    PinExpiredError,
    PinMismatchError,
    ShopperRequestRepositoryProtocol,
    StaleStateError,
    TripRepositoryProtocol,
)

logger = logging.getLogger(__name__)

ActionResult = Union[Match, PinIssued]


class MatchService:
    """
    Booking orchestration service

    Entry point for every match operation. Engines validate and write;
    this layer loads, authorizes, translates and reports.
    """

    MATCHABLE_REQUEST_STATUSES = frozenset({
        ShopperRequestStatus.PUBLISHED,
        ShopperRequestStatus.MATCHED,
    })

    def __init__(
        self,
        match_repository: MatchRepositoryProtocol,
        request_repository: ShopperRequestRepositoryProtocol,
        trip_repository: TripRepositoryProtocol,
        lifecycle: MatchLifecycleEngine,
        delivery: DeliveryVerificationEngine,
        audit_sink: Optional[AuditSinkProtocol] = None,
        event_publisher: Optional[MatchEventPublisher] = None,
        clock: Optional[Clock] = None,
    ):
        self.match_repository = match_repository
        self.request_repository = request_repository
        self.trip_repository = trip_repository
        self.lifecycle = lifecycle
        self.delivery = delivery
        self.audit_sink = audit_sink
        self.event_publisher = event_publisher or MatchEventPublisher()
        self.clock = clock or utc_now

    # ====================
    # Creation and reads
    # ====================

    async def create_match(self, identity: Identity, request: MatchCreateRequest) -> Match:
        """
        Create a pending match proposed by upstream matching.

        The candidate items are only proposed here; nothing is assigned
        until the traveler claims or accepts.
        """
        if identity.role != UserRole.ADMIN:
            await self._deny(identity, None, "create_match", "Only administrators may create matches")

        shopper_request = await self._load_request(request.shopper_request_id)
        trip = await self._load_trip(request.trip_id)

        if shopper_request.status not in self.MATCHABLE_REQUEST_STATUSES:
            raise InvalidStateError(
                f"Shopper request {shopper_request.request_id} is '{shopper_request.status.value}' and cannot be matched",
                action="create_match",
            )

        candidates = [item.strip() for item in request.candidate_items]
        if len(set(candidates)) != len(candidates):
            raise MatchValidationError("Candidate items must not repeat", "candidate_items")
        foreign = [item for item in candidates if item not in shopper_request.item_ids]
        if foreign:
            raise MatchValidationError(
                f"Items do not belong to shopper request {shopper_request.request_id}: {', '.join(foreign)}",
                "candidate_items",
            )

        now = self.clock()
        match = Match(
            match_id=str(uuid.uuid4()),
            shopper_request_id=shopper_request.request_id,
            trip_id=trip.trip_id,
            shopper_id=shopper_request.shopper_id,
            traveler_id=trip.traveler_id,
            status=MatchStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            match_score=request.match_score,
            candidate_items=candidates,
            created_at=now,
            updated_at=now,
        )
        match = await self.match_repository.create_match(match)
        logger.info(
            f"Match {match.match_id} created for request {shopper_request.request_id} "
            f"and trip {trip.trip_id} ({len(candidates)} candidate items)"
        )

        await self._audit(
            AuditEventKind.MATCH_CREATED,
            identity,
            match.match_id,
            action="create_match",
            to_status=match.status,
        )
        await self.event_publisher.publish_match_created(match)
        return match

    async def get_match(self, identity: Identity, match_id: str) -> Match:
        match = await self._load_match(match_id)
        if identity.role != UserRole.ADMIN and not match.is_party(identity.user_id):
            await self._deny(identity, match_id, "view", f"Match {match_id} does not involve caller")
        return match

    async def list_matches_for_request(self, identity: Identity, request_id: str) -> List[Match]:
        shopper_request = await self._load_request(request_id)
        if identity.role != UserRole.ADMIN and shopper_request.shopper_id != identity.user_id:
            await self._deny(identity, None, "list_request_matches", f"Shopper request {request_id} belongs to another shopper")
        return await self.match_repository.find_matches(MatchFilter(shopper_request_id=request_id))

    async def list_matches_for_trip(self, identity: Identity, trip_id: str) -> List[Match]:
        trip = await self._load_trip(trip_id)
        if identity.role != UserRole.ADMIN and trip.traveler_id != identity.user_id:
            await self._deny(identity, None, "list_trip_matches", f"Trip {trip_id} belongs to another traveler")
        return await self.match_repository.find_matches(MatchFilter(trip_id=trip_id))

    async def list_pending_matches(self, identity: Identity) -> List[Match]:
        """Pending matches offered to the calling traveler"""
        if identity.role != UserRole.TRAVELER:
            await self._deny(identity, None, "list_pending", "Only travelers have pending matches")
        return await self.match_repository.find_matches(
            MatchFilter(traveler_id=identity.user_id, statuses=frozenset({MatchStatus.PENDING}))
        )

    async def get_delivery_status(self, identity: Identity, match_id: str) -> DeliveryStatus:
        match = await self._load_match(match_id)
        try:
            return self.delivery.delivery_status(match, identity.user_id, identity.role)
        except NotAuthorizedError as e:
            await self._audit(AuditEventKind.ACCESS_DENIED, identity, match_id, action="delivery_status", detail={"reason": e.message})
            raise

    # ====================
    # Actions
    # ====================

    async def execute(self, identity: Identity, match_id: str, action: MatchAction) -> ActionResult:
        """
        Perform one action on a match on behalf of `identity`.

        Raises:
            NotAuthorizedError: caller's role may not perform the action, or not a party
            EntityNotFoundError: match (or its shopper request) missing
            StaleStateError: the match changed concurrently; reload and retry
            MatchServiceError subclasses raised by the engines
        """
        allowed = ACTION_ROLES[action.action]
        if identity.role not in allowed:
            await self._deny(
                identity,
                match_id,
                action.action,
                f"Role '{identity.role.value}' may not {action.action.replace('_', ' ')} a match",
            )

        match = await self._load_match(match_id)

        try:
            result = await self._dispatch(identity, match, action)
        except ConcurrentModificationError as e:
            raise StaleStateError(
                f"Match {match_id} was changed by another request during '{action.action}'; reload and retry",
                match_id,
            ) from e
        except NotAuthorizedError as e:
            await self._audit(AuditEventKind.ACCESS_DENIED, identity, match_id, action=action.action, detail={"reason": e.message})
            raise
        except (PinMismatchError, PinAttemptsExceededError, PinExpiredError) as e:
            await self._audit(
                AuditEventKind.PIN_VERIFY_FAILED,
                identity,
                match_id,
                action=action.action,
                detail={"kind": e.kind},
            )
            await self.event_publisher.publish_pin_failed(match, e.kind)
            raise

        await self._report(identity, match, action, result)
        return result

    async def _dispatch(self, identity: Identity, match: Match, action: MatchAction) -> ActionResult:
        user_id = identity.user_id

        if isinstance(action, ClaimAction):
            await self._require_trip_owner(match, user_id)
            shopper_request = await self._load_request(match.shopper_request_id)
            return await self.lifecycle.claim(match, user_id, action.assigned_items, set(shopper_request.item_ids))
        if isinstance(action, AcceptAction):
            await self._require_trip_owner(match, user_id)
            shopper_request = await self._load_request(match.shopper_request_id)
            return await self.lifecycle.accept(match, user_id, set(shopper_request.item_ids))
        if isinstance(action, RejectAction):
            return await self.lifecycle.reject(match, user_id, action.reason)
        if isinstance(action, ApproveAction):
            return await self.lifecycle.approve(match, user_id)
        if isinstance(action, CancelAction):
            return await self.lifecycle.cancel(match, user_id, action.reason)
        if isinstance(action, PurchaseAction):
            return await self.lifecycle.purchase(match, user_id, action.receipt_url)
        if isinstance(action, BoardAction):
            return await self.lifecycle.board(match, user_id)
        if isinstance(action, PayAction):
            return await self.lifecycle.pay(match, user_id)
        if isinstance(action, DisputeAction):
            return await self.lifecycle.dispute(match, user_id, action.reason)
        if isinstance(action, DeliverToVendorAction):
            return await self.delivery.mark_as_delivered(match, user_id)
        if isinstance(action, GeneratePinAction):
            return await self.delivery.generate_pin(match, user_id, action.store_location)
        if isinstance(action, ResendPinAction):
            return await self.delivery.resend_pin(match, user_id)
        if isinstance(action, VerifyPinAction):
            return await self.delivery.verify_pin(match, user_id, action.pin)

        raise TypeError(f"Unhandled match action: {type(action).__name__}")

    async def _report(self, identity: Identity, before: Match, action: MatchAction, result: ActionResult) -> None:
        if isinstance(result, PinIssued):
            await self._audit(
                AuditEventKind.PIN_ISSUED,
                identity,
                before.match_id,
                action=action.action,
                detail={"expires_at": result.expires_at.isoformat()},
            )
            await self.event_publisher.publish_pin_issued(
                before, result, reissued=isinstance(action, ResendPinAction)
            )
            return

        if isinstance(action, PayAction):
            if before.payment_status != result.payment_status:
                await self._audit(AuditEventKind.PAYMENT_RECORDED, identity, before.match_id, action="pay")
                await self.event_publisher.publish_match_paid(result)
            return

        if before.status == result.status:
            return

        await self._audit(
            AuditEventKind.TRANSITION,
            identity,
            before.match_id,
            action=action.action,
            from_status=before.status,
            to_status=result.status,
        )
        await self.event_publisher.publish_match_transitioned(result, action.action, before.status, identity.user_id)
        if result.status == MatchStatus.COMPLETED:
            await self.event_publisher.publish_delivery_completed(result)

    # ====================
    # Audit helpers
    # ====================

    async def record_authentication_failure(self, reason: str, path: str) -> None:
        """Audit a request rejected before an identity could be established"""
        await self._write_audit(
            AuditEvent(
                event_id=str(uuid.uuid4()),
                kind=AuditEventKind.AUTHENTICATION_FAILED,
                occurred_at=self.clock(),
                detail={"reason": reason, "path": path},
            )
        )

    async def _deny(self, identity: Identity, match_id: Optional[str], action: str, message: str) -> None:
        await self._audit(AuditEventKind.ACCESS_DENIED, identity, match_id, action=action, detail={"reason": message})
        raise NotAuthorizedError(message)

    async def _audit(
        self,
        kind: AuditEventKind,
        identity: Identity,
        match_id: Optional[str],
        action: Optional[str] = None,
        from_status: Optional[MatchStatus] = None,
        to_status: Optional[MatchStatus] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._write_audit(
            AuditEvent(
                event_id=str(uuid.uuid4()),
                kind=kind,
                occurred_at=self.clock(),
                match_id=match_id,
                actor_id=identity.user_id,
                actor_role=identity.role,
                action=action,
                from_status=from_status,
                to_status=to_status,
                detail=detail or {},
            )
        )

    async def _write_audit(self, event: AuditEvent) -> None:
        if self.audit_sink is None:
            return
        try:
            await self.audit_sink.record(event)
        except Exception as e:
            logger.error(f"Failed to record audit event {event.kind.value}: {e}")

    # ====================
    # Loading
    # ====================

    async def _load_match(self, match_id: str) -> Match:
        match = await self.match_repository.get_match(match_id)
        if match is None:
            raise EntityNotFoundError("Match", match_id)
        return match

    async def _load_request(self, request_id: str) -> ShopperRequest:
        shopper_request = await self.request_repository.get_shopper_request(request_id)
        if shopper_request is None:
            raise EntityNotFoundError("ShopperRequest", request_id)
        return shopper_request

    async def _load_trip(self, trip_id: str) -> Trip:
        trip = await self.trip_repository.get_trip(trip_id)
        if trip is None:
            raise EntityNotFoundError("Trip", trip_id)
        return trip

    async def _require_trip_owner(self, match: Match, traveler_id: str) -> None:
        """Only the traveler flying the match's trip may bind items to it"""
        trip = await self._load_trip(match.trip_id)
        if trip.traveler_id != traveler_id:
            raise NotAuthorizedError(f"Trip {trip.trip_id} of match {match.match_id} belongs to another traveler")
