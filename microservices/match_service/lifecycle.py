"""
Match Lifecycle Engine

Owns the match state machine: claim, accept, reject, approve, cooldown-aware
cancel, purchase, board, pay and dispute.

Every mutation is a single conditional write keyed on the status the engine
read. The engine never retries; a lost write surfaces as
ConcurrentModificationError (kind StaleState) and the caller decides.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Collection, Dict, FrozenSet, List, Optional, Sequence

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .models import (
    ITEM_HOLDING_STATUSES,
    RELEASED_STATUSES,
    TRANSITION_TIMESTAMPS,
    Match,
    MatchFilter,
    MatchPredicate,
    MatchStatus,
    PaymentStatus,
)
from .protocols import (
    Clock,
    ConcurrentModificationError,
    CooldownExpiredError,
    CooldownNotElapsedError,
    EntityNotFoundError,
    InvalidStateError,
    ItemConflictError,
    MatchRepositoryProtocol,
    MatchValidationError,
    NotAuthorizedError,
)

logger = logging.getLogger(__name__)

_HTTP_URL = TypeAdapter(AnyHttpUrl)

# Written at most once over a match's life
WRITE_ONCE_FIELDS: FrozenSet[str] = frozenset(
    set(TRANSITION_TIMESTAMPS.values()) | {"cooldown_expires_at", "purchase_deadline_at", "paid_at", "receipt_url"}
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchStateWriter:
    """Conditional-write plumbing and ownership checks shared by both engines"""

    def __init__(self, repository: MatchRepositoryProtocol, clock: Optional[Clock] = None):
        self.repository = repository
        self.clock = clock or utc_now

    # ====================
    # Ownership
    # ====================

    @staticmethod
    def _require_traveler(match: Match, user_id: str, action: str) -> None:
        if match.traveler_id is None or match.traveler_id != user_id:
            raise NotAuthorizedError(f"Only the match traveler may {action} match {match.match_id}")

    @staticmethod
    def _require_shopper(match: Match, user_id: str, action: str) -> None:
        if match.shopper_id != user_id:
            raise NotAuthorizedError(f"Only the match shopper may {action} match {match.match_id}")

    @staticmethod
    def _require_party(match: Match, user_id: str, action: str) -> None:
        if not match.is_party(user_id):
            raise NotAuthorizedError(f"Only the shopper or traveler may {action} match {match.match_id}")

    @staticmethod
    def _require_status(match: Match, allowed: FrozenSet[MatchStatus], action: str) -> None:
        if match.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} match {match.match_id} in status '{match.status.value}'",
                match.status,
                action,
            )

    # ====================
    # Item assignment
    # ====================

    async def items_held_elsewhere(self, match: Match, items: Sequence[str]) -> List[str]:
        """Items from `items` currently held by another active match of the same request"""
        siblings = await self.repository.find_matches(
            MatchFilter(
                shopper_request_id=match.shopper_request_id,
                statuses=ITEM_HOLDING_STATUSES,
            )
        )
        held = set()
        for sibling in siblings:
            if sibling.match_id != match.match_id:
                held.update(sibling.assigned_items)
        return [item for item in items if item in held]

    # ====================
    # Conditional write
    # ====================

    async def _commit(
        self,
        match: Match,
        predicate: MatchPredicate,
        patch: Dict[str, Any],
        action: str,
    ) -> Match:
        """
        Apply `patch` through the repository's compare-and-swap.

        Raises:
            InvalidStateError: patch would overwrite a write-once field
            ItemConflictError: exclusive items were taken by a sibling match
            ConcurrentModificationError: the match moved since it was read
        """
        for field in patch:
            if field in WRITE_ONCE_FIELDS and getattr(match, field) is not None:
                raise InvalidStateError(
                    f"{field} is already set on match {match.match_id}",
                    match.status,
                    action,
                )

        updated = await self.repository.atomic_update(match.match_id, predicate, patch)
        if updated is not None:
            return updated

        current = await self.repository.get_match(match.match_id)
        if current is None:
            raise EntityNotFoundError("Match", match.match_id)

        if predicate.exclusive_items and current.status == predicate.expected_status:
            taken = await self.items_held_elsewhere(current, predicate.exclusive_items)
            if taken:
                raise ItemConflictError(
                    f"Items already assigned to another active match: {', '.join(taken)}",
                    taken,
                )

        logger.info(
            f"Lost write on match {match.match_id} during {action}: "
            f"expected '{predicate.expected_status.value}', found '{current.status.value}'"
        )
        raise ConcurrentModificationError(
            f"Match {match.match_id} changed during {action} (now '{current.status.value}')",
            match.match_id,
        )


class MatchLifecycleEngine(MatchStateWriter):
    """
    Match state machine

    pending   --claim/accept--> claimed --approve--> approved --purchase--> purchased --board--> boarded
    pending   --reject-->       rejected
    claimed   --cancel-->       cancelled
    approved  --cancel (inside cooldown)--> cancelled
    purchased/boarded/delivered_to_vendor --dispute--> disputed
    pay: any status except cancelled/rejected, sets payment_status only
    """

    VALID_SOURCES: Dict[str, FrozenSet[MatchStatus]] = {
        "claim": frozenset({MatchStatus.PENDING}),
        "accept": frozenset({MatchStatus.PENDING}),
        "reject": frozenset({MatchStatus.PENDING}),
        "approve": frozenset({MatchStatus.CLAIMED}),
        "cancel": frozenset({MatchStatus.CLAIMED, MatchStatus.APPROVED}),
        "purchase": frozenset({MatchStatus.APPROVED}),
        "board": frozenset({MatchStatus.PURCHASED}),
        "dispute": frozenset({
            MatchStatus.PURCHASED,
            MatchStatus.BOARDED,
            MatchStatus.DELIVERED_TO_VENDOR,
        }),
        "pay": frozenset(s for s in MatchStatus if s not in RELEASED_STATUSES),
    }

    def __init__(
        self,
        repository: MatchRepositoryProtocol,
        cooldown: timedelta = timedelta(hours=24),
        purchase_window: timedelta = timedelta(hours=24),
        clock: Optional[Clock] = None,
    ):
        super().__init__(repository, clock)
        self.cooldown = cooldown
        self.purchase_window = purchase_window

    # ====================
    # Entry: pending -> claimed / rejected
    # ====================

    async def claim(
        self,
        match: Match,
        traveler_id: str,
        assigned_items: Sequence[str],
        request_items: Optional[Collection[str]] = None,
    ) -> Match:
        """
        Claim a pending match with an explicit item assignment.

        Binds the traveler if the match has none yet. Every item must belong
        to the shopper request (`request_items`, when the caller loaded it)
        and the write only commits if no sibling active match holds any of
        the items at that moment.
        """
        if match.traveler_id is not None and match.traveler_id != traveler_id:
            raise NotAuthorizedError(f"Match {match.match_id} is bound to another traveler")
        self._require_status(match, self.VALID_SOURCES["claim"], "claim")

        items = self._normalize_items(assigned_items)
        return await self._bind_items(match, traveler_id, items, request_items, "claim")

    async def accept(
        self,
        match: Match,
        traveler_id: str,
        request_items: Optional[Collection[str]] = None,
    ) -> Match:
        """Accept a pending match, binding the candidate items computed upstream"""
        if match.traveler_id is not None and match.traveler_id != traveler_id:
            raise NotAuthorizedError(f"Match {match.match_id} is bound to another traveler")
        self._require_status(match, self.VALID_SOURCES["accept"], "accept")

        if not match.candidate_items:
            raise MatchValidationError(
                f"Match {match.match_id} has no candidate items to accept",
                "candidate_items",
            )
        items = self._normalize_items(match.candidate_items)
        return await self._bind_items(match, traveler_id, items, request_items, "accept")

    async def reject(self, match: Match, traveler_id: str, reason: Optional[str] = None) -> Match:
        self._require_traveler(match, traveler_id, "reject")
        self._require_status(match, self.VALID_SOURCES["reject"], "reject")

        now = self.clock()
        updated = await self._commit(
            match,
            MatchPredicate(expected_status=MatchStatus.PENDING),
            {
                "status": MatchStatus.REJECTED,
                "rejected_at": now,
                "rejection_reason": reason,
                "updated_at": now,
            },
            "reject",
        )
        logger.info(f"Match {match.match_id} rejected by traveler {traveler_id}")
        return updated

    async def _bind_items(
        self,
        match: Match,
        traveler_id: str,
        items: List[str],
        request_items: Optional[Collection[str]],
        action: str,
    ) -> Match:
        if request_items is not None:
            foreign = [item for item in items if item not in request_items]
            if foreign:
                raise ItemConflictError(
                    f"Items do not belong to shopper request {match.shopper_request_id}: {', '.join(foreign)}",
                    foreign,
                )

        held = await self.items_held_elsewhere(match, items)
        if held:
            raise ItemConflictError(
                f"Items already assigned to another active match: {', '.join(held)}",
                held,
            )

        now = self.clock()
        patch: Dict[str, Any] = {
            "status": MatchStatus.CLAIMED,
            "claimed_at": now,
            "assigned_items": items,
            "updated_at": now,
        }
        if match.traveler_id is None:
            patch["traveler_id"] = traveler_id

        updated = await self._commit(
            match,
            MatchPredicate(
                expected_status=MatchStatus.PENDING,
                exclusive_items=tuple(items),
            ),
            patch,
            action,
        )
        logger.info(f"Match {match.match_id} claimed by traveler {traveler_id} via {action} ({len(items)} items)")
        return updated

    @staticmethod
    def _normalize_items(items: Sequence[str]) -> List[str]:
        cleaned = [item.strip() for item in items]
        if not cleaned or any(not item for item in cleaned):
            raise MatchValidationError("At least one non-empty item id is required", "assigned_items")
        if len(set(cleaned)) != len(cleaned):
            raise MatchValidationError("Item ids must not repeat", "assigned_items")
        return cleaned

    # ====================
    # Approval and cooldown
    # ====================

    async def approve(self, match: Match, shopper_id: str) -> Match:
        """
        Approve a claimed match and open the cancellation cooldown.

        Also fixes the purchase deadline: the traveler has `purchase_window`
        after the cooldown ends. Missing it only flags the match as overdue.
        """
        self._require_shopper(match, shopper_id, "approve")
        self._require_status(match, self.VALID_SOURCES["approve"], "approve")

        now = self.clock()
        updated = await self._commit(
            match,
            MatchPredicate(expected_status=MatchStatus.CLAIMED),
            {
                "status": MatchStatus.APPROVED,
                "approved_at": now,
                "cooldown_expires_at": now + self.cooldown,
                "purchase_deadline_at": now + self.cooldown + self.purchase_window,
                "updated_at": now,
            },
            "approve",
        )
        logger.info(f"Match {match.match_id} approved, cooldown until {updated.cooldown_expires_at.isoformat()}")
        return updated

    async def cancel(self, match: Match, caller_id: str, reason: Optional[str] = None) -> Match:
        """
        Cancel a claimed match, or an approved one while its cooldown is open.

        Releases the assigned items whichever party cancels.

        Raises:
            CooldownExpiredError: approved and now >= cooldown_expires_at
        """
        self._require_party(match, caller_id, "cancel")
        self._require_status(match, self.VALID_SOURCES["cancel"], "cancel")

        now = self.clock()
        if match.status == MatchStatus.APPROVED:
            if match.cooldown_expires_at is None or now >= match.cooldown_expires_at:
                raise CooldownExpiredError(
                    f"Cancellation window for match {match.match_id} has closed",
                    match.cooldown_expires_at,
                )

        updated = await self._commit(
            match,
            MatchPredicate(expected_status=match.status),
            {
                "status": MatchStatus.CANCELLED,
                "cancelled_at": now,
                "cancelled_by": caller_id,
                "cancellation_reason": reason,
                "assigned_items": [],
                "released_items": list(match.assigned_items),
                "updated_at": now,
            },
            "cancel",
        )
        logger.info(
            f"Match {match.match_id} cancelled by {caller_id} from '{match.status.value}', "
            f"released {len(match.assigned_items)} items"
        )
        return updated

    # ====================
    # Fulfilment
    # ====================

    async def purchase(self, match: Match, traveler_id: str, receipt_url: str) -> Match:
        """
        Record the traveler's purchase once the cooldown has elapsed.

        Raises:
            CooldownNotElapsedError: now < cooldown_expires_at
            MatchValidationError: receipt_url is not an http(s) URL
        """
        self._require_traveler(match, traveler_id, "purchase")
        self._require_status(match, self.VALID_SOURCES["purchase"], "purchase")

        now = self.clock()
        if match.cooldown_expires_at is None or now < match.cooldown_expires_at:
            raise CooldownNotElapsedError(
                f"Match {match.match_id} cannot be purchased before the cooldown ends",
                match.cooldown_expires_at,
            )

        receipt = self._validate_receipt_url(receipt_url)
        if match.is_purchase_overdue(now):
            logger.warning(f"Match {match.match_id} purchased after its deadline {match.purchase_deadline_at.isoformat()}")

        updated = await self._commit(
            match,
            MatchPredicate(expected_status=MatchStatus.APPROVED),
            {
                "status": MatchStatus.PURCHASED,
                "purchased_at": now,
                "receipt_url": receipt,
                "updated_at": now,
            },
            "purchase",
        )
        logger.info(f"Match {match.match_id} purchased by traveler {traveler_id}")
        return updated

    @staticmethod
    def _validate_receipt_url(receipt_url: str) -> str:
        try:
            _HTTP_URL.validate_python(receipt_url)
        except ValidationError:
            raise MatchValidationError(f"Invalid receipt URL: {receipt_url!r}", "receipt_url") from None
        return receipt_url

    async def board(self, match: Match, traveler_id: str) -> Match:
        self._require_traveler(match, traveler_id, "board")
        self._require_status(match, self.VALID_SOURCES["board"], "board")

        now = self.clock()
        updated = await self._commit(
            match,
            MatchPredicate(expected_status=MatchStatus.PURCHASED),
            {"status": MatchStatus.BOARDED, "boarded_at": now, "updated_at": now},
            "board",
        )
        logger.info(f"Match {match.match_id} boarded")
        return updated

    async def dispute(self, match: Match, caller_id: str, reason: str) -> Match:
        """Flag a match in fulfilment for administrative resolution"""
        self._require_party(match, caller_id, "dispute")
        self._require_status(match, self.VALID_SOURCES["dispute"], "dispute")
        if not reason or not reason.strip():
            raise MatchValidationError("A dispute reason is required", "reason")

        now = self.clock()
        updated = await self._commit(
            match,
            MatchPredicate(expected_status=match.status),
            {
                "status": MatchStatus.DISPUTED,
                "disputed_at": now,
                "dispute_reason": reason.strip(),
                "updated_at": now,
            },
            "dispute",
        )
        logger.warning(f"Match {match.match_id} disputed by {caller_id} from '{match.status.value}'")
        return updated

    # ====================
    # Payment
    # ====================

    async def pay(self, match: Match, shopper_id: str) -> Match:
        """
        Mark the match paid. Idempotent: an already-paid match is returned
        unchanged, including when a concurrent pay won the write.
        """
        self._require_shopper(match, shopper_id, "pay")
        self._require_status(match, self.VALID_SOURCES["pay"], "pay")

        if match.payment_status == PaymentStatus.PAID:
            logger.debug(f"Match {match.match_id} already paid, nothing to do")
            return match

        now = self.clock()
        try:
            updated = await self._commit(
                match,
                MatchPredicate(
                    expected_status=match.status,
                    expected_payment_status=PaymentStatus.UNPAID,
                ),
                {"payment_status": PaymentStatus.PAID, "paid_at": now, "updated_at": now},
                "pay",
            )
        except ConcurrentModificationError:
            current = await self.repository.get_match(match.match_id)
            if current is not None and current.payment_status == PaymentStatus.PAID:
                return current
            raise

        logger.info(f"Match {match.match_id} paid by shopper {shopper_id}")
        return updated
