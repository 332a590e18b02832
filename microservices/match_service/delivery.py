"""
Delivery Verification Engine

Issues a short numeric PIN to the traveler at handoff, stores only its salted
hash, and verifies the PIN the shopper reads back. PINs expire after a TTL
and lock after a bounded number of wrong guesses; expiry is evaluated lazily
on the next call.
"""

import logging
import secrets
from datetime import timedelta
from typing import FrozenSet, Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.jwt_manager import UserRole

from .lifecycle import MatchStateWriter
from .models import (
    DeliveryStatus,
    Match,
    MatchPredicate,
    MatchStatus,
    PinIssued,
    PinRecord,
)
from .protocols import (
    Clock,
    MatchRepositoryProtocol,
    MatchValidationError,
    NoPinIssuedError,
    NotAuthorizedError,
    PinAttemptsExceededError,
    PinExpiredError,
    PinMismatchError,
)

logger = logging.getLogger(__name__)


class PinHasher:
    """Generates numeric PINs and hashes them with PBKDF2-HMAC-SHA256"""

    def __init__(self, length: int = 5, iterations: int = 100_000):
        self.length = length
        self.iterations = iterations

    def generate(self) -> str:
        # Uniform over 10**length, leading zeros kept
        return f"{secrets.randbelow(10 ** self.length):0{self.length}d}"

    @staticmethod
    def new_salt() -> str:
        return secrets.token_hex(16)

    def _kdf(self, salt: str) -> PBKDF2HMAC:
        return PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=bytes.fromhex(salt),
            iterations=self.iterations,
        )

    def hash(self, pin: str, salt: str) -> str:
        return self._kdf(salt).derive(pin.encode()).hex()

    def matches(self, pin: str, record: PinRecord) -> bool:
        try:
            self._kdf(record.salt).verify(pin.encode(), bytes.fromhex(record.pin_hash))
        except InvalidKey:
            return False
        return True

    def is_well_formed(self, pin: str) -> bool:
        return len(pin) == self.length and pin.isascii() and pin.isdigit()


class DeliveryVerificationEngine(MatchStateWriter):
    """Delivery PIN issue/verify and vendor drop-off"""

    PIN_STATES: FrozenSet[MatchStatus] = frozenset({
        MatchStatus.BOARDED,
        MatchStatus.DELIVERED_TO_VENDOR,
    })
    DELIVER_STATES: FrozenSet[MatchStatus] = frozenset({MatchStatus.BOARDED})

    def __init__(
        self,
        repository: MatchRepositoryProtocol,
        pin_ttl: timedelta = timedelta(minutes=15),
        max_attempts: int = 5,
        hasher: Optional[PinHasher] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(repository, clock)
        self.pin_ttl = pin_ttl
        self.max_attempts = max_attempts
        self.hasher = hasher or PinHasher()

    # ====================
    # PIN issue
    # ====================

    async def generate_pin(self, match: Match, traveler_id: str, store_location: str) -> PinIssued:
        """
        Issue a fresh PIN, replacing any outstanding one.

        Returns:
            PinIssued with the plaintext PIN; this is the only place it exists
        """
        self._require_traveler(match, traveler_id, "generate a PIN for")
        self._require_status(match, self.PIN_STATES, "generate a PIN for")

        location = (store_location or "").strip()
        if not location:
            raise MatchValidationError("Store location is required", "store_location")

        return await self._issue(match, location, "generate_pin")

    async def resend_pin(self, match: Match, traveler_id: str) -> PinIssued:
        """Reissue the PIN after loss, expiry or lockout; keeps the store location"""
        self._require_traveler(match, traveler_id, "resend the PIN for")
        self._require_status(match, self.PIN_STATES, "resend the PIN for")

        if match.verification_pin is None:
            raise NoPinIssuedError(f"No delivery PIN has been issued for match {match.match_id}")

        return await self._issue(match, match.verification_pin.store_location, "resend_pin")

    async def _issue(self, match: Match, store_location: Optional[str], action: str) -> PinIssued:
        now = self.clock()
        pin = self.hasher.generate()
        salt = self.hasher.new_salt()
        record = PinRecord(
            pin_hash=self.hasher.hash(pin, salt),
            salt=salt,
            issued_at=now,
            expires_at=now + self.pin_ttl,
            attempt_count=0,
            store_location=store_location,
        )

        await self._commit(
            match,
            MatchPredicate(expected_status=match.status),
            {"verification_pin": record, "updated_at": now},
            action,
        )
        logger.info(f"Delivery PIN issued for match {match.match_id}, expires {record.expires_at.isoformat()}")

        return PinIssued(
            match_id=match.match_id,
            pin=pin,
            expires_at=record.expires_at,
            store_location=store_location,
        )

    # ====================
    # PIN verification
    # ====================

    async def verify_pin(self, match: Match, shopper_id: str, pin: str) -> Match:
        """
        Verify the shopper's PIN and complete the match on success.

        The attempt is consumed by the same conditional write that records
        the outcome, so concurrent guesses cannot share an attempt.

        Raises:
            NoPinIssuedError, PinExpiredError, PinAttemptsExceededError,
            PinMismatchError (attempt consumed)
        """
        self._require_shopper(match, shopper_id, "verify the PIN for")
        self._require_status(match, self.PIN_STATES, "verify the PIN for")

        if not self.hasher.is_well_formed(pin or ""):
            raise MatchValidationError(f"PIN must be {self.hasher.length} digits", "pin")

        record = match.verification_pin
        if record is None:
            raise NoPinIssuedError(f"No delivery PIN outstanding for match {match.match_id}")

        now = self.clock()
        if now > record.expires_at:
            raise PinExpiredError(f"Delivery PIN for match {match.match_id} has expired; request a new one")

        if record.attempt_count >= self.max_attempts:
            raise PinAttemptsExceededError(
                f"Delivery PIN for match {match.match_id} is locked after {self.max_attempts} attempts; request a new one"
            )

        predicate = MatchPredicate(
            expected_status=match.status,
            expected_pin_hash=record.pin_hash,
            expected_pin_attempts=record.attempt_count,
        )
        attempts = record.attempt_count + 1

        if self.hasher.matches(pin, record):
            updated = await self._commit(
                match,
                predicate,
                {
                    "status": MatchStatus.COMPLETED,
                    "completed_at": now,
                    "verification_pin": None,
                    "updated_at": now,
                },
                "verify_pin",
            )
            logger.info(f"Match {match.match_id} completed after PIN verification (attempt {attempts})")
            return updated

        await self._commit(
            match,
            predicate,
            {
                "verification_pin": record.model_copy(update={"attempt_count": attempts}),
                "updated_at": now,
            },
            "verify_pin",
        )
        remaining = max(self.max_attempts - attempts, 0)
        logger.warning(f"Wrong delivery PIN for match {match.match_id}, {remaining} attempts remaining")
        raise PinMismatchError(
            f"Incorrect PIN, {remaining} attempt(s) remaining",
            attempts_remaining=remaining,
        )

    # ====================
    # Vendor drop-off
    # ====================

    async def mark_as_delivered(self, match: Match, traveler_id: str) -> Match:
        """Record physical drop-off at a vendor waypoint (independent of the PIN)"""
        self._require_traveler(match, traveler_id, "mark delivery for")
        self._require_status(match, self.DELIVER_STATES, "mark delivery for")

        now = self.clock()
        updated = await self._commit(
            match,
            MatchPredicate(expected_status=MatchStatus.BOARDED),
            {
                "status": MatchStatus.DELIVERED_TO_VENDOR,
                "delivered_to_vendor_at": now,
                "updated_at": now,
            },
            "deliver_to_vendor",
        )
        logger.info(f"Match {match.match_id} delivered to vendor")
        return updated

    # ====================
    # Projection
    # ====================

    def delivery_status(self, match: Match, caller_id: str, caller_role: UserRole) -> DeliveryStatus:
        if caller_role != UserRole.ADMIN and not match.is_party(caller_id):
            raise NotAuthorizedError(f"Only the shopper or traveler may view delivery of match {match.match_id}")

        record = match.verification_pin
        status = DeliveryStatus(
            match_id=match.match_id,
            status=match.status,
            payment_status=match.payment_status,
            boarded_at=match.boarded_at,
            delivered_to_vendor_at=match.delivered_to_vendor_at,
            completed_at=match.completed_at,
            purchase_deadline_at=match.purchase_deadline_at,
            purchase_overdue=match.is_purchase_overdue(self.clock()),
        )
        if record is not None:
            status.pin_outstanding = True
            status.pin_expires_at = record.expires_at
            status.pin_expired = self.clock() > record.expires_at
            status.pin_attempts_remaining = max(self.max_attempts - record.attempt_count, 0)
            status.store_location = record.store_location
        return status
