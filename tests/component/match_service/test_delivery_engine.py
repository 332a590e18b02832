"""
Delivery Verification Engine Component Tests

PIN issue, resend, verification, lockout and expiry against the in-memory
repository and a frozen clock.
"""
from datetime import timedelta

import pytest

from core.jwt_manager import UserRole
from microservices.match_service.models import MatchStatus
from microservices.match_service.protocols import (
    InvalidStateError,
    MatchValidationError,
    NoPinIssuedError,
    NotAuthorizedError,
    PinAttemptsExceededError,
    PinExpiredError,
    PinMismatchError,
)

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


def _wrong(pin: str) -> str:
    return f"{(int(pin) + 1) % 100000:05d}"


# =============================================================================
# Issue
# =============================================================================

class TestGeneratePin:

    @pytest.mark.parametrize("status", [MatchStatus.BOARDED, MatchStatus.DELIVERED_TO_VENDOR])
    async def test_generate_pin_stores_only_the_hash(self, delivery, stored_match, trip, clock, match_repo, status):
        match = stored_match(status)

        issued = await delivery.generate_pin(match, trip.traveler_id, "NYC")

        assert len(issued.pin) == 5 and issued.pin.isdigit()
        assert issued.expires_at == clock() + timedelta(minutes=15)
        assert issued.store_location == "NYC"

        record = match_repo.stored(match.match_id).verification_pin
        assert record is not None
        assert record.pin_hash != issued.pin
        assert issued.pin not in record.pin_hash
        assert record.attempt_count == 0
        assert record.store_location == "NYC"

    async def test_generate_pin_does_not_change_status(self, delivery, stored_match, trip, match_repo):
        match = stored_match(MatchStatus.BOARDED)

        await delivery.generate_pin(match, trip.traveler_id, "NYC")

        assert match_repo.stored(match.match_id).status == MatchStatus.BOARDED

    async def test_generate_pin_before_boarding_fails(self, delivery, stored_match, trip):
        with pytest.raises(InvalidStateError):
            await delivery.generate_pin(stored_match(MatchStatus.PURCHASED), trip.traveler_id, "NYC")

    async def test_generate_pin_by_shopper_is_not_authorized(self, delivery, stored_match, shopper_request):
        with pytest.raises(NotAuthorizedError):
            await delivery.generate_pin(stored_match(MatchStatus.BOARDED), shopper_request.shopper_id, "NYC")

    async def test_generate_pin_requires_store_location(self, delivery, stored_match, trip):
        with pytest.raises(MatchValidationError):
            await delivery.generate_pin(stored_match(MatchStatus.BOARDED), trip.traveler_id, "   ")

    async def test_regenerate_replaces_outstanding_pin(self, delivery, stored_match, trip, match_repo):
        match = stored_match(MatchStatus.BOARDED)
        await delivery.generate_pin(match, trip.traveler_id, "NYC")
        first = match_repo.stored(match.match_id)

        await delivery.generate_pin(first, trip.traveler_id, "Newark")

        record = match_repo.stored(match.match_id).verification_pin
        assert record.salt != first.verification_pin.salt
        assert record.store_location == "Newark"


class TestResendPin:

    async def test_resend_without_pin_fails(self, delivery, stored_match, trip):
        with pytest.raises(NoPinIssuedError):
            await delivery.resend_pin(stored_match(MatchStatus.BOARDED), trip.traveler_id)

    async def test_resend_resets_attempts_and_keeps_location(self, delivery, stored_match, trip, shopper_request, match_repo, clock):
        match = stored_match(MatchStatus.BOARDED)
        issued = await delivery.generate_pin(match, trip.traveler_id, "NYC")
        with pytest.raises(PinMismatchError):
            await delivery.verify_pin(match_repo.stored(match.match_id), shopper_request.shopper_id, _wrong(issued.pin))
        clock.advance(minutes=5)

        reissued = await delivery.resend_pin(match_repo.stored(match.match_id), trip.traveler_id)

        record = match_repo.stored(match.match_id).verification_pin
        assert record.attempt_count == 0
        assert record.store_location == "NYC"
        assert reissued.store_location == "NYC"
        assert reissued.expires_at == clock() + timedelta(minutes=15)


# =============================================================================
# Verify
# =============================================================================

class TestVerifyPin:

    async def _issue(self, delivery, stored_match, trip, match_repo, status=MatchStatus.BOARDED):
        match = stored_match(status)
        issued = await delivery.generate_pin(match, trip.traveler_id, "NYC")
        return match_repo.stored(match.match_id), issued.pin

    async def test_correct_pin_completes_match(self, delivery, stored_match, trip, shopper_request, match_repo, clock):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo)
        clock.advance(minutes=3)

        result = await delivery.verify_pin(match, shopper_request.shopper_id, pin)

        assert result.status == MatchStatus.COMPLETED
        assert result.completed_at == clock()
        assert result.verification_pin is None

    async def test_verify_from_delivered_to_vendor(self, delivery, stored_match, trip, shopper_request, match_repo):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo, MatchStatus.DELIVERED_TO_VENDOR)

        result = await delivery.verify_pin(match, shopper_request.shopper_id, pin)

        assert result.status == MatchStatus.COMPLETED

    async def test_wrong_pin_consumes_an_attempt(self, delivery, stored_match, trip, shopper_request, match_repo):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo)

        with pytest.raises(PinMismatchError) as exc_info:
            await delivery.verify_pin(match, shopper_request.shopper_id, _wrong(pin))

        assert exc_info.value.attempts_remaining == 4
        stored = match_repo.stored(match.match_id)
        assert stored.verification_pin.attempt_count == 1
        assert stored.status == MatchStatus.BOARDED

    async def test_lockout_on_sixth_attempt(self, delivery, stored_match, trip, shopper_request, match_repo):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo)

        remaining = []
        for _ in range(5):
            with pytest.raises(PinMismatchError) as exc_info:
                await delivery.verify_pin(match_repo.stored(match.match_id), shopper_request.shopper_id, _wrong(pin))
            remaining.append(exc_info.value.attempts_remaining)

        assert remaining == [4, 3, 2, 1, 0]

        # Even the correct PIN is refused once locked
        with pytest.raises(PinAttemptsExceededError):
            await delivery.verify_pin(match_repo.stored(match.match_id), shopper_request.shopper_id, pin)

        stored = match_repo.stored(match.match_id)
        assert stored.verification_pin.attempt_count == 5
        assert stored.status == MatchStatus.BOARDED

    async def test_resend_after_lockout_allows_completion(self, delivery, stored_match, trip, shopper_request, match_repo):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo)
        for _ in range(5):
            with pytest.raises(PinMismatchError):
                await delivery.verify_pin(match_repo.stored(match.match_id), shopper_request.shopper_id, _wrong(pin))

        reissued = await delivery.resend_pin(match_repo.stored(match.match_id), trip.traveler_id)
        result = await delivery.verify_pin(match_repo.stored(match.match_id), shopper_request.shopper_id, reissued.pin)

        assert result.status == MatchStatus.COMPLETED

    async def test_pin_valid_at_exact_expiry(self, delivery, stored_match, trip, shopper_request, match_repo, clock):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo)
        clock.advance(minutes=15)

        result = await delivery.verify_pin(match, shopper_request.shopper_id, pin)

        assert result.status == MatchStatus.COMPLETED

    async def test_pin_expired_after_ttl(self, delivery, stored_match, trip, shopper_request, match_repo, clock):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo)
        clock.advance(minutes=15, seconds=1)

        with pytest.raises(PinExpiredError):
            await delivery.verify_pin(match, shopper_request.shopper_id, pin)

        assert match_repo.stored(match.match_id).verification_pin.attempt_count == 0

    @pytest.mark.parametrize("pin", ["1234", "123456", "12a45", "", "１２３４５"])
    async def test_malformed_pin_does_not_consume_attempt(self, delivery, stored_match, trip, shopper_request, match_repo, pin):
        match, _ = await self._issue(delivery, stored_match, trip, match_repo)

        with pytest.raises(MatchValidationError):
            await delivery.verify_pin(match, shopper_request.shopper_id, pin)

        assert match_repo.stored(match.match_id).verification_pin.attempt_count == 0

    async def test_verify_without_pin_fails(self, delivery, stored_match, shopper_request):
        with pytest.raises(NoPinIssuedError):
            await delivery.verify_pin(stored_match(MatchStatus.BOARDED), shopper_request.shopper_id, "12345")

    async def test_verify_by_traveler_is_not_authorized(self, delivery, stored_match, trip, match_repo):
        match, pin = await self._issue(delivery, stored_match, trip, match_repo)

        with pytest.raises(NotAuthorizedError):
            await delivery.verify_pin(match, trip.traveler_id, pin)

    @pytest.mark.parametrize("status", [
        s for s in MatchStatus if s not in (MatchStatus.BOARDED, MatchStatus.DELIVERED_TO_VENDOR)
    ])
    async def test_verify_outside_delivery_states_is_invalid(self, delivery, stored_match, shopper_request, status):
        with pytest.raises(InvalidStateError):
            await delivery.verify_pin(stored_match(status), shopper_request.shopper_id, "12345")


# =============================================================================
# Vendor drop-off and status
# =============================================================================

class TestMarkAsDelivered:

    async def test_boarded_to_delivered_to_vendor(self, delivery, stored_match, trip, clock):
        result = await delivery.mark_as_delivered(stored_match(MatchStatus.BOARDED), trip.traveler_id)

        assert result.status == MatchStatus.DELIVERED_TO_VENDOR
        assert result.delivered_to_vendor_at == clock()

    @pytest.mark.parametrize("status", [s for s in MatchStatus if s != MatchStatus.BOARDED])
    async def test_only_from_boarded(self, delivery, stored_match, trip, status):
        with pytest.raises(InvalidStateError):
            await delivery.mark_as_delivered(stored_match(status), trip.traveler_id)


class TestDeliveryStatus:

    async def test_projection_reports_outstanding_pin(self, delivery, stored_match, trip, shopper_request, match_repo, clock):
        match = stored_match(MatchStatus.BOARDED)
        issued = await delivery.generate_pin(match, trip.traveler_id, "NYC")
        with pytest.raises(PinMismatchError):
            await delivery.verify_pin(match_repo.stored(match.match_id), shopper_request.shopper_id, _wrong(issued.pin))

        status = delivery.delivery_status(match_repo.stored(match.match_id), shopper_request.shopper_id, UserRole.SHOPPER)

        assert status.pin_outstanding is True
        assert status.pin_expired is False
        assert status.pin_attempts_remaining == 4
        assert status.store_location == "NYC"
        assert status.pin_expires_at == issued.expires_at

    async def test_projection_marks_expired_pin(self, delivery, stored_match, trip, match_repo, clock):
        match = stored_match(MatchStatus.BOARDED)
        await delivery.generate_pin(match, trip.traveler_id, "NYC")
        clock.advance(minutes=16)

        status = delivery.delivery_status(match_repo.stored(match.match_id), trip.traveler_id, UserRole.TRAVELER)

        assert status.pin_expired is True

    async def test_projection_flags_overdue_purchase(self, delivery, stored_match, shopper_request, clock):
        deadline = clock() - timedelta(minutes=1)
        match = stored_match(MatchStatus.APPROVED, purchase_deadline_at=deadline)

        status = delivery.delivery_status(match, shopper_request.shopper_id, UserRole.SHOPPER)

        assert status.purchase_deadline_at == deadline
        assert status.purchase_overdue is True

    async def test_admin_may_view(self, delivery, stored_match):
        status = delivery.delivery_status(stored_match(MatchStatus.BOARDED), "admin_ops", UserRole.ADMIN)

        assert status.pin_outstanding is False
        assert status.pin_attempts_remaining is None

    async def test_stranger_may_not_view(self, delivery, stored_match):
        with pytest.raises(NotAuthorizedError):
            delivery.delivery_status(stored_match(MatchStatus.BOARDED), "someone_else", UserRole.SHOPPER)
