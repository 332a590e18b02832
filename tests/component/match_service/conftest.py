"""
Match Service Component Fixtures

`stored_match` builds a match already sitting in a given status, with the
timestamps and item assignment that status implies, and stores it.
"""
from datetime import timedelta

import pytest

from microservices.match_service.models import MatchStatus

COOLDOWN = timedelta(hours=24)

# Statuses reached after items were bound by claim/accept
_BOUND = {
    MatchStatus.CLAIMED,
    MatchStatus.APPROVED,
    MatchStatus.PURCHASED,
    MatchStatus.BOARDED,
    MatchStatus.DELIVERED_TO_VENDOR,
    MatchStatus.COMPLETED,
    MatchStatus.DISPUTED,
}


@pytest.fixture
def stored_match(factory, shopper_request, trip, match_repo, clock):
    """Build and store a match in `status` as of the clock's current time"""

    def _build(status: MatchStatus = MatchStatus.PENDING, items=None, **overrides):
        now = clock()
        items = list(items) if items is not None else list(shopper_request.item_ids)
        values = {"created_at": now - timedelta(days=2)}

        if status in _BOUND:
            values["assigned_items"] = items
            values["claimed_at"] = now - timedelta(days=2)
        if status in _BOUND - {MatchStatus.CLAIMED}:
            approved_at = now - timedelta(days=1, hours=2)
            values["approved_at"] = approved_at
            values["cooldown_expires_at"] = approved_at + COOLDOWN
        if status in {MatchStatus.PURCHASED, MatchStatus.BOARDED, MatchStatus.DELIVERED_TO_VENDOR,
                      MatchStatus.COMPLETED, MatchStatus.DISPUTED}:
            values["purchased_at"] = now - timedelta(hours=1)
            values["receipt_url"] = factory.make_receipt_url()
        if status in {MatchStatus.BOARDED, MatchStatus.DELIVERED_TO_VENDOR, MatchStatus.COMPLETED}:
            values["boarded_at"] = now - timedelta(minutes=30)
        if status == MatchStatus.DELIVERED_TO_VENDOR:
            values["delivered_to_vendor_at"] = now - timedelta(minutes=10)
        if status == MatchStatus.COMPLETED:
            values["completed_at"] = now - timedelta(minutes=1)
        if status == MatchStatus.CANCELLED:
            values["cancelled_at"] = now - timedelta(hours=1)
            values["released_items"] = items
        if status == MatchStatus.REJECTED:
            values["rejected_at"] = now - timedelta(hours=1)
        if status == MatchStatus.DISPUTED:
            values["disputed_at"] = now - timedelta(minutes=5)
            values["dispute_reason"] = "Item arrived damaged"

        values.update(overrides)
        match = factory.make_match(shopper_request, trip, status=status, **values)
        return match_repo.set_match(match)

    return _build
