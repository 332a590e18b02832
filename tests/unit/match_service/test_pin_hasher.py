"""
Unit Tests for PIN generation and hashing
"""
from datetime import datetime, timedelta, timezone

import pytest

from microservices.match_service.delivery import PinHasher
from microservices.match_service.models import PinRecord

pytestmark = pytest.mark.unit


@pytest.fixture
def hasher():
    return PinHasher(length=5, iterations=1_000)


def _record(hasher, pin, salt):
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)
    return PinRecord(pin_hash=hasher.hash(pin, salt), salt=salt, issued_at=now, expires_at=now + timedelta(minutes=15))


class TestGenerate:

    def test_generated_pins_are_five_ascii_digits(self, hasher):
        for _ in range(200):
            pin = hasher.generate()
            assert len(pin) == 5
            assert hasher.is_well_formed(pin)

    def test_generated_pins_vary(self, hasher):
        assert len({hasher.generate() for _ in range(50)}) > 1

    def test_custom_length(self):
        assert len(PinHasher(length=6, iterations=1_000).generate()) == 6

    def test_salt_is_random_hex(self):
        first, second = PinHasher.new_salt(), PinHasher.new_salt()
        assert first != second
        assert len(bytes.fromhex(first)) == 16


class TestHash:

    def test_hash_is_deterministic_per_salt(self, hasher):
        salt = PinHasher.new_salt()
        assert hasher.hash("01234", salt) == hasher.hash("01234", salt)

    def test_salt_changes_hash(self, hasher):
        assert hasher.hash("01234", PinHasher.new_salt()) != hasher.hash("01234", PinHasher.new_salt())

    def test_hash_does_not_contain_pin(self, hasher):
        assert "01234" not in hasher.hash("01234", PinHasher.new_salt())

    def test_matches_correct_pin(self, hasher):
        record = _record(hasher, "04821", PinHasher.new_salt())
        assert hasher.matches("04821", record)

    def test_rejects_wrong_pin(self, hasher):
        record = _record(hasher, "04821", PinHasher.new_salt())
        assert not hasher.matches("04822", record)
        assert not hasher.matches("4821", record)

    def test_hash_is_hex_sha256_length(self, hasher):
        assert len(bytes.fromhex(hasher.hash("04821", PinHasher.new_salt()))) == 32

    def test_iteration_count_is_part_of_the_hash(self, hasher):
        record = _record(hasher, "04821", PinHasher.new_salt())
        assert not PinHasher(length=5, iterations=2_000).matches("04821", record)

    def test_rejects_pin_under_other_salt(self, hasher):
        record = _record(hasher, "04821", PinHasher.new_salt())
        resalted = record.model_copy(update={"salt": PinHasher.new_salt()})
        assert not hasher.matches("04821", resalted)


class TestWellFormed:

    @pytest.mark.parametrize("pin", ["00000", "12345", "99999"])
    def test_valid(self, hasher, pin):
        assert hasher.is_well_formed(pin)

    @pytest.mark.parametrize("pin", ["", "1234", "123456", "12a45", " 1234", "１２３４５", "١٢٣٤٥"])
    def test_invalid(self, hasher, pin):
        assert not hasher.is_well_formed(pin)
