#!/usr/bin/env python3
"""Match policy configuration

Business-rule knobs for the match lifecycle and delivery handoff.
"""
import os
from dataclasses import dataclass
from datetime import timedelta

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class MatchPolicyConfig:
    """Cooldown, PIN and audit retention settings"""

    # Cancellation window after shopper approval
    cooldown_hours: int = 24

    # Time the traveler has to purchase once the cooldown ends
    purchase_window_hours: int = 24

    # Delivery PIN
    pin_length: int = 5
    pin_ttl_minutes: int = 15
    pin_max_attempts: int = 5
    pin_hash_iterations: int = 100_000

    # In-memory audit sink
    audit_max_events: int = 1000
    audit_retention_hours: int = 168

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)

    @property
    def purchase_window(self) -> timedelta:
        return timedelta(hours=self.purchase_window_hours)

    @property
    def pin_ttl(self) -> timedelta:
        return timedelta(minutes=self.pin_ttl_minutes)

    @property
    def audit_retention(self) -> timedelta:
        return timedelta(hours=self.audit_retention_hours)

    @classmethod
    def from_env(cls) -> 'MatchPolicyConfig':
        return cls(
            cooldown_hours=_int(os.getenv("MATCH_COOLDOWN_HOURS", "24"), 24),
            purchase_window_hours=_int(os.getenv("MATCH_PURCHASE_WINDOW_HOURS", "24"), 24),
            pin_length=_int(os.getenv("DELIVERY_PIN_LENGTH", "5"), 5),
            pin_ttl_minutes=_int(os.getenv("DELIVERY_PIN_TTL_MINUTES", "15"), 15),
            pin_max_attempts=_int(os.getenv("DELIVERY_PIN_MAX_ATTEMPTS", "5"), 5),
            pin_hash_iterations=_int(os.getenv("DELIVERY_PIN_HASH_ITERATIONS", "100000"), 100_000),
            audit_max_events=_int(os.getenv("AUDIT_MAX_EVENTS", "1000"), 1000),
            audit_retention_hours=_int(os.getenv("AUDIT_RETENTION_HOURS", "168"), 168),
        )
