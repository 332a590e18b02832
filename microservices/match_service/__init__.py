"""
Match Service

Peer-to-peer logistics match microservice providing:
- Match lifecycle (claim, approve, cooldown-aware cancel, accept/reject, purchase, board, pay, dispute)
- Delivery handoff verification with hashed, expiring, attempt-limited PINs
- Booking orchestration keeping bag items assigned to at most one active match

Port: 8260
"""

__version__ = "1.0.0"
__service__ = "match_service"
