"""
Match Service Routes Registry

Defines service metadata and routes served by the match service.
"""

SERVICE_METADATA = {
    "service_name": "match_service",
    "version": "1.0.0",
    "tags": ["v1", "match", "delivery", "microservice"],
    "capabilities": [
        "match_lifecycle",
        "item_reservation",
        "cooldown_cancellation",
        "delivery_pin_verification",
        "audit_log",
    ],
}

# Route definitions for API documentation
ROUTES = [
    # Health endpoints
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": "/health/ready", "methods": ["GET"], "description": "Readiness probe"},
    {"path": "/health/live", "methods": ["GET"], "description": "Liveness probe"},
    {"path": "/api/v1/matches/info", "methods": ["GET"], "description": "Service information"},

    # Matches
    {"path": "/api/v1/matches", "methods": ["POST"], "description": "Create pending match"},
    {"path": "/api/v1/matches/pending", "methods": ["GET"], "description": "Pending matches for traveler"},
    {"path": "/api/v1/matches/{match_id}", "methods": ["GET"], "description": "Get match"},
    {"path": "/api/v1/shopper-requests/{request_id}/matches", "methods": ["GET"], "description": "Matches for a shopper request"},
    {"path": "/api/v1/trips/{trip_id}/matches", "methods": ["GET"], "description": "Matches for a trip"},

    # Lifecycle actions
    {"path": "/api/v1/matches/{match_id}/claim", "methods": ["POST"], "description": "Traveler claims items"},
    {"path": "/api/v1/matches/{match_id}/accept", "methods": ["POST"], "description": "Traveler accepts proposed items"},
    {"path": "/api/v1/matches/{match_id}/reject", "methods": ["POST"], "description": "Traveler rejects match"},
    {"path": "/api/v1/matches/{match_id}/approve", "methods": ["POST"], "description": "Shopper approves claim"},
    {"path": "/api/v1/matches/{match_id}/cancel", "methods": ["POST"], "description": "Cancel within cooldown"},
    {"path": "/api/v1/matches/{match_id}/pay", "methods": ["POST"], "description": "Record payment"},
    {"path": "/api/v1/matches/{match_id}/purchase", "methods": ["POST"], "description": "Record purchase receipt"},
    {"path": "/api/v1/matches/{match_id}/board", "methods": ["POST"], "description": "Traveler boarded"},
    {"path": "/api/v1/matches/{match_id}/dispute", "methods": ["POST"], "description": "Open dispute"},

    # Delivery
    {"path": "/api/v1/delivery/{match_id}/deliver-to-vendor", "methods": ["POST"], "description": "Vendor drop-off"},
    {"path": "/api/v1/delivery/{match_id}/generate-pin", "methods": ["POST"], "description": "Issue delivery PIN"},
    {"path": "/api/v1/delivery/{match_id}/resend-pin", "methods": ["POST"], "description": "Reissue delivery PIN"},
    {"path": "/api/v1/delivery/{match_id}/verify-pin", "methods": ["POST"], "description": "Verify delivery PIN"},
    {"path": "/api/v1/delivery/{match_id}/status", "methods": ["GET"], "description": "Delivery status"},

    # Audit
    {"path": "/api/v1/audit/events", "methods": ["GET"], "description": "Recent audit events"},
]


def get_route_summary():
    """Route metadata for the service info endpoint"""
    route_paths = [r["path"] for r in ROUTES]
    return {
        "route_count": len(ROUTES),
        "routes": route_paths,
        "api_version": "v1",
        "base_path": "/api/v1",
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "get_route_summary"]
