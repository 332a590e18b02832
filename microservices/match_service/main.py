"""
Match Microservice API

Match lifecycle, item reservation and delivery PIN verification for the
BagXtra peer-to-peer shopping marketplace.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.auth_dependencies import Identity, require_identity, require_roles
from core.config import get_settings
from core.jwt_manager import UserRole
from core.nats_client import get_event_bus

from .actions import (
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
from .audit import InMemoryAuditSink
from .factory import create_audit_log, create_match_service
from .match_service import MatchService
from .models import (
    AuditEventKind,
    ErrorEnvelope,
    HealthResponse,
    Match,
    MatchCreateRequest,
    PinIssued,
    ReadinessResponse,
    SuccessEnvelope,
)
from .protocols import MatchServiceError
from .routes_registry import SERVICE_METADATA, get_route_summary

settings = get_settings()
settings.logging.apply()
logger = logging.getLogger(__name__)

# Global variables
match_service: Optional[MatchService] = None
audit_log: Optional[InMemoryAuditSink] = None
event_bus = None
SERVICE_PORT = settings.port
SERVICE_VERSION = SERVICE_METADATA["version"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global match_service, audit_log, event_bus

    try:
        # Initialize NATS JetStream event bus
        if settings.infrastructure.nats_enabled:
            try:
                event_bus = await get_event_bus("match_service")
                logger.info("Event bus initialized successfully")
            except Exception as e:
                logger.warning(f"Failed to initialize event bus: {e}. Continuing without events.")
                event_bus = None

        audit_log = create_audit_log(settings)
        match_service = create_match_service(settings=settings, event_bus=event_bus, audit_log=audit_log)

        # Initialize repository connection
        await match_service.match_repository.initialize()
        if settings.infrastructure.postgres_auto_migrate:
            await match_service.match_repository.apply_migrations()

        logger.info(f"Match service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize match service: {e}", exc_info=True)
        raise
    finally:
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Match event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if match_service:
            await match_service.match_repository.close()
            logger.info("Match service database connections closed")


# Create FastAPI app
app = FastAPI(
    title="Match Service",
    description="Match lifecycle, item reservation and delivery verification",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


async def get_match_service() -> MatchService:
    """Get match service instance"""
    if match_service is None:
        raise HTTPException(status_code=503, detail="Match service not initialized")
    return match_service


async def get_audit_log() -> InMemoryAuditSink:
    """Get in-memory audit log"""
    if audit_log is None:
        raise HTTPException(status_code=503, detail="Audit log not initialized")
    return audit_log


# ====================
# Exception Handlers
# ====================


def _error(status_code: int, kind: str, message: str) -> JSONResponse:
    body = ErrorEnvelope(error=kind, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


_HTTP_KINDS = {
    400: "ValidationError",
    401: "NotAuthenticated",
    403: "NotAuthorized",
    404: "NotFound",
    503: "ServiceUnavailable",
}


@app.exception_handler(MatchServiceError)
async def match_service_error_handler(request: Request, exc: MatchServiceError):
    if exc.http_status >= 500:
        logger.error(f"{exc.kind} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return _error(exc.http_status, exc.kind, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    kind = _HTTP_KINDS.get(exc.status_code, "InternalError" if exc.status_code >= 500 else "ValidationError")
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    if exc.status_code == 401 and match_service is not None:
        await match_service.record_authentication_failure(message, request.url.path)

    return _error(exc.status_code, kind, message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return _error(400, "ValidationError", "; ".join(problems) or "Invalid request")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all: never leak internals to the caller"""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {exc}", exc_info=True)
    return _error(500, "InternalError", "Internal server error occurred")


# ====================
# Helpers
# ====================


def _ok(data: Any) -> dict:
    return SuccessEnvelope(data=data).model_dump(mode="json")


def _render(result: Any, now: Optional[datetime] = None) -> Any:
    if isinstance(result, Match):
        return result.public_dict(now)
    if isinstance(result, list):
        return [_render(item, now) for item in result]
    return result.model_dump(mode="json")


async def _run_action(service: MatchService, identity: Identity, match_id: str, action: MatchAction) -> dict:
    result = await service.execute(identity, match_id, action)
    if isinstance(result, PinIssued):
        # Plaintext PIN goes to the traveler once; never logged
        logger.info(f"Delivery PIN issued for match {match_id}")
    return _ok(_render(result, service.clock()))


# ====================
# Health Check and Service Info
# ====================


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check"""
    return HealthResponse(
        status="healthy",
        service=SERVICE_METADATA["service_name"],
        version=SERVICE_VERSION,
        timestamp=datetime.now(timezone.utc),
    )


@app.get("/health/live")
async def liveness():
    return {"status": "alive"}


@app.get("/health/ready")
async def readiness():
    """Ready once the database answers; the event bus is reported but optional"""
    database = False
    if match_service is not None:
        try:
            database = await match_service.match_repository.health_check()
        except Exception as e:
            logger.warning(f"Readiness database check failed: {e}")

    bus_connected = bool(event_bus is not None and getattr(event_bus, "is_connected", False))
    body = ReadinessResponse(ready=database, database=database, event_bus=bus_connected)
    return JSONResponse(status_code=200 if database else 503, content=body.model_dump())


@app.get("/api/v1/matches/info")
async def get_service_info():
    """Get service information"""
    return _ok({
        "service": SERVICE_METADATA["service_name"],
        "version": SERVICE_VERSION,
        "capabilities": SERVICE_METADATA["capabilities"],
        **get_route_summary(),
    })


# ====================
# Matches
# ====================


@app.post("/api/v1/matches")
async def create_match(
    request: MatchCreateRequest,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Create a pending match (administrators only)"""
    match = await service.create_match(identity, request)
    return _ok(match.public_dict(service.clock()))


@app.get("/api/v1/matches/pending")
async def list_pending_matches(
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Pending matches offered to the calling traveler"""
    return _ok(_render(await service.list_pending_matches(identity), service.clock()))


@app.get("/api/v1/matches/{match_id}")
async def get_match(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return _ok(_render(await service.get_match(identity, match_id), service.clock()))


@app.get("/api/v1/shopper-requests/{request_id}/matches")
async def list_matches_for_request(
    request_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return _ok(_render(await service.list_matches_for_request(identity, request_id), service.clock()))


@app.get("/api/v1/trips/{trip_id}/matches")
async def list_matches_for_trip(
    trip_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return _ok(_render(await service.list_matches_for_trip(identity, trip_id), service.clock()))


# ====================
# Lifecycle Actions
# ====================


@app.post("/api/v1/matches/{match_id}/claim")
async def claim_match(
    match_id: str,
    body: ClaimAction,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Traveler claims a subset of the request's items"""
    return await _run_action(service, identity, match_id, body)


@app.post("/api/v1/matches/{match_id}/accept")
async def accept_match(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Traveler accepts the proposed candidate items"""
    return await _run_action(service, identity, match_id, AcceptAction())


@app.post("/api/v1/matches/{match_id}/reject")
async def reject_match(
    match_id: str,
    body: Optional[RejectAction] = None,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return await _run_action(service, identity, match_id, body or RejectAction())


@app.post("/api/v1/matches/{match_id}/approve")
async def approve_match(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Shopper approves the claim; starts the cooldown window"""
    return await _run_action(service, identity, match_id, ApproveAction())


@app.post("/api/v1/matches/{match_id}/cancel")
async def cancel_match(
    match_id: str,
    body: Optional[CancelAction] = None,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return await _run_action(service, identity, match_id, body or CancelAction())


@app.post("/api/v1/matches/{match_id}/pay")
async def pay_match(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Record payment; repeating it is a no-op"""
    return await _run_action(service, identity, match_id, PayAction())


@app.post("/api/v1/matches/{match_id}/purchase")
async def purchase_match(
    match_id: str,
    body: PurchaseAction,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return await _run_action(service, identity, match_id, body)


@app.post("/api/v1/matches/{match_id}/board")
async def board_match(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return await _run_action(service, identity, match_id, BoardAction())


@app.post("/api/v1/matches/{match_id}/dispute")
async def dispute_match(
    match_id: str,
    body: DisputeAction,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return await _run_action(service, identity, match_id, body)


# ====================
# Delivery
# ====================


@app.post("/api/v1/delivery/{match_id}/deliver-to-vendor")
async def deliver_to_vendor(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return await _run_action(service, identity, match_id, DeliverToVendorAction())


@app.post("/api/v1/delivery/{match_id}/generate-pin")
async def generate_pin(
    match_id: str,
    body: GeneratePinAction,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Issue a delivery PIN; the plaintext is only in this response"""
    return await _run_action(service, identity, match_id, body)


@app.post("/api/v1/delivery/{match_id}/resend-pin")
async def resend_pin(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return await _run_action(service, identity, match_id, ResendPinAction())


@app.post("/api/v1/delivery/{match_id}/verify-pin")
async def verify_pin(
    match_id: str,
    body: VerifyPinAction,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    """Shopper confirms handoff with the PIN; completes the match"""
    return await _run_action(service, identity, match_id, body)


@app.get("/api/v1/delivery/{match_id}/status")
async def delivery_status(
    match_id: str,
    identity: Identity = Depends(require_identity),
    service: MatchService = Depends(get_match_service),
):
    return _ok(_render(await service.get_delivery_status(identity, match_id)))


# ====================
# Audit
# ====================


@app.get("/api/v1/audit/events")
async def list_audit_events(
    limit: int = Query(default=100, ge=1, le=1000),
    match_id: Optional[str] = Query(default=None),
    kind: Optional[AuditEventKind] = Query(default=None),
    identity: Identity = Depends(require_roles(UserRole.ADMIN)),
    log: InMemoryAuditSink = Depends(get_audit_log),
):
    """Recent audit events, newest first"""
    events: List[dict] = [e.model_dump(mode="json") for e in log.recent(limit=limit, match_id=match_id, kind=kind)]
    return _ok(events)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.match_service.main:app",
        host=settings.host,
        port=SERVICE_PORT,
        reload=settings.debug,
        log_level=settings.logging.log_level.lower(),
    )
