"""
Membership Ledger Microservice API

Membership assignment, class-credit usage accounting, manual override,
summaries, reminders and the maintenance sweep.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .factory import create_membership_ledger_service
from .membership_ledger_service import MembershipLedgerService
from .models import (
    AdjustmentHistoryResponse,
    AdjustUsageRequest,
    AdjustUsageResponse,
    AssignMembershipRequest,
    AssignMembershipResponse,
    AuditTrailResponse,
    HealthResponse,
    MaintenanceReport,
    MembershipResponse,
    MembershipSummaryResponse,
    MembershipTypeListResponse,
    PlayerAdjustmentHistoryResponse,
    RunMaintenanceRequest,
    SendReminderRequest,
    SendReminderResponse,
    ServiceInfo,
    SetStatusRequest,
    ToggleOverrideRequest,
)
from .protocols import (
    ConcurrencyConflict,
    DuplicateAdjustmentError,
    InvalidAdjustmentError,
    InvalidStatusTransitionError,
    MembershipLedgerError,
    MembershipNotFoundError,
    MembershipTypeNotFoundError,
    PermissionDeniedError,
    StoreUnavailable,
    ValidationError,
)
from .routes_registry import BASE_PATH, SERVICE_METADATA, get_route_summary

config = get_settings()

# Configure logger
logger = setup_service_logger("membership_ledger_service", level=config.log_level)

# Global variables
ledger_service: Optional[MembershipLedgerService] = None
event_bus = None
SERVICE_PORT = config.service_port or 8260


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global ledger_service, event_bus

    try:
        # Initialize NATS JetStream event bus
        if config.infrastructure.nats_enabled:
            try:
                event_bus = await get_event_bus("membership_ledger_service", config=config.infrastructure)
                logger.info("Event bus initialized successfully")
            except Exception as e:
                logger.warning(
                    f"Failed to initialize event bus: {e}. Continuing without event subscriptions."
                )
                event_bus = None

        # Create ledger service using factory
        ledger_service = create_membership_ledger_service(config=config, event_bus=event_bus)
        await ledger_service.repository.initialize()

        # Subscribe to events if event bus is available
        if event_bus:
            try:
                from .events import get_event_handlers

                handler_map = get_event_handlers(ledger_service, event_bus)
                for pattern, handler_func in handler_map.items():
                    await event_bus.subscribe_to_events(
                        pattern=pattern,
                        handler=handler_func,
                        durable=f"membership-ledger-{pattern.replace('.', '-').replace('*', 'all')}-consumer",
                    )
                logger.info(f"Membership ledger event subscriber started ({len(handler_map)} event patterns)")
            except Exception as e:
                logger.warning(f"Failed to subscribe to events: {e}")

        logger.info(f"Membership ledger service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize membership ledger service: {e}")
        raise
    finally:
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Membership ledger event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if ledger_service:
            if ledger_service.notification_dispatcher:
                await ledger_service.notification_dispatcher.close()
            await ledger_service.repository.close()
            logger.info("Membership ledger database connections closed")


# Create FastAPI app
app = FastAPI(
    title="Membership Ledger Service",
    description="Membership and class-credit accounting for club players",
    version=SERVICE_METADATA["version"],
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


@dataclass
class Actor:
    """Caller identity resolved from request headers"""
    actor_id: str
    role: Optional[str]


async def get_ledger_service() -> MembershipLedgerService:
    """Get membership ledger service instance"""
    if not ledger_service:
        raise HTTPException(status_code=503, detail="Membership ledger service not initialized")
    return ledger_service


async def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """Resolve the acting user and role; the role is checked by the service"""
    return Actor(actor_id=x_actor_id or "anonymous", role=(x_actor_role or "").strip().lower() or None)


def _http_error(e: Exception, operation: str) -> HTTPException:
    """Map ledger errors onto HTTP status codes"""
    if isinstance(e, (ValidationError, InvalidAdjustmentError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, (MembershipNotFoundError, MembershipTypeNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ConcurrencyConflict, DuplicateAdjustmentError, InvalidStatusTransitionError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StoreUnavailable):
        return HTTPException(status_code=503, detail="Membership store temporarily unavailable")
    if isinstance(e, MembershipLedgerError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Error during {operation}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


# ====================
# Health Check and Service Info
# ====================


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check"""
    dependencies = {}

    if ledger_service:
        db = getattr(ledger_service.repository, "db", None)
        health = await db.health_check() if db else None
        dependencies["database"] = "healthy" if health and health.get("healthy") else "unhealthy"
    else:
        dependencies["database"] = "unhealthy"
    dependencies["event_bus"] = "healthy" if event_bus and event_bus.is_connected else "disabled"

    return HealthResponse(
        status="healthy" if dependencies["database"] == "healthy" else "degraded",
        service=SERVICE_METADATA["service_name"],
        port=SERVICE_PORT,
        version=SERVICE_METADATA["version"],
        dependencies=dependencies,
        timestamp=datetime.now(timezone.utc),
    )


@app.get(f"{BASE_PATH}/info", response_model=ServiceInfo)
async def get_service_info():
    """Get service information"""
    return ServiceInfo(
        service=SERVICE_METADATA["service_name"],
        version=SERVICE_METADATA["version"],
        description="Membership and class-credit accounting for club players",
        capabilities=SERVICE_METADATA["capabilities"],
    )


@app.get(f"{BASE_PATH}/routes")
async def get_routes():
    """List the routes served by this service"""
    return get_route_summary()


# ====================
# Catalog & Summaries
# ====================


@app.get(f"{BASE_PATH}/types", response_model=MembershipTypeListResponse)
async def list_membership_types(
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """List active membership types (empty when the store is unavailable)"""
    types = await service.list_active_types()
    return MembershipTypeListResponse(
        success=True,
        message=f"{len(types)} active membership types",
        types=types,
    )


@app.get(f"{BASE_PATH}/players/{{player_id}}/summary", response_model=MembershipSummaryResponse)
async def get_membership_summary(
    player_id: str,
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Get the player's current membership summary"""
    try:
        summary = await service.get_membership_summary(player_id)
        return MembershipSummaryResponse(success=True, message="Membership summary", summary=summary)
    except Exception as e:
        raise _http_error(e, "get_membership_summary")


@app.get(f"{BASE_PATH}/players/{{player_id}}/adjustments", response_model=PlayerAdjustmentHistoryResponse)
async def get_player_adjustment_history(
    player_id: str,
    limit: int = Query(50, description="Maximum records to return"),
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Recent adjustments across the player's memberships, newest first"""
    try:
        records = await service.get_player_adjustment_history(player_id, limit, actor_role=actor.role)
        return PlayerAdjustmentHistoryResponse(
            success=True,
            message="Player adjustment history",
            player_id=player_id,
            adjustments=records,
            total=len(records),
        )
    except Exception as e:
        raise _http_error(e, "get_player_adjustment_history")


# ====================
# Memberships
# ====================


@app.post(f"{BASE_PATH}/memberships", response_model=AssignMembershipResponse, status_code=201)
async def assign_membership(
    request: AssignMembershipRequest,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Assign a membership, superseding the player's active one"""
    try:
        return await service.assign(
            player_id=request.player_id,
            membership_type_id=request.membership_type_id,
            start_date=request.start_date,
            end_date=request.end_date,
            override_class_count=request.override_class_count,
            auto_deactivate_when_used_up=request.auto_deactivate_when_used_up,
            notes=request.notes,
            actor_id=actor.actor_id,
            actor_role=actor.role,
        )
    except Exception as e:
        raise _http_error(e, "assign_membership")


@app.get(f"{BASE_PATH}/memberships/{{membership_id}}", response_model=MembershipResponse)
async def get_membership(
    membership_id: str,
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Get membership by ID"""
    try:
        membership = await service.get_membership(membership_id)
        return MembershipResponse(success=True, message="Membership found", membership=membership)
    except Exception as e:
        raise _http_error(e, "get_membership")


@app.post(f"{BASE_PATH}/memberships/{{membership_id}}/adjustments", response_model=AdjustUsageResponse)
async def adjust_usage(
    membership_id: str,
    request: AdjustUsageRequest,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Apply a signed, reasoned usage adjustment"""
    try:
        return await service.adjust_usage(
            membership_id,
            request.delta,
            request.reason,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            source_ref=request.source_ref,
        )
    except Exception as e:
        raise _http_error(e, "adjust_usage")


@app.get(f"{BASE_PATH}/memberships/{{membership_id}}/adjustments", response_model=AdjustmentHistoryResponse)
async def get_adjustment_history(
    membership_id: str,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Adjustment history, newest first"""
    try:
        records = await service.get_adjustment_history(membership_id, actor_role=actor.role)
        return AdjustmentHistoryResponse(
            success=True,
            message="Adjustment history",
            membership_id=membership_id,
            adjustments=records,
            total=len(records),
        )
    except Exception as e:
        raise _http_error(e, "get_adjustment_history")


@app.get(f"{BASE_PATH}/memberships/{{membership_id}}/audit", response_model=AuditTrailResponse)
async def get_audit_trail(
    membership_id: str,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Lifecycle audit trail, newest first"""
    try:
        entries = await service.get_audit_trail(membership_id, actor_role=actor.role)
        return AuditTrailResponse(
            success=True,
            message="Audit trail",
            membership_id=membership_id,
            entries=entries,
            total=len(entries),
        )
    except Exception as e:
        raise _http_error(e, "get_audit_trail")


@app.put(f"{BASE_PATH}/memberships/{{membership_id}}/override", response_model=MembershipResponse)
async def toggle_manual_override(
    membership_id: str,
    request: ToggleOverrideRequest,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Enable or disable the manual override"""
    try:
        return await service.toggle_manual_override(
            membership_id, request.active, actor_id=actor.actor_id, actor_role=actor.role
        )
    except Exception as e:
        raise _http_error(e, "toggle_manual_override")


@app.put(f"{BASE_PATH}/memberships/{{membership_id}}/status", response_model=MembershipResponse)
async def set_status(
    membership_id: str,
    request: SetStatusRequest,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Administrative status transition"""
    try:
        return await service.set_status(
            membership_id, request.status, actor_id=actor.actor_id, actor_role=actor.role
        )
    except Exception as e:
        raise _http_error(e, "set_status")


# ====================
# Reminders & Maintenance
# ====================


@app.post(f"{BASE_PATH}/reminders", response_model=SendReminderResponse)
async def send_reminder(
    request: SendReminderRequest,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Send a membership reminder to a player"""
    try:
        return await service.send_reminder(
            request.player_id, request.alert_code, actor_id=actor.actor_id, actor_role=actor.role
        )
    except Exception as e:
        raise _http_error(e, "send_reminder")


@app.post(f"{BASE_PATH}/maintenance/run", response_model=MaintenanceReport)
async def run_maintenance(
    request: Optional[RunMaintenanceRequest] = None,
    actor: Actor = Depends(get_actor),
    service: MembershipLedgerService = Depends(get_ledger_service)
):
    """Deactivate exhausted or expired memberships and send pending alerts"""
    try:
        return await service.run_maintenance(
            as_of=request.as_of if request else None,
            actor_id=actor.actor_id,
            actor_role=actor.role,
        )
    except Exception as e:
        raise _http_error(e, "run_maintenance")


# ====================
# Error Handling
# ====================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception in {request.url}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error occurred"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.membership_ledger_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=config.debug,
        log_level=config.log_level.lower(),
    )
