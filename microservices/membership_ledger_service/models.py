"""
Membership Ledger Data Models

Pydantic models for membership types, player memberships, usage
adjustments, derived summaries, and the API request/response shapes.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ====================
# Enum Types
# ====================

class AllocationType(str, Enum):
    """How a membership's usage is measured"""
    CLASS_COUNT = "CLASS_COUNT"
    UNLIMITED = "UNLIMITED"
    DATE_RANGE = "DATE_RANGE"


class MembershipStatus(str, Enum):
    """Player membership status"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PAUSED = "PAUSED"


class DeactivationReason(str, Enum):
    """Why a membership became INACTIVE"""
    USAGE_EXHAUSTED = "USAGE_EXHAUSTED"
    EXPIRED = "EXPIRED"
    SUPERSEDED = "SUPERSEDED"
    MANUAL = "MANUAL"


class ActorRole(str, Enum):
    """Role of the caller performing a ledger operation"""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    STAFF = "staff"
    COACH = "coach"
    MEDICAL = "medical"
    PARTNER = "partner"
    PLAYER = "player"
    SYSTEM = "system"


class AuditAction(str, Enum):
    """Membership lifecycle actions recorded in the audit trail"""
    ASSIGNED = "assigned"
    SUPERSEDED = "superseded"
    STATUS_CHANGED = "status_changed"
    AUTO_DEACTIVATED = "auto_deactivated"
    REACTIVATED = "reactivated"
    OVERRIDE_ENABLED = "override_enabled"
    OVERRIDE_DISABLED = "override_disabled"


class AlertPriority(str, Enum):
    """Notification priority"""
    NORMAL = "normal"
    HIGH = "high"


# ====================
# Core Data Models
# ====================

class MembershipType(BaseModel):
    """Membership type (allocation policy) definition"""
    id: str = Field(..., description="Membership type ID")
    name: str = Field(..., min_length=1)
    allocation_type: AllocationType
    class_count: int = Field(default=0, ge=0)
    start_date_required: bool = True
    end_date_required: bool = False
    is_active: bool = True
    description: Optional[str] = None

    @property
    def requires_end_date(self) -> bool:
        return self.end_date_required or self.allocation_type == AllocationType.DATE_RANGE


class PlayerMembership(BaseModel):
    """Player membership ledger record"""
    id: str = Field(..., description="Membership ID")
    player_id: str = Field(..., description="Player ID")
    membership_type_id: str
    membership_type_name: Optional[str] = None
    allocation_type: AllocationType

    # Dates
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    # Balance
    override_class_count: Optional[int] = Field(default=None, ge=0)
    allocated_classes: Optional[int] = Field(default=None, ge=0)
    used_classes: int = Field(default=0, ge=0)
    remaining_classes: Optional[int] = None

    # State
    status: MembershipStatus = MembershipStatus.ACTIVE
    deactivation_reason: Optional[DeactivationReason] = None
    auto_deactivate_when_used_up: bool = True
    manual_override_active: bool = False
    notes: Optional[str] = None

    # Optimistic concurrency
    version: int = Field(default=1, ge=1)

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MembershipSummary(BaseModel):
    """Read-optimized projection of a membership (never persisted)"""
    membership_id: str
    player_id: str
    membership_type_id: str
    membership_type_name: Optional[str] = None
    allocation_type: AllocationType
    status: MembershipStatus
    deactivation_reason: Optional[DeactivationReason] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    allocated_classes: Optional[int] = None
    used_classes: int = 0
    remaining_classes: Optional[int] = None

    days_left: Optional[int] = None
    is_expired: bool = False
    should_deactivate: bool = False
    negative_balance_warning: bool = False

    manual_override_active: bool = False
    auto_deactivate_when_used_up: bool = True
    as_of: date


class AdjustmentRecord(BaseModel):
    """Append-only record of a signed usage adjustment"""
    id: str = Field(..., description="Adjustment ID")
    membership_id: str
    delta: int
    reason: str = Field(..., min_length=1)
    actor_id: str
    actor_role: Optional[ActorRole] = None
    used_before: Optional[int] = None
    used_after: Optional[int] = None
    source_ref: Optional[str] = Field(None, description="External reference (e.g. attendance id), unique per membership")
    timestamp: datetime


class MembershipAuditEntry(BaseModel):
    """Lifecycle audit entry (assignment, supersession, status, override)"""
    id: str = Field(..., description="Audit entry ID")
    membership_id: str
    player_id: str
    action: AuditAction
    actor_id: str
    from_status: Optional[MembershipStatus] = None
    to_status: Optional[MembershipStatus] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class AlertNotice(BaseModel):
    """An alert dispatched (or attempted) for a membership"""
    membership_id: str
    player_id: str
    alert_code: str
    title: str
    message: str
    priority: AlertPriority = AlertPriority.NORMAL
    delivered: bool = False


# ====================
# Request Models
# ====================

class AssignMembershipRequest(BaseModel):
    """Assign membership request"""
    player_id: str = Field(..., min_length=1, description="Player ID")
    membership_type_id: str = Field(..., min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    override_class_count: Optional[int] = None
    auto_deactivate_when_used_up: bool = True
    notes: Optional[str] = Field(default=None, max_length=2000)


class AdjustUsageRequest(BaseModel):
    """Signed usage adjustment request"""
    delta: int
    reason: str = Field(default="", max_length=500)
    source_ref: Optional[str] = Field(None, max_length=200, description="Caller reference; repeats are rejected")


class ToggleOverrideRequest(BaseModel):
    """Manual override toggle request"""
    active: bool


class SetStatusRequest(BaseModel):
    """Administrative status transition request"""
    status: MembershipStatus


class SendReminderRequest(BaseModel):
    """On-demand reminder request"""
    player_id: str = Field(..., min_length=1)
    alert_code: str = Field(..., min_length=1, max_length=32)


class RunMaintenanceRequest(BaseModel):
    """Maintenance sweep request"""
    as_of: Optional[date] = None


# ====================
# Response Models
# ====================

class MembershipResponse(BaseModel):
    """Single membership response"""
    success: bool
    message: str
    membership: Optional[PlayerMembership] = None


class AssignMembershipResponse(BaseModel):
    """Assignment response"""
    success: bool
    message: str
    membership_id: Optional[str] = None
    membership: Optional[PlayerMembership] = None
    superseded_membership_ids: List[str] = Field(default_factory=list)


class AdjustUsageResponse(BaseModel):
    """Usage adjustment response"""
    success: bool
    message: str
    summary: Optional[MembershipSummary] = None
    adjustment: Optional[AdjustmentRecord] = None
    alerts: List[AlertNotice] = Field(default_factory=list)


class MembershipSummaryResponse(BaseModel):
    """Summary response"""
    success: bool
    message: str
    summary: Optional[MembershipSummary] = None


class MembershipTypeListResponse(BaseModel):
    """Active membership types"""
    success: bool
    message: str
    types: List[MembershipType] = Field(default_factory=list)


class AdjustmentHistoryResponse(BaseModel):
    """Adjustment history (newest first)"""
    success: bool
    message: str
    membership_id: str
    adjustments: List[AdjustmentRecord] = Field(default_factory=list)
    total: int = 0


class PlayerAdjustmentHistoryResponse(BaseModel):
    """Recent adjustments across a player's memberships (newest first)"""
    success: bool
    message: str
    player_id: str
    adjustments: List[AdjustmentRecord] = Field(default_factory=list)
    total: int = 0


class AuditTrailResponse(BaseModel):
    """Lifecycle audit trail (newest first)"""
    success: bool
    message: str
    membership_id: str
    entries: List[MembershipAuditEntry] = Field(default_factory=list)
    total: int = 0


class SendReminderResponse(BaseModel):
    """Reminder dispatch result"""
    success: bool
    message: str
    alert: Optional[AlertNotice] = None


class MaintenanceReport(BaseModel):
    """Outcome of a maintenance sweep"""
    success: bool = True
    as_of: date
    memberships_processed: int = 0
    deactivated_memberships: int = 0
    deactivated_membership_ids: List[str] = Field(default_factory=list)
    failed_membership_ids: List[str] = Field(default_factory=list)
    alerts_sent: int = 0
    alerts: List[AlertNotice] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class ServiceInfo(BaseModel):
    """Service information"""
    service: str
    version: str
    description: str
    capabilities: List[str] = Field(default_factory=list)


__all__ = [
    # Enums
    "AllocationType",
    "MembershipStatus",
    "DeactivationReason",
    "ActorRole",
    "AuditAction",
    "AlertPriority",
    # Core models
    "MembershipType",
    "PlayerMembership",
    "MembershipSummary",
    "AdjustmentRecord",
    "MembershipAuditEntry",
    "AlertNotice",
    # Requests
    "AssignMembershipRequest",
    "AdjustUsageRequest",
    "ToggleOverrideRequest",
    "SetStatusRequest",
    "SendReminderRequest",
    "RunMaintenanceRequest",
    # Responses
    "MembershipResponse",
    "AssignMembershipResponse",
    "AdjustUsageResponse",
    "MembershipSummaryResponse",
    "MembershipTypeListResponse",
    "AdjustmentHistoryResponse",
    "PlayerAdjustmentHistoryResponse",
    "AuditTrailResponse",
    "SendReminderResponse",
    "MaintenanceReport",
    "HealthResponse",
    "ServiceInfo",
]
