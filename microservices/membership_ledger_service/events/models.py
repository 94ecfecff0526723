"""
Membership Ledger Event Models

Event data models for membership_ledger_service.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class MembershipLedgerSubscribedEventType(str, Enum):
    """Events that membership_ledger_service subscribes to from other services."""
    ATTENDANCE_RECORDED = "attendance.recorded"
    PLAYER_DELETED = "player.deleted"


# =============================================================================
# Event Data Models
# =============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MembershipLedgerBaseEventData(BaseModel):
    """Base event data for membership_ledger_service events."""
    timestamp: datetime = Field(default_factory=_utcnow)


class MembershipAssignedEventData(MembershipLedgerBaseEventData):
    """Published after a membership is assigned."""
    membership_id: str
    player_id: str
    membership_type_id: str
    allocation_type: str
    allocated_classes: Optional[int] = None
    superseded_membership_ids: List[str] = Field(default_factory=list)
    actor_id: Optional[str] = None


class MembershipUsageAdjustedEventData(MembershipLedgerBaseEventData):
    """Published after a usage adjustment commits."""
    membership_id: str
    player_id: str
    delta: int
    reason: str
    used_classes: int
    remaining_classes: Optional[int] = None
    status: str
    actor_id: Optional[str] = None


class MembershipStatusChangedEventData(MembershipLedgerBaseEventData):
    """Published whenever a membership changes status."""
    membership_id: str
    player_id: str
    previous_status: str
    status: str
    deactivation_reason: Optional[str] = None
    actor_id: Optional[str] = None


class MembershipOverrideToggledEventData(MembershipLedgerBaseEventData):
    """Published after the manual override flag changes."""
    membership_id: str
    player_id: str
    manual_override_active: bool
    status: str
    actor_id: Optional[str] = None


class AttendanceRecordedEventData(BaseModel):
    """
    Attendance record emitted by the attendance service.

    Only ``present`` and ``late`` records consume a class.
    """
    attendance_id: str
    player_id: str
    session_id: Optional[str] = None
    session_name: Optional[str] = None
    status: str = "present"
    recorded_by: Optional[str] = None

    @property
    def consumes_class(self) -> bool:
        return self.status.lower() in ("present", "late")


class PlayerDeletedEventData(BaseModel):
    """Player removal notice."""
    player_id: str


__all__ = [
    "MembershipLedgerSubscribedEventType",
    "MembershipLedgerBaseEventData",
    "MembershipAssignedEventData",
    "MembershipUsageAdjustedEventData",
    "MembershipStatusChangedEventData",
    "MembershipOverrideToggledEventData",
    "AttendanceRecordedEventData",
    "PlayerDeletedEventData",
]
