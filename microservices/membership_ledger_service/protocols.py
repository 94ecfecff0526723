"""
Membership Ledger Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .models import (
    AdjustmentRecord,
    MembershipAuditEntry,
    MembershipStatus,
    MembershipType,
    PlayerMembership,
)


# ====================
# Repository Protocol
# ====================


class MembershipLedgerRepositoryProtocol(Protocol):
    """
    Protocol for the durable ledger store.

    Every mutating method is atomic: either all of its writes land or none
    do. Conditional writes compare the stored ``version`` against the
    caller's expected version and raise ConcurrencyConflict on mismatch.
    """

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    # Membership types
    async def list_membership_types(self, active_only: bool = True) -> List[MembershipType]:
        """List membership types"""
        ...

    async def get_membership_type(self, type_id: str) -> Optional[MembershipType]:
        """Get membership type by ID"""
        ...

    # Memberships
    async def get_membership(self, membership_id: str) -> Optional[PlayerMembership]:
        """Get membership by ID"""
        ...

    async def get_active_membership(self, player_id: str) -> Optional[PlayerMembership]:
        """Get the player's ACTIVE membership, if any"""
        ...

    async def get_latest_membership(self, player_id: str) -> Optional[PlayerMembership]:
        """Get the player's most recently created membership"""
        ...

    async def list_memberships(
        self,
        player_id: Optional[str] = None,
        status: Optional[MembershipStatus] = None,
    ) -> List[PlayerMembership]:
        """List memberships with filters, newest first"""
        ...

    async def create_membership(
        self,
        membership: PlayerMembership,
        supersede: Optional[PlayerMembership] = None,
        audit_entries: Optional[List[MembershipAuditEntry]] = None,
    ) -> PlayerMembership:
        """Insert a membership, superseding ``supersede`` in the same transaction"""
        ...

    async def update_membership(
        self,
        membership: PlayerMembership,
        expected_version: int,
        adjustment: Optional[AdjustmentRecord] = None,
        audit_entries: Optional[List[MembershipAuditEntry]] = None,
        supersede: Optional[PlayerMembership] = None,
    ) -> PlayerMembership:
        """
        Compare-and-swap update of mutable membership fields.

        An ``adjustment`` carrying a ``source_ref`` already recorded for the
        membership raises DuplicateAdjustmentError and nothing is written.
        """
        ...

    # Adjustments (append-only)
    async def list_adjustments(self, membership_id: str) -> List[AdjustmentRecord]:
        """List adjustments, newest first"""
        ...

    async def list_player_adjustments(self, player_id: str, limit: int = 50) -> List[AdjustmentRecord]:
        """List adjustments across all of a player's memberships, newest first"""
        ...

    # Lifecycle audit
    async def list_audit_entries(self, membership_id: str) -> List[MembershipAuditEntry]:
        """List audit entries, newest first"""
        ...

    # Alert de-duplication
    async def has_alert_been_sent(self, membership_id: str, alert_code: str) -> bool:
        """Check whether an alert code was already sent for a membership"""
        ...

    async def mark_alert_sent(self, membership_id: str, alert_code: str) -> bool:
        """Record an alert as sent; False if it was already recorded"""
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus operations"""

    async def publish_event(self, event: Any) -> bool:
        """Publish event to NATS"""
        ...

    async def subscribe_to_events(
        self,
        pattern: str,
        handler: Callable[[Dict[str, Any]], Awaitable[None]],
        durable: Optional[str] = None,
    ) -> Optional[str]:
        """Subscribe to events"""
        ...

    async def close(self) -> None:
        """Close event bus connection"""
        ...


# ====================
# Service Client Protocols
# ====================


class NotificationDispatcherProtocol(Protocol):
    """
    Protocol for the notification sink.

    Fire-and-forget: implementations report delivery with a boolean and
    must not raise for delivery failures.
    """

    async def send(
        self,
        player_id: str,
        alert_code: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Send an alert to a player"""
        ...

    async def close(self) -> None:
        """Release client resources"""
        ...


# ====================
# Custom Exceptions
# ====================


class MembershipLedgerError(Exception):
    """Base exception for membership ledger errors"""
    pass


class ValidationError(MembershipLedgerError):
    """Raised when input is malformed or violates allocation-type rules"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidAdjustmentError(MembershipLedgerError):
    """Raised when an adjustment would drive used_classes negative"""

    def __init__(
        self,
        message: str,
        used_classes: int = 0,
        delta: int = 0
    ):
        super().__init__(message)
        self.used_classes = used_classes
        self.delta = delta


class ConcurrencyConflict(MembershipLedgerError):
    """Raised when a conditional write finds a different version"""

    def __init__(
        self,
        message: str,
        membership_id: str = "",
        expected_version: Optional[int] = None
    ):
        super().__init__(message)
        self.membership_id = membership_id
        self.expected_version = expected_version


class DuplicateAdjustmentError(MembershipLedgerError):
    """Raised when an adjustment's source reference was already applied"""

    def __init__(self, message: str, membership_id: str = "", source_ref: str = ""):
        super().__init__(message)
        self.membership_id = membership_id
        self.source_ref = source_ref


class StoreUnavailable(MembershipLedgerError):
    """Raised on transient persistence failures"""
    pass


class MembershipNotFoundError(MembershipLedgerError):
    """Raised when membership is not found"""
    pass


class MembershipTypeNotFoundError(MembershipLedgerError):
    """Raised when membership type is missing or inactive"""
    pass


class PermissionDeniedError(MembershipLedgerError):
    """Raised when the actor role lacks the capability for an operation"""

    def __init__(self, message: str, actor_role: str = "", operation: str = ""):
        super().__init__(message)
        self.actor_role = actor_role
        self.operation = operation


class InvalidStatusTransitionError(MembershipLedgerError):
    """Raised when status transition is not allowed"""

    def __init__(
        self,
        message: str,
        current_status: str = "",
        target_status: str = ""
    ):
        super().__init__(message)
        self.current_status = current_status
        self.target_status = target_status


__all__ = [
    "MembershipLedgerRepositoryProtocol",
    "EventBusProtocol",
    "NotificationDispatcherProtocol",
    "MembershipLedgerError",
    "ValidationError",
    "InvalidAdjustmentError",
    "ConcurrencyConflict",
    "DuplicateAdjustmentError",
    "StoreUnavailable",
    "MembershipNotFoundError",
    "MembershipTypeNotFoundError",
    "PermissionDeniedError",
    "InvalidStatusTransitionError",
]
