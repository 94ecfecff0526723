"""
Membership Ledger Event Handlers

NATS event subscription handlers.
"""

import logging
from typing import Callable, Dict

from pydantic import ValidationError as PayloadValidationError

from ..models import ActorRole, AllocationType
from ..protocols import DuplicateAdjustmentError, InvalidAdjustmentError, MembershipLedgerError
from .models import (
    AttendanceRecordedEventData,
    MembershipLedgerSubscribedEventType,
    PlayerDeletedEventData,
)

logger = logging.getLogger(__name__)

ATTENDANCE_ACTOR_ID = "attendance_service"


def _payload(event_data: dict) -> dict:
    """Events arrive either wrapped in an envelope ({"data": {...}}) or flat"""
    data = event_data.get("data")
    return data if isinstance(data, dict) else event_data


class MembershipLedgerEventHandlers:
    """Membership ledger event handlers"""

    def __init__(self, ledger_service, event_bus=None):
        self.service = ledger_service
        self.repository = ledger_service.repository
        self.event_bus = event_bus

    def get_event_handler_map(self) -> Dict[str, Callable]:
        return {
            MembershipLedgerSubscribedEventType.ATTENDANCE_RECORDED.value: self.handle_attendance_recorded,
            MembershipLedgerSubscribedEventType.PLAYER_DELETED.value: self.handle_player_deleted,
        }

    async def handle_attendance_recorded(self, event_data: dict):
        """Consume one class from the player's ACTIVE class-count membership"""
        try:
            attendance = AttendanceRecordedEventData(**_payload(event_data))
        except PayloadValidationError as e:
            logger.warning(f"Ignoring malformed attendance.recorded event: {e}")
            return

        if not attendance.consumes_class:
            logger.debug(f"Attendance {attendance.attendance_id} ({attendance.status}) does not consume a class")
            return

        membership = await self.repository.get_active_membership(attendance.player_id)
        if membership is None:
            logger.info(f"Player {attendance.player_id} has no active membership; attendance not charged")
            return
        if membership.allocation_type != AllocationType.CLASS_COUNT:
            return

        reason = f"Attendance: {attendance.session_name or attendance.session_id or 'class'}"
        try:
            result = await self.service.adjust_usage(
                membership.id,
                1,
                reason,
                actor_id=attendance.recorded_by or ATTENDANCE_ACTOR_ID,
                actor_role=ActorRole.SYSTEM,
                source_ref=attendance.attendance_id,
            )
            logger.info(
                f"Charged attendance {attendance.attendance_id} to membership {membership.id}: "
                f"remaining={result.summary.remaining_classes if result.summary else None}"
            )
        except DuplicateAdjustmentError:
            logger.info(f"Attendance {attendance.attendance_id} already charged to membership {membership.id}")
        except InvalidAdjustmentError as e:
            logger.warning(f"Attendance {attendance.attendance_id} rejected: {e}")
        except MembershipLedgerError as e:
            logger.error(f"Failed to charge attendance {attendance.attendance_id}: {e}")
            raise

    async def handle_player_deleted(self, event_data: dict):
        """Memberships are retained for the audit trail; only log the removal"""
        try:
            player = PlayerDeletedEventData(**_payload(event_data))
        except PayloadValidationError as e:
            logger.warning(f"Ignoring malformed player.deleted event: {e}")
            return

        memberships = await self.repository.list_memberships(player_id=player.player_id)
        logger.info(
            f"Player {player.player_id} deleted; retaining {len(memberships)} membership records"
        )


def get_event_handlers(ledger_service, event_bus=None) -> Dict[str, Callable]:
    """Get event handler map"""
    handlers = MembershipLedgerEventHandlers(ledger_service, event_bus)
    return handlers.get_event_handler_map()


__all__ = ["MembershipLedgerEventHandlers", "get_event_handlers"]
