"""
Membership Ledger Service - Business logic layer

Authoritative state machine for player memberships: assignment with
supersession, signed usage adjustments with an audit trail, manual override,
administrative status changes, cached summaries, reminders and the
maintenance sweep.

Mutations are read-modify-write cycles guarded by a version compare-and-swap
in the repository. A version conflict is retried once with a fresh read; a
transient store failure is retried with exponential backoff up to a bounded
number of attempts.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.nats_client import EventType, ServiceSource, create_event

from .adjustment_auditor import AdjustmentAuditor
from .alert_thresholds import AlertThreshold, crossed_threshold, get_threshold, matching_thresholds
from .events.models import (
    MembershipAssignedEventData,
    MembershipLedgerBaseEventData,
    MembershipOverrideToggledEventData,
    MembershipStatusChangedEventData,
    MembershipUsageAdjustedEventData,
)
from .models import (
    ActorRole,
    AdjustmentRecord,
    AdjustUsageResponse,
    AlertNotice,
    AllocationType,
    AssignMembershipResponse,
    AuditAction,
    DeactivationReason,
    MaintenanceReport,
    MembershipAuditEntry,
    MembershipResponse,
    MembershipStatus,
    MembershipSummary,
    MembershipType,
    PlayerMembership,
    SendReminderResponse,
)
from .protocols import (
    ConcurrencyConflict,
    EventBusProtocol,
    InvalidAdjustmentError,
    InvalidStatusTransitionError,
    MembershipLedgerError,
    MembershipLedgerRepositoryProtocol,
    MembershipNotFoundError,
    NotificationDispatcherProtocol,
    PermissionDeniedError,
    StoreUnavailable,
    ValidationError,
)
from .summary_cache import SummaryCache
from .summary_projector import (
    compute_remaining,
    is_expired,
    project,
    resolve_allocated_classes,
    should_auto_deactivate,
)
from .type_registry import MembershipTypeRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Capability sets per operation
MANAGE_ROLES = frozenset({ActorRole.SUPER_ADMIN, ActorRole.ADMIN, ActorRole.STAFF, ActorRole.SYSTEM})
ADJUST_ROLES = MANAGE_ROLES | {ActorRole.COACH}
HISTORY_ROLES = ADJUST_ROLES
REMINDER_ROLES = ADJUST_ROLES
MAINTENANCE_ROLES = frozenset({ActorRole.SUPER_ADMIN, ActorRole.ADMIN, ActorRole.SYSTEM})

MAX_HISTORY_LIMIT = 200

# Manual status transitions (current -> allowed targets)
STATUS_TRANSITIONS = {
    MembershipStatus.ACTIVE: {MembershipStatus.PAUSED, MembershipStatus.INACTIVE},
    MembershipStatus.PAUSED: {MembershipStatus.ACTIVE, MembershipStatus.INACTIVE},
    MembershipStatus.INACTIVE: {MembershipStatus.ACTIVE},
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MembershipLedgerService:
    """
    Membership ledger business logic

    Handles:
    - Membership assignment and supersession
    - Usage adjustments and auto-deactivation
    - Manual override and status transitions
    - Summaries (read-through cache), reminders and maintenance
    """

    def __init__(
        self,
        repository: MembershipLedgerRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        notification_dispatcher: Optional[NotificationDispatcherProtocol] = None,
        summary_cache: Optional[SummaryCache] = None,
        clock: Callable[[], datetime] = _utcnow,
        store_retry_attempts: int = 3,
        store_retry_min_wait: float = 0.1,
        store_retry_max_wait: float = 2.0,
    ):
        """
        Initialize membership ledger service.

        Args:
            repository: Ledger repository (required)
            event_bus: Optional event bus for publishing events
            notification_dispatcher: Optional sink for player alerts
            summary_cache: Optional summary cache (defaults to a 5 minute TTL)
            clock: Returns the current UTC time
            store_retry_attempts: Attempts for transient store failures
            store_retry_min_wait: Backoff multiplier in seconds
            store_retry_max_wait: Backoff ceiling in seconds
        """
        self.repository = repository
        self.event_bus = event_bus
        self.notification_dispatcher = notification_dispatcher
        self.cache = summary_cache or SummaryCache()
        self.clock = clock
        self.registry = MembershipTypeRegistry(repository)
        self.auditor = AdjustmentAuditor(repository, clock=clock)
        self.store_retry_attempts = max(1, store_retry_attempts)
        self.store_retry_min_wait = store_retry_min_wait
        self.store_retry_max_wait = store_retry_max_wait

    # ====================
    # Helpers
    # ====================

    def _today(self) -> date:
        return self.clock().date()

    @staticmethod
    def _require_role(
        actor_role: Union[ActorRole, str, None],
        allowed: Iterable[ActorRole],
        operation: str,
    ) -> ActorRole:
        """Resolve the caller's role and check it against a capability set"""
        try:
            role = ActorRole(actor_role)
        except ValueError:
            raise PermissionDeniedError(
                f"Unknown actor role '{actor_role}' for {operation}",
                actor_role=str(actor_role),
                operation=operation,
            )
        if role not in allowed:
            raise PermissionDeniedError(
                f"Role '{role.value}' may not {operation}",
                actor_role=role.value,
                operation=operation,
            )
        return role

    async def _with_retries(self, operation: str, attempt: Callable[[], Awaitable[T]]) -> T:
        """Run a read-modify-write attempt under the ledger retry policy"""

        @retry(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(ConcurrencyConflict),
            reraise=True,
        )
        @retry(
            stop=stop_after_attempt(self.store_retry_attempts),
            wait=wait_exponential(multiplier=self.store_retry_min_wait, max=self.store_retry_max_wait),
            retry=retry_if_exception_type(StoreUnavailable),
            reraise=True,
        )
        async def _attempt():
            return await attempt()

        try:
            return await _attempt()
        except ConcurrencyConflict as e:
            logger.warning(f"{operation} failed after conflict retry: {e}")
            raise
        except StoreUnavailable as e:
            logger.error(f"{operation} failed after {self.store_retry_attempts} store attempts: {e}")
            raise

    async def _load_membership(self, membership_id: str) -> PlayerMembership:
        membership = await self.repository.get_membership(membership_id)
        if membership is None:
            raise MembershipNotFoundError(f"Membership not found: {membership_id}")
        return membership

    def _audit(
        self,
        membership: PlayerMembership,
        action: AuditAction,
        actor_id: str,
        from_status: Optional[MembershipStatus] = None,
        to_status: Optional[MembershipStatus] = None,
        **details: Any,
    ) -> MembershipAuditEntry:
        return MembershipAuditEntry(
            id=f"aud_{uuid.uuid4().hex[:16]}",
            membership_id=membership.id,
            player_id=membership.player_id,
            action=action,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            details=details,
            timestamp=self.clock(),
        )

    # ====================
    # Assignment
    # ====================

    async def assign(
        self,
        player_id: str,
        membership_type_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        override_class_count: Optional[int] = None,
        auto_deactivate_when_used_up: bool = True,
        notes: Optional[str] = None,
        *,
        actor_id: str,
        actor_role: Union[ActorRole, str],
    ) -> AssignMembershipResponse:
        """
        Assign a membership to a player, superseding any ACTIVE one.

        Raises:
            PermissionDeniedError: Actor may not assign memberships
            ValidationError: Missing or inconsistent fields for the type
            MembershipTypeNotFoundError: Type is unknown or inactive
            ConcurrencyConflict: Another assignment raced this one twice
            StoreUnavailable: Store failures exhausted the retry budget
        """
        self._require_role(actor_role, MANAGE_ROLES, "assign memberships")

        if not player_id or not player_id.strip():
            raise ValidationError("player_id is required", field="player_id")

        membership_type = await self.registry.get_active_type(membership_type_id)
        self._validate_assignment(membership_type, start_date, end_date, override_class_count)

        allocated = resolve_allocated_classes(
            membership_type.allocation_type, membership_type.class_count, override_class_count
        )
        now = self.clock()
        membership = PlayerMembership(
            id=f"pm_{uuid.uuid4().hex[:16]}",
            player_id=player_id,
            membership_type_id=membership_type.id,
            membership_type_name=membership_type.name,
            allocation_type=membership_type.allocation_type,
            start_date=start_date,
            end_date=end_date,
            override_class_count=override_class_count,
            allocated_classes=allocated,
            used_classes=0,
            remaining_classes=compute_remaining(allocated, 0),
            status=MembershipStatus.ACTIVE,
            auto_deactivate_when_used_up=auto_deactivate_when_used_up,
            notes=notes,
            version=1,
            created_at=now,
            updated_at=now,
        )
        if should_auto_deactivate(membership):
            # a zero-class allocation starts out exhausted
            membership = membership.model_copy(update={
                "status": MembershipStatus.INACTIVE,
                "deactivation_reason": DeactivationReason.USAGE_EXHAUSTED,
            })

        async def attempt():
            current = await self.repository.get_active_membership(player_id)
            entries = [
                self._audit(
                    membership, AuditAction.ASSIGNED, actor_id,
                    to_status=membership.status,
                    membership_type_id=membership_type.id,
                    allocated_classes=allocated,
                    start_date=start_date.isoformat() if start_date else None,
                    end_date=end_date.isoformat() if end_date else None,
                    superseded_membership_id=current.id if current else None,
                )
            ]
            if current is not None:
                entries.append(self._audit(
                    current, AuditAction.SUPERSEDED, actor_id,
                    from_status=MembershipStatus.ACTIVE,
                    to_status=MembershipStatus.INACTIVE,
                    superseded_by=membership.id,
                ))
            created = await self.repository.create_membership(
                membership, supersede=current, audit_entries=entries
            )
            return created, current

        created, superseded = await self._with_retries("assign", attempt)
        self.cache.invalidate_player(player_id)

        superseded_ids = [superseded.id] if superseded else []
        logger.info(
            f"Assigned membership {created.id} ({membership_type.name}) to player {player_id}"
            + (f", superseding {superseded.id}" if superseded else "")
        )

        await self._publish_event(EventType.MEMBERSHIP_ASSIGNED, MembershipAssignedEventData(
            membership_id=created.id,
            player_id=player_id,
            membership_type_id=membership_type.id,
            allocation_type=membership_type.allocation_type.value,
            allocated_classes=allocated,
            superseded_membership_ids=superseded_ids,
            actor_id=actor_id,
        ))

        return AssignMembershipResponse(
            success=True,
            message="Membership assigned successfully",
            membership_id=created.id,
            membership=created,
            superseded_membership_ids=superseded_ids,
        )

    @staticmethod
    def _validate_assignment(
        membership_type: MembershipType,
        start_date: Optional[date],
        end_date: Optional[date],
        override_class_count: Optional[int],
    ) -> None:
        if membership_type.start_date_required and start_date is None:
            raise ValidationError(
                f"Membership type '{membership_type.name}' requires a start date", field="start_date"
            )
        if membership_type.requires_end_date and end_date is None:
            raise ValidationError(
                f"Membership type '{membership_type.name}' requires an end date", field="end_date"
            )
        if start_date and end_date and end_date < start_date:
            raise ValidationError("end_date must not be before start_date", field="end_date")
        if override_class_count is not None:
            if isinstance(override_class_count, bool) or not isinstance(override_class_count, int):
                raise ValidationError("override_class_count must be an integer", field="override_class_count")
            if override_class_count < 0:
                raise ValidationError("override_class_count must be >= 0", field="override_class_count")
            if membership_type.allocation_type != AllocationType.CLASS_COUNT:
                raise ValidationError(
                    "override_class_count only applies to CLASS_COUNT memberships",
                    field="override_class_count",
                )

    # ====================
    # Usage Adjustments
    # ====================

    async def adjust_usage(
        self,
        membership_id: str,
        delta: int,
        reason: str,
        *,
        actor_id: str,
        actor_role: Union[ActorRole, str],
        source_ref: Optional[str] = None,
    ) -> AdjustUsageResponse:
        """
        Apply a signed usage adjustment.

        The balance update and its AdjustmentRecord commit together; a failed
        call leaves the ledger unchanged. Driving remaining classes below zero
        is allowed and reported through ``negative_balance_warning``.
        ``source_ref`` ties the adjustment to an external event; the store
        applies each reference at most once per membership.

        Raises:
            PermissionDeniedError: Actor may not adjust usage
            ValidationError: delta is zero or reason is blank
            MembershipNotFoundError: Membership does not exist
            InvalidAdjustmentError: used_classes would become negative
            DuplicateAdjustmentError: source_ref was already applied
            ConcurrencyConflict: Conflicting writers after one retry
            StoreUnavailable: Store failures exhausted the retry budget
        """
        role = self._require_role(actor_role, ADJUST_ROLES, "adjust usage")
        reason = self.auditor.validate(delta, reason)

        async def attempt():
            current = await self._load_membership(membership_id)
            used_after = current.used_classes + delta
            if used_after < 0:
                raise InvalidAdjustmentError(
                    f"Adjustment of {delta:+d} would make used classes negative "
                    f"(currently {current.used_classes})",
                    used_classes=current.used_classes,
                    delta=delta,
                )

            updated = current.model_copy(update={
                "used_classes": used_after,
                "remaining_classes": compute_remaining(current.allocated_classes, used_after),
                "updated_at": self.clock(),
            })
            entries = []
            if current.status == MembershipStatus.ACTIVE and should_auto_deactivate(updated):
                updated = updated.model_copy(update={
                    "status": MembershipStatus.INACTIVE,
                    "deactivation_reason": DeactivationReason.USAGE_EXHAUSTED,
                })
                entries.append(self._audit(
                    updated, AuditAction.AUTO_DEACTIVATED, actor_id,
                    from_status=MembershipStatus.ACTIVE,
                    to_status=MembershipStatus.INACTIVE,
                    reason=DeactivationReason.USAGE_EXHAUSTED.value,
                ))

            record = self.auditor.build(
                membership_id, delta, reason, actor_id, role,
                used_before=current.used_classes, used_after=used_after,
                source_ref=source_ref,
            )
            saved = await self.repository.update_membership(
                updated, expected_version=current.version, adjustment=record, audit_entries=entries
            )
            return current, saved, record

        previous, saved, record = await self._with_retries("adjust_usage", attempt)
        self.cache.invalidate_membership(saved.id, saved.player_id)

        summary = project(saved, self._today())
        logger.info(
            f"Adjusted membership {saved.id} by {delta:+d}: used={saved.used_classes}, "
            f"remaining={saved.remaining_classes}, status={saved.status.value}"
        )
        if summary.negative_balance_warning:
            logger.warning(f"Membership {saved.id} has a negative balance ({summary.remaining_classes})")

        alerts: List[AlertNotice] = []
        threshold = crossed_threshold(previous.remaining_classes, summary)
        if threshold is not None:
            notice = await self._dispatch_alert(saved, threshold, dedupe=True)
            if notice is not None:
                alerts.append(notice)

        await self._publish_event(EventType.MEMBERSHIP_USAGE_ADJUSTED, MembershipUsageAdjustedEventData(
            membership_id=saved.id,
            player_id=saved.player_id,
            delta=delta,
            reason=reason,
            used_classes=saved.used_classes,
            remaining_classes=saved.remaining_classes,
            status=saved.status.value,
            actor_id=actor_id,
        ))
        if saved.status != previous.status:
            await self._publish_status_changed(previous, saved, actor_id)

        message = "Usage adjusted"
        if summary.negative_balance_warning:
            message = "Usage adjusted; membership balance is negative"
        elif saved.status != previous.status:
            message = "Usage adjusted; membership deactivated (classes used up)"

        return AdjustUsageResponse(
            success=True,
            message=message,
            summary=summary,
            adjustment=record,
            alerts=alerts,
        )

    async def get_adjustment_history(
        self,
        membership_id: str,
        *,
        actor_role: Union[ActorRole, str],
    ) -> List[AdjustmentRecord]:
        """Adjustment history for a membership, newest first"""
        self._require_role(actor_role, HISTORY_ROLES, "read adjustment history")
        await self._load_membership(membership_id)
        return await self.auditor.history(membership_id)

    async def get_player_adjustment_history(
        self,
        player_id: str,
        limit: int = 50,
        *,
        actor_role: Union[ActorRole, str],
    ) -> List[AdjustmentRecord]:
        """Recent adjustments across all of a player's memberships, newest first"""
        self._require_role(actor_role, HISTORY_ROLES, "read adjustment history")
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}", field="limit")
        return await self.auditor.player_history(player_id, limit=limit)

    async def get_audit_trail(
        self,
        membership_id: str,
        *,
        actor_role: Union[ActorRole, str],
    ) -> List[MembershipAuditEntry]:
        """Lifecycle audit entries for a membership, newest first"""
        self._require_role(actor_role, HISTORY_ROLES, "read the audit trail")
        await self._load_membership(membership_id)
        entries = await self.repository.list_audit_entries(membership_id)
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    # ====================
    # Override & Status
    # ====================

    async def toggle_manual_override(
        self,
        membership_id: str,
        active: bool,
        *,
        actor_id: str,
        actor_role: Union[ActorRole, str],
    ) -> MembershipResponse:
        """
        Enable or disable the manual override.

        Enabling it on a membership that was auto-deactivated for usage
        exhaustion reactivates it when the player has no other ACTIVE
        membership. Disabling it re-evaluates the auto-deactivation predicate
        immediately.
        """
        self._require_role(actor_role, MANAGE_ROLES, "toggle manual override")

        async def attempt():
            current = await self._load_membership(membership_id)
            updated = current.model_copy(update={
                "manual_override_active": active,
                "updated_at": self.clock(),
            })
            entries = [self._audit(
                current,
                AuditAction.OVERRIDE_ENABLED if active else AuditAction.OVERRIDE_DISABLED,
                actor_id,
            )]

            if (
                active
                and current.status == MembershipStatus.INACTIVE
                and current.deactivation_reason == DeactivationReason.USAGE_EXHAUSTED
            ):
                other = await self.repository.get_active_membership(current.player_id)
                if other is None:
                    updated = updated.model_copy(update={
                        "status": MembershipStatus.ACTIVE,
                        "deactivation_reason": None,
                    })
                    entries.append(self._audit(
                        current, AuditAction.REACTIVATED, actor_id,
                        from_status=MembershipStatus.INACTIVE,
                        to_status=MembershipStatus.ACTIVE,
                        trigger="manual_override",
                    ))
            elif (
                not active
                and current.status == MembershipStatus.ACTIVE
                and should_auto_deactivate(updated)
            ):
                updated = updated.model_copy(update={
                    "status": MembershipStatus.INACTIVE,
                    "deactivation_reason": DeactivationReason.USAGE_EXHAUSTED,
                })
                entries.append(self._audit(
                    current, AuditAction.AUTO_DEACTIVATED, actor_id,
                    from_status=MembershipStatus.ACTIVE,
                    to_status=MembershipStatus.INACTIVE,
                    reason=DeactivationReason.USAGE_EXHAUSTED.value,
                ))

            if (
                updated.manual_override_active == current.manual_override_active
                and updated.status == current.status
            ):
                return current, current

            saved = await self.repository.update_membership(
                updated, expected_version=current.version, audit_entries=entries
            )
            return current, saved

        previous, saved = await self._with_retries("toggle_manual_override", attempt)
        if saved is previous:
            return MembershipResponse(
                success=True,
                message=f"Manual override already {'enabled' if active else 'disabled'}",
                membership=saved,
            )

        self.cache.invalidate_membership(saved.id, saved.player_id)
        logger.info(
            f"Manual override {'enabled' if active else 'disabled'} for membership {saved.id} "
            f"(status={saved.status.value})"
        )

        await self._publish_event(EventType.MEMBERSHIP_OVERRIDE_TOGGLED, MembershipOverrideToggledEventData(
            membership_id=saved.id,
            player_id=saved.player_id,
            manual_override_active=active,
            status=saved.status.value,
            actor_id=actor_id,
        ))
        if saved.status != previous.status:
            await self._publish_status_changed(previous, saved, actor_id)

        return MembershipResponse(
            success=True,
            message=f"Manual override {'enabled' if active else 'disabled'}",
            membership=saved,
        )

    async def set_status(
        self,
        membership_id: str,
        status: Union[MembershipStatus, str],
        *,
        actor_id: str,
        actor_role: Union[ActorRole, str],
    ) -> MembershipResponse:
        """
        Administrative status transition.

        Allowed: ACTIVE <-> PAUSED, ACTIVE/PAUSED -> INACTIVE (manual
        deactivation), INACTIVE -> ACTIVE (manual reactivation). Moving a
        membership to ACTIVE supersedes the player's other ACTIVE membership.

        Raises:
            ValidationError: Unknown status value
            InvalidStatusTransitionError: Transition not allowed, or
                reactivation of an exhausted membership without override
        """
        self._require_role(actor_role, MANAGE_ROLES, "change membership status")
        try:
            target = MembershipStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown membership status: {status}", field="status")

        async def attempt():
            current = await self._load_membership(membership_id)
            if target not in STATUS_TRANSITIONS[current.status]:
                raise InvalidStatusTransitionError(
                    f"Cannot change status from {current.status.value} to {target.value}",
                    current_status=current.status.value,
                    target_status=target.value,
                )

            update: Dict[str, Any] = {"status": target, "updated_at": self.clock()}
            supersede = None
            action = AuditAction.STATUS_CHANGED
            if target == MembershipStatus.ACTIVE:
                update["deactivation_reason"] = None
                if current.status == MembershipStatus.INACTIVE:
                    action = AuditAction.REACTIVATED
                if should_auto_deactivate(current.model_copy(update=update)):
                    raise InvalidStatusTransitionError(
                        f"Membership {current.id} has no classes remaining; "
                        "enable the manual override to reactivate it",
                        current_status=current.status.value,
                        target_status=target.value,
                    )
                other = await self.repository.get_active_membership(current.player_id)
                if other is not None and other.id != current.id:
                    supersede = other
            elif target == MembershipStatus.INACTIVE:
                update["deactivation_reason"] = DeactivationReason.MANUAL
            else:
                update["deactivation_reason"] = None

            updated = current.model_copy(update=update)
            entries = [self._audit(
                current, action, actor_id,
                from_status=current.status,
                to_status=target,
            )]
            if supersede is not None:
                entries.append(self._audit(
                    supersede, AuditAction.SUPERSEDED, actor_id,
                    from_status=MembershipStatus.ACTIVE,
                    to_status=MembershipStatus.INACTIVE,
                    superseded_by=current.id,
                ))

            saved = await self.repository.update_membership(
                updated, expected_version=current.version, audit_entries=entries, supersede=supersede
            )
            return current, saved

        previous, saved = await self._with_retries("set_status", attempt)
        self.cache.invalidate_membership(saved.id, saved.player_id)
        logger.info(
            f"Membership {saved.id} status {previous.status.value} -> {saved.status.value} by {actor_id}"
        )
        await self._publish_status_changed(previous, saved, actor_id)

        return MembershipResponse(
            success=True,
            message=f"Membership status changed to {saved.status.value}",
            membership=saved,
        )

    # ====================
    # Queries
    # ====================

    async def list_active_types(self) -> List[MembershipType]:
        """Active membership types; empty when the store is unavailable"""
        return await self.registry.list_active_types()

    async def get_membership(self, membership_id: str) -> PlayerMembership:
        """Get membership by ID"""
        return await self._load_membership(membership_id)

    async def _current_membership(self, player_id: str) -> Optional[PlayerMembership]:
        membership = await self.repository.get_active_membership(player_id)
        if membership is None:
            membership = await self.repository.get_latest_membership(player_id)
        return membership

    async def get_membership_summary(
        self,
        player_id: str,
        as_of: Optional[date] = None,
    ) -> MembershipSummary:
        """
        Summary of the player's ACTIVE membership, else their latest one.

        Served from the summary cache when a fresh entry exists.

        Raises:
            MembershipNotFoundError: Player has no memberships
        """
        as_of = as_of or self._today()

        async def load() -> Optional[MembershipSummary]:
            membership = await self._current_membership(player_id)
            return project(membership, as_of) if membership else None

        summary = await self.cache.get_or_load(player_id, as_of, load)
        if summary is None:
            raise MembershipNotFoundError(f"No membership found for player: {player_id}")
        return summary

    # ====================
    # Reminders & Maintenance
    # ====================

    async def send_reminder(
        self,
        player_id: str,
        alert_code: str,
        *,
        actor_id: str,
        actor_role: Union[ActorRole, str],
    ) -> SendReminderResponse:
        """
        Send an alert to a player on demand.

        Not de-duplicated: staff may resend a reminder at any time.

        Raises:
            ValidationError: Unknown alert code
            MembershipNotFoundError: Player has no memberships
        """
        self._require_role(actor_role, REMINDER_ROLES, "send reminders")
        threshold = get_threshold(alert_code or "")
        if threshold is None:
            raise ValidationError(f"Unknown alert code: {alert_code}", field="alert_code")

        membership = await self._current_membership(player_id)
        if membership is None:
            raise MembershipNotFoundError(f"No membership found for player: {player_id}")

        notice = await self._dispatch_alert(membership, threshold, dedupe=False)
        logger.info(
            f"Reminder {threshold.code} for player {player_id} requested by {actor_id}: "
            f"{'delivered' if notice.delivered else 'not delivered'}"
        )
        return SendReminderResponse(
            success=notice.delivered,
            message="Reminder sent" if notice.delivered else "Reminder could not be delivered",
            alert=notice,
        )

    async def run_maintenance(
        self,
        as_of: Optional[date] = None,
        *,
        actor_id: str = "membership_maintenance",
        actor_role: Union[ActorRole, str] = ActorRole.SYSTEM,
    ) -> MaintenanceReport:
        """
        Deactivate exhausted or expired memberships and send pending alerts.

        Meant to be invoked by an external scheduler. A failure on one
        membership is logged and does not stop the sweep.
        """
        self._require_role(actor_role, MAINTENANCE_ROLES, "run maintenance")
        as_of = as_of or self._today()

        active = await self.repository.list_memberships(status=MembershipStatus.ACTIVE)
        logger.info(f"Starting membership maintenance for {len(active)} active memberships as of {as_of}")

        report = MaintenanceReport(as_of=as_of, memberships_processed=len(active))
        for membership in active:
            try:
                current = await self._maintain(membership.id, as_of, actor_id)
            except MembershipLedgerError as e:
                logger.error(f"Maintenance failed for membership {membership.id}: {e}")
                report.failed_membership_ids.append(membership.id)
                continue

            if current.status != membership.status:
                report.deactivated_memberships += 1
                report.deactivated_membership_ids.append(current.id)
                await self._publish_status_changed(membership, current, actor_id)

            summary = project(current, as_of)
            for threshold in matching_thresholds(summary):
                notice = await self._dispatch_alert(current, threshold, dedupe=True)
                if notice is not None and notice.delivered:
                    report.alerts_sent += 1
                    report.alerts.append(notice)

        logger.info(
            f"Membership maintenance completed: processed={report.memberships_processed}, "
            f"deactivated={report.deactivated_memberships}, alerts_sent={report.alerts_sent}"
        )
        return report

    async def _maintain(self, membership_id: str, as_of: date, actor_id: str) -> PlayerMembership:
        """Apply date and usage based auto-deactivation to one membership"""

        async def attempt():
            current = await self._load_membership(membership_id)
            if current.status != MembershipStatus.ACTIVE:
                return current

            if should_auto_deactivate(current):
                reason = DeactivationReason.USAGE_EXHAUSTED
            elif is_expired(current.end_date, as_of) and not current.manual_override_active:
                reason = DeactivationReason.EXPIRED
            else:
                return current

            updated = current.model_copy(update={
                "status": MembershipStatus.INACTIVE,
                "deactivation_reason": reason,
                "updated_at": self.clock(),
            })
            entry = self._audit(
                current, AuditAction.AUTO_DEACTIVATED, actor_id,
                from_status=MembershipStatus.ACTIVE,
                to_status=MembershipStatus.INACTIVE,
                reason=reason.value,
                as_of=as_of.isoformat(),
            )
            saved = await self.repository.update_membership(
                updated, expected_version=current.version, audit_entries=[entry]
            )
            logger.info(f"Auto-deactivated membership {saved.id} ({reason.value})")
            return saved

        saved = await self._with_retries("maintenance", attempt)
        self.cache.invalidate_membership(saved.id, saved.player_id)
        return saved

    async def _dispatch_alert(
        self,
        membership: PlayerMembership,
        threshold: AlertThreshold,
        dedupe: bool,
    ) -> Optional[AlertNotice]:
        """
        Deliver an alert through the notification dispatcher.

        Never raises: delivery and bookkeeping failures are logged and
        reported as an undelivered notice. Returns None when ``dedupe`` is set
        and the code was already sent for this membership.
        """
        notice = AlertNotice(
            membership_id=membership.id,
            player_id=membership.player_id,
            alert_code=threshold.code,
            title=threshold.title,
            message=threshold.message,
            priority=threshold.priority,
        )
        if self.notification_dispatcher is None:
            logger.debug(f"No notification dispatcher configured, skipping {threshold.code}")
            return notice

        try:
            if dedupe and await self.repository.has_alert_been_sent(membership.id, threshold.code):
                return None

            notice.delivered = await self.notification_dispatcher.send(
                membership.player_id,
                threshold.code,
                {
                    "title": threshold.title,
                    "message": threshold.message,
                    "priority": threshold.priority.value,
                    "membership_id": membership.id,
                    "membership_type_name": membership.membership_type_name,
                },
            )
            if notice.delivered and dedupe:
                await self.repository.mark_alert_sent(membership.id, threshold.code)
        except Exception as e:
            logger.warning(f"Failed to dispatch {threshold.code} for membership {membership.id}: {e}")
            return notice

        if notice.delivered:
            logger.info(f"Sent {threshold.code} alert to player {membership.player_id}")
        return notice

    # ====================
    # Events
    # ====================

    async def _publish_status_changed(
        self, previous: PlayerMembership, saved: PlayerMembership, actor_id: str
    ) -> None:
        await self._publish_event(EventType.MEMBERSHIP_STATUS_CHANGED, MembershipStatusChangedEventData(
            membership_id=saved.id,
            player_id=saved.player_id,
            previous_status=previous.status.value,
            status=saved.status.value,
            deactivation_reason=saved.deactivation_reason.value if saved.deactivation_reason else None,
            actor_id=actor_id,
        ))

    async def _publish_event(self, event_type: EventType, data: MembershipLedgerBaseEventData) -> None:
        """Publish event to event bus"""
        if not self.event_bus:
            return

        try:
            payload = data.model_dump(mode="json")
            event = create_event(
                event_type=event_type,
                source=ServiceSource.MEMBERSHIP_LEDGER_SERVICE,
                data=payload,
                subject=payload.get("membership_id"),
            )
            await self.event_bus.publish_event(event)
        except Exception as e:
            logger.warning(f"Failed to publish event {event_type.value}: {e}")


__all__ = ["MembershipLedgerService"]
