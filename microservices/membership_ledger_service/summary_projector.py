"""
Membership Summary Projector

Pure functions deriving the read-side MembershipSummary from a ledger
record. The auto-deactivation predicate lives here and is shared with the
ledger, so a summary can flag a pending deactivation before the ledger has
flipped the status.
"""

from datetime import date, datetime
from typing import Optional, Union

from .models import AllocationType, MembershipSummary, PlayerMembership


def resolve_allocated_classes(
    allocation_type: AllocationType,
    type_class_count: int,
    override_class_count: Optional[int] = None,
) -> Optional[int]:
    """Override wins over the type default; null for non CLASS_COUNT types"""
    if allocation_type != AllocationType.CLASS_COUNT:
        return None
    if override_class_count is not None:
        return override_class_count
    return type_class_count


def compute_remaining(allocated_classes: Optional[int], used_classes: int) -> Optional[int]:
    if allocated_classes is None:
        return None
    return allocated_classes - used_classes


def should_auto_deactivate(membership: PlayerMembership) -> bool:
    """Usage-exhaustion predicate for CLASS_COUNT memberships"""
    return (
        membership.allocation_type == AllocationType.CLASS_COUNT
        and membership.remaining_classes is not None
        and membership.remaining_classes <= 0
        and membership.auto_deactivate_when_used_up
        and not membership.manual_override_active
    )


def compute_days_left(end_date: Optional[date], as_of: date) -> Optional[int]:
    """Whole calendar days until end_date; negative once the date has passed"""
    if end_date is None:
        return None
    return (end_date - as_of).days


def is_expired(end_date: Optional[date], as_of: date) -> bool:
    return end_date is not None and end_date < as_of


def project(membership: PlayerMembership, as_of: Union[date, datetime]) -> MembershipSummary:
    """
    Project a membership into its summary as of a given day.

    Deterministic for a given (membership, as_of) pair; performs no I/O.
    """
    if isinstance(as_of, datetime):
        as_of = as_of.date()

    remaining = compute_remaining(membership.allocated_classes, membership.used_classes)

    return MembershipSummary(
        membership_id=membership.id,
        player_id=membership.player_id,
        membership_type_id=membership.membership_type_id,
        membership_type_name=membership.membership_type_name,
        allocation_type=membership.allocation_type,
        status=membership.status,
        deactivation_reason=membership.deactivation_reason,
        start_date=membership.start_date,
        end_date=membership.end_date,
        allocated_classes=membership.allocated_classes,
        used_classes=membership.used_classes,
        remaining_classes=remaining,
        days_left=compute_days_left(membership.end_date, as_of),
        is_expired=is_expired(membership.end_date, as_of),
        should_deactivate=should_auto_deactivate(membership),
        negative_balance_warning=remaining is not None and remaining < 0,
        manual_override_active=membership.manual_override_active,
        auto_deactivate_when_used_up=membership.auto_deactivate_when_used_up,
        as_of=as_of,
    )


__all__ = [
    "resolve_allocated_classes",
    "compute_remaining",
    "should_auto_deactivate",
    "compute_days_left",
    "is_expired",
    "project",
]
