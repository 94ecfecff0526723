"""
Membership alert thresholds

Remaining-class and days-left thresholds that trigger player reminders.
Each code is delivered at most once per membership by the automatic paths.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import AlertPriority, AllocationType, MembershipSummary


@dataclass(frozen=True)
class AlertThreshold:
    """A single alert trigger"""
    code: str
    title: str
    message: str
    allocation_type: AllocationType
    trigger_value: int
    priority: AlertPriority = AlertPriority.NORMAL

    def observed_value(self, summary: MembershipSummary) -> Optional[int]:
        if summary.allocation_type != self.allocation_type:
            return None
        if self.allocation_type == AllocationType.CLASS_COUNT:
            return summary.remaining_classes
        return summary.days_left

    def matches(self, summary: MembershipSummary) -> bool:
        return self.observed_value(summary) == self.trigger_value


ALERT_THRESHOLDS: List[AlertThreshold] = [
    AlertThreshold(
        code="REMAINING_3",
        title="Only 3 Classes Remaining",
        message="You have 3 classes left in your membership. Consider renewing soon!",
        allocation_type=AllocationType.CLASS_COUNT,
        trigger_value=3,
    ),
    AlertThreshold(
        code="REMAINING_1",
        title="Only 1 Class Remaining",
        message="You have only 1 class left in your membership. Please renew to continue.",
        allocation_type=AllocationType.CLASS_COUNT,
        trigger_value=1,
    ),
    AlertThreshold(
        code="REMAINING_0",
        title="Membership Used Up",
        message="Your membership has been fully used. Please renew to continue attending classes.",
        allocation_type=AllocationType.CLASS_COUNT,
        trigger_value=0,
        priority=AlertPriority.HIGH,
    ),
    AlertThreshold(
        code="DATE_7D",
        title="Membership Expires in 7 Days",
        message="Your membership will expire in 7 days. Please renew to continue.",
        allocation_type=AllocationType.DATE_RANGE,
        trigger_value=7,
    ),
    AlertThreshold(
        code="DATE_3D",
        title="Membership Expires in 3 Days",
        message="Your membership will expire in 3 days. Please renew immediately.",
        allocation_type=AllocationType.DATE_RANGE,
        trigger_value=3,
    ),
    AlertThreshold(
        code="DATE_1D",
        title="Membership Expires Tomorrow",
        message="Your membership expires tomorrow. Please renew now to avoid interruption.",
        allocation_type=AllocationType.DATE_RANGE,
        trigger_value=1,
    ),
    AlertThreshold(
        code="DATE_0D",
        title="Membership Expired",
        message="Your membership has expired. Please renew to continue attending classes.",
        allocation_type=AllocationType.DATE_RANGE,
        trigger_value=0,
        priority=AlertPriority.HIGH,
    ),
]

ALERTS_BY_CODE: Dict[str, AlertThreshold] = {t.code: t for t in ALERT_THRESHOLDS}


def get_threshold(code: str) -> Optional[AlertThreshold]:
    return ALERTS_BY_CODE.get(code.strip().upper())


def matching_thresholds(summary: MembershipSummary) -> List[AlertThreshold]:
    """Thresholds whose trigger equals the summary's current value"""
    return [t for t in ALERT_THRESHOLDS if t.matches(summary)]


def crossed_threshold(
    previous_remaining: Optional[int],
    summary: MembershipSummary,
) -> Optional[AlertThreshold]:
    """
    The tightest remaining-class threshold crossed by a usage change.

    A change from 5 to 0 remaining crosses REMAINING_3, REMAINING_1 and
    REMAINING_0; only REMAINING_0 is returned.
    """
    current = summary.remaining_classes
    if (
        summary.allocation_type != AllocationType.CLASS_COUNT
        or previous_remaining is None
        or current is None
        or current >= previous_remaining
    ):
        return None

    crossed = [
        t for t in ALERT_THRESHOLDS
        if t.allocation_type == AllocationType.CLASS_COUNT
        and current <= t.trigger_value < previous_remaining
    ]
    if not crossed:
        return None
    return min(crossed, key=lambda t: t.trigger_value)


__all__ = [
    "AlertThreshold",
    "ALERT_THRESHOLDS",
    "ALERTS_BY_CODE",
    "get_threshold",
    "matching_thresholds",
    "crossed_threshold",
]
