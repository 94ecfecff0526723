"""
Adjustment Auditor

Builds, validates and reads the append-only usage adjustment log. Records
are only persisted together with the balance change they describe, through
the repository's conditional membership update, so the history deltas
always sum to ``used_classes``. There is no update or delete path: mistakes
are corrected with a compensating adjustment.
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .models import ActorRole, AdjustmentRecord
from .protocols import (
    MembershipLedgerRepositoryProtocol,
    ValidationError,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdjustmentAuditor:
    """Append-only adjustment log"""

    def __init__(
        self,
        repository: MembershipLedgerRepositoryProtocol,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.clock = clock

    @staticmethod
    def validate(delta: int, reason: Optional[str]) -> str:
        """
        Check an adjustment's delta and reason.

        Returns:
            The trimmed reason

        Raises:
            ValidationError: delta is zero or reason is blank
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("Adjustment delta must be an integer", field="delta")
        if delta == 0:
            raise ValidationError("Adjustment delta must be non-zero", field="delta")
        trimmed = (reason or "").strip()
        if not trimmed:
            raise ValidationError("Adjustment reason is required", field="reason")
        return trimmed

    def build(
        self,
        membership_id: str,
        delta: int,
        reason: str,
        actor_id: str,
        actor_role: Optional[ActorRole] = None,
        used_before: Optional[int] = None,
        used_after: Optional[int] = None,
        source_ref: Optional[str] = None,
    ) -> AdjustmentRecord:
        """Create a validated, not yet persisted, adjustment record"""
        trimmed = self.validate(delta, reason)
        return AdjustmentRecord(
            id=f"adj_{uuid.uuid4().hex[:16]}",
            membership_id=membership_id,
            delta=delta,
            reason=trimmed,
            actor_id=actor_id,
            actor_role=actor_role,
            used_before=used_before,
            used_after=used_after,
            source_ref=source_ref,
            timestamp=self.clock(),
        )

    async def history(self, membership_id: str) -> List[AdjustmentRecord]:
        """Adjustment history for a membership, newest first"""
        records = await self.repository.list_adjustments(membership_id)
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def player_history(self, player_id: str, limit: int = 50) -> List[AdjustmentRecord]:
        """Recent adjustments across all of a player's memberships, newest first"""
        records = await self.repository.list_player_adjustments(player_id, limit=limit)
        return sorted(records, key=lambda r: r.timestamp, reverse=True)[:limit]


__all__ = ["AdjustmentAuditor"]
