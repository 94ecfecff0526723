"""
Unit Test Fixtures for Membership Ledger Service

Provides mock fixtures for unit testing.
"""

import asyncio
import pytest
from datetime import date, datetime, timezone, timedelta
from typing import List, Optional, Dict, Any, Set, Tuple

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.membership_ledger_service.models import (
    AdjustmentRecord,
    AllocationType,
    DeactivationReason,
    MembershipAuditEntry,
    MembershipStatus,
    MembershipType,
    PlayerMembership,
)
from microservices.membership_ledger_service.protocols import ConcurrencyConflict, DuplicateAdjustmentError
from microservices.membership_ledger_service.membership_ledger_service import MembershipLedgerService
from microservices.membership_ledger_service.summary_cache import SummaryCache


# ====================
# Membership Types
# ====================

TEN_CLASS_PACK = MembershipType(
    id="mt_10_class",
    name="10 Class Pack",
    allocation_type=AllocationType.CLASS_COUNT,
    class_count=10,
)

MONTHLY_UNLIMITED = MembershipType(
    id="mt_unlimited",
    name="Monthly Unlimited",
    allocation_type=AllocationType.UNLIMITED,
)

TERM_PASS = MembershipType(
    id="mt_term",
    name="Term Pass",
    allocation_type=AllocationType.DATE_RANGE,
)

RETIRED_PACK = MembershipType(
    id="mt_retired",
    name="Retired 5 Pack",
    allocation_type=AllocationType.CLASS_COUNT,
    class_count=5,
    is_active=False,
)


# ====================
# Mock Repository
# ====================


class MockMembershipLedgerRepository:
    """In-memory ledger repository with version compare-and-swap"""

    def __init__(self):
        self.types: Dict[str, MembershipType] = {
            t.id: t for t in (TEN_CLASS_PACK, MONTHLY_UNLIMITED, TERM_PASS, RETIRED_PACK)
        }
        self.memberships: Dict[str, PlayerMembership] = {}
        self.adjustments: List[AdjustmentRecord] = []
        self.audit: List[MembershipAuditEntry] = []
        self.alerts_sent: Set[Tuple[str, str]] = set()
        # Exceptions raised by the next write calls, in order
        self.write_failures: List[Exception] = []
        self.type_failure: Optional[Exception] = None
        self.write_calls = 0

    async def initialize(self):
        pass

    async def close(self):
        pass

    def _maybe_fail(self):
        self.write_calls += 1
        if self.write_failures:
            raise self.write_failures.pop(0)

    # Membership types
    async def list_membership_types(self, active_only: bool = True) -> List[MembershipType]:
        if self.type_failure:
            raise self.type_failure
        types = list(self.types.values())
        if active_only:
            types = [t for t in types if t.is_active]
        return types

    async def get_membership_type(self, type_id: str) -> Optional[MembershipType]:
        if self.type_failure:
            raise self.type_failure
        return self.types.get(type_id)

    # Memberships
    async def get_membership(self, membership_id: str) -> Optional[PlayerMembership]:
        m = self.memberships.get(membership_id)
        return m.model_copy() if m else None

    async def get_active_membership(self, player_id: str) -> Optional[PlayerMembership]:
        for m in self.memberships.values():
            if m.player_id == player_id and m.status == MembershipStatus.ACTIVE:
                return m.model_copy()
        return None

    async def get_latest_membership(self, player_id: str) -> Optional[PlayerMembership]:
        owned = [m for m in self.memberships.values() if m.player_id == player_id]
        if not owned:
            return None
        # dict preserves insertion order; the last inserted is the newest
        return owned[-1].model_copy()

    async def list_memberships(self, player_id=None, status=None) -> List[PlayerMembership]:
        results = list(self.memberships.values())
        if player_id:
            results = [m for m in results if m.player_id == player_id]
        if status:
            results = [m for m in results if m.status == status]
        return [m.model_copy() for m in reversed(results)]

    def _supersede(self, previous: PlayerMembership):
        stored = self.memberships.get(previous.id)
        if stored is None or stored.version != previous.version or stored.status != MembershipStatus.ACTIVE:
            raise ConcurrencyConflict(
                f"Active membership {previous.id} changed before it could be superseded",
                membership_id=previous.id,
                expected_version=previous.version,
            )
        return stored.model_copy(update={
            "status": MembershipStatus.INACTIVE,
            "deactivation_reason": DeactivationReason.SUPERSEDED,
            "version": stored.version + 1,
        })

    def _check_single_active(self, membership: PlayerMembership, ignore: Set[str]):
        if membership.status != MembershipStatus.ACTIVE:
            return
        for m in self.memberships.values():
            if (
                m.id not in ignore
                and m.id != membership.id
                and m.player_id == membership.player_id
                and m.status == MembershipStatus.ACTIVE
            ):
                raise ConcurrencyConflict(
                    f"Player {membership.player_id} already has an active membership",
                    membership_id=membership.id,
                )

    async def create_membership(self, membership, supersede=None, audit_entries=None) -> PlayerMembership:
        await asyncio.sleep(0)
        self._maybe_fail()
        superseded = self._supersede(supersede) if supersede is not None else None
        self._check_single_active(membership, {supersede.id} if supersede else set())

        if superseded is not None:
            self.memberships[superseded.id] = superseded
        self.memberships[membership.id] = membership.model_copy()
        self.audit.extend(audit_entries or [])
        return membership.model_copy()

    async def update_membership(
        self, membership, expected_version, adjustment=None, audit_entries=None, supersede=None
    ) -> PlayerMembership:
        await asyncio.sleep(0)
        self._maybe_fail()
        stored = self.memberships.get(membership.id)
        if stored is None or stored.version != expected_version:
            raise ConcurrencyConflict(
                f"Membership {membership.id} changed since version {expected_version}",
                membership_id=membership.id,
                expected_version=expected_version,
            )
        self._check_source_ref(adjustment)
        superseded = self._supersede(supersede) if supersede is not None else None
        self._check_single_active(membership, {supersede.id} if supersede else set())

        saved = membership.model_copy(update={"version": expected_version + 1})
        if superseded is not None:
            self.memberships[superseded.id] = superseded
        self.memberships[saved.id] = saved
        if adjustment is not None:
            self.adjustments.append(adjustment)
        self.audit.extend(audit_entries or [])
        return saved.model_copy()

    def _check_source_ref(self, adjustment: Optional[AdjustmentRecord]):
        if adjustment is None or not adjustment.source_ref:
            return
        for a in self.adjustments:
            if a.membership_id == adjustment.membership_id and a.source_ref == adjustment.source_ref:
                raise DuplicateAdjustmentError(
                    f"Adjustment {adjustment.source_ref} already recorded",
                    membership_id=adjustment.membership_id,
                    source_ref=adjustment.source_ref,
                )

    # Adjustments
    async def list_adjustments(self, membership_id: str) -> List[AdjustmentRecord]:
        return [a for a in reversed(self.adjustments) if a.membership_id == membership_id]

    async def list_player_adjustments(self, player_id: str, limit: int = 50) -> List[AdjustmentRecord]:
        owned = {m.id for m in self.memberships.values() if m.player_id == player_id}
        records = [a for a in self.adjustments if a.membership_id in owned]
        records.sort(key=lambda a: a.timestamp, reverse=True)
        return records[:limit]

    async def list_audit_entries(self, membership_id: str) -> List[MembershipAuditEntry]:
        return [e for e in reversed(self.audit) if e.membership_id == membership_id]

    # Alerts
    async def has_alert_been_sent(self, membership_id: str, alert_code: str) -> bool:
        return (membership_id, alert_code) in self.alerts_sent

    async def mark_alert_sent(self, membership_id: str, alert_code: str) -> bool:
        key = (membership_id, alert_code)
        if key in self.alerts_sent:
            return False
        self.alerts_sent.add(key)
        return True

    # Test helpers
    def seed_membership(self, **fields: Any) -> PlayerMembership:
        """Insert a membership directly, bypassing the service"""
        data = {
            "id": f"pm_seed_{len(self.memberships) + 1:04d}",
            "player_id": "player_seed",
            "membership_type_id": TEN_CLASS_PACK.id,
            "membership_type_name": TEN_CLASS_PACK.name,
            "allocation_type": AllocationType.CLASS_COUNT,
            "start_date": date(2025, 3, 1),
            "allocated_classes": 10,
            "used_classes": 0,
        }
        data.update(fields)
        if data["allocated_classes"] is not None and "remaining_classes" not in fields:
            data["remaining_classes"] = data["allocated_classes"] - data["used_classes"]
        membership = PlayerMembership(**data)
        self.memberships[membership.id] = membership
        return membership.model_copy()


# ====================
# Mock Event Bus
# ====================


class MockEventBus:
    """Mock event bus for unit testing"""

    def __init__(self):
        self.published_events: List[Any] = []
        self.subscriptions: Dict[str, Any] = {}

    async def publish_event(self, event) -> bool:
        self.published_events.append(event)
        return True

    async def subscribe_to_events(self, pattern: str, handler, durable: Optional[str] = None):
        self.subscriptions[pattern] = handler
        return durable

    async def close(self) -> None:
        pass

    def events_of_type(self, event_type: str) -> List[Any]:
        return [e for e in self.published_events if e.type == event_type]


# ====================
# Mock Notification Dispatcher
# ====================


class MockNotificationDispatcher:
    """Records alerts; ``fail`` makes every delivery unsuccessful"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def send(self, player_id: str, alert_code: str, context: Optional[Dict[str, Any]] = None) -> bool:
        if self.fail:
            return False
        self.sent.append({"player_id": player_id, "alert_code": alert_code, "context": context or {}})
        return True

    async def close(self):
        pass

    def codes(self) -> List[str]:
        return [s["alert_code"] for s in self.sent]


# ====================
# Fixed Clock
# ====================


class FixedClock:
    """Deterministic UTC clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, seconds: int = 0):
        self.now = self.now + timedelta(days=days, seconds=seconds)

    @property
    def today(self) -> date:
        return self.now.date()


# ====================
# Fixtures
# ====================


@pytest.fixture
def clock():
    """Clock fixed at 2025-03-10 12:00 UTC"""
    return FixedClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def mock_repository():
    """Create mock repository"""
    return MockMembershipLedgerRepository()


@pytest.fixture
def mock_event_bus():
    """Create mock event bus"""
    return MockEventBus()


@pytest.fixture
def mock_dispatcher():
    """Create mock notification dispatcher"""
    return MockNotificationDispatcher()


@pytest.fixture
def ledger_service(mock_repository, mock_event_bus, mock_dispatcher, clock):
    """Create ledger service with mocks; store retries do not sleep"""
    return MembershipLedgerService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        notification_dispatcher=mock_dispatcher,
        summary_cache=SummaryCache(ttl_seconds=300),
        clock=clock,
        store_retry_attempts=3,
        store_retry_min_wait=0,
        store_retry_max_wait=0,
    )


@pytest.fixture
async def class_membership(ledger_service):
    """Fresh 10 class membership for player_123"""
    result = await ledger_service.assign(
        player_id="player_123",
        membership_type_id=TEN_CLASS_PACK.id,
        start_date=date(2025, 3, 1),
        actor_id="staff_1",
        actor_role="staff",
    )
    return result.membership


@pytest.fixture
async def term_membership(ledger_service):
    """Date-range membership ending 2025-03-17 for player_term"""
    result = await ledger_service.assign(
        player_id="player_term",
        membership_type_id=TERM_PASS.id,
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 17),
        actor_id="staff_1",
        actor_role="staff",
    )
    return result.membership
