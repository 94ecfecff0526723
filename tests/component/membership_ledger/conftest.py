"""
Component Test Fixtures for Membership Ledger Service

Provides fixtures for component testing with FastAPI TestClient.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.membership_ledger_service.models import (
    AllocationType,
    DeactivationReason,
    MembershipStatus,
    MembershipType,
    PlayerMembership,
)
from microservices.membership_ledger_service.protocols import ConcurrencyConflict, DuplicateAdjustmentError

FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# Mock repository for component tests
class MockMembershipLedgerRepository:
    """Mock repository for component testing"""

    def __init__(self):
        self.types = {
            "mt_10_class": MembershipType(
                id="mt_10_class", name="10 Class Pack",
                allocation_type=AllocationType.CLASS_COUNT, class_count=10,
            ),
            "mt_term": MembershipType(
                id="mt_term", name="Term Pass", allocation_type=AllocationType.DATE_RANGE,
            ),
        }
        self.memberships: Dict[str, PlayerMembership] = {}
        self.adjustments = []
        self.audit = []
        self.alerts_sent = set()
        self.store_error: Optional[Exception] = None
        self.db = MagicMock()
        self.db.health_check = AsyncMock(return_value={"healthy": True})

    async def initialize(self):
        pass

    async def close(self):
        pass

    async def list_membership_types(self, active_only=True):
        return [t for t in self.types.values() if t.is_active or not active_only]

    async def get_membership_type(self, type_id):
        return self.types.get(type_id)

    async def get_membership(self, membership_id):
        m = self.memberships.get(membership_id)
        return m.model_copy() if m else None

    async def get_active_membership(self, player_id):
        for m in self.memberships.values():
            if m.player_id == player_id and m.status == MembershipStatus.ACTIVE:
                return m.model_copy()
        return None

    async def get_latest_membership(self, player_id):
        owned = [m for m in self.memberships.values() if m.player_id == player_id]
        return owned[-1].model_copy() if owned else None

    async def list_memberships(self, player_id=None, status=None):
        results = list(self.memberships.values())
        if player_id:
            results = [m for m in results if m.player_id == player_id]
        if status:
            results = [m for m in results if m.status == status]
        return list(reversed(results))

    def _supersede(self, previous):
        self.memberships[previous.id] = self.memberships[previous.id].model_copy(update={
            "status": MembershipStatus.INACTIVE,
            "deactivation_reason": DeactivationReason.SUPERSEDED,
            "version": previous.version + 1,
        })

    async def create_membership(self, membership, supersede=None, audit_entries=None):
        if self.store_error:
            raise self.store_error
        if supersede is not None:
            self._supersede(supersede)
        self.memberships[membership.id] = membership
        self.audit.extend(audit_entries or [])
        return membership

    async def update_membership(self, membership, expected_version, adjustment=None, audit_entries=None, supersede=None):
        if self.store_error:
            raise self.store_error
        if self.memberships[membership.id].version != expected_version:
            raise ConcurrencyConflict("stale", membership_id=membership.id, expected_version=expected_version)
        if adjustment is not None and adjustment.source_ref and any(
            a.membership_id == adjustment.membership_id and a.source_ref == adjustment.source_ref
            for a in self.adjustments
        ):
            raise DuplicateAdjustmentError("duplicate", membership_id=membership.id, source_ref=adjustment.source_ref)
        if supersede is not None:
            self._supersede(supersede)
        saved = membership.model_copy(update={"version": expected_version + 1})
        self.memberships[saved.id] = saved
        if adjustment is not None:
            self.adjustments.append(adjustment)
        self.audit.extend(audit_entries or [])
        return saved

    async def list_adjustments(self, membership_id):
        return [a for a in reversed(self.adjustments) if a.membership_id == membership_id]

    async def list_player_adjustments(self, player_id, limit=50):
        owned = {m.id for m in self.memberships.values() if m.player_id == player_id}
        records = [a for a in self.adjustments if a.membership_id in owned]
        return sorted(records, key=lambda a: a.timestamp, reverse=True)[:limit]

    async def list_audit_entries(self, membership_id):
        return [e for e in reversed(self.audit) if e.membership_id == membership_id]

    async def has_alert_been_sent(self, membership_id, alert_code):
        return (membership_id, alert_code) in self.alerts_sent

    async def mark_alert_sent(self, membership_id, alert_code):
        self.alerts_sent.add((membership_id, alert_code))
        return True


@pytest.fixture
def mock_repository():
    """Get fresh mock repository for each test"""
    return MockMembershipLedgerRepository()


@pytest.fixture
def mock_dispatcher():
    dispatcher = MagicMock()
    dispatcher.send = AsyncMock(return_value=True)
    dispatcher.close = AsyncMock()
    return dispatcher


@pytest.fixture
def ledger_service(mock_repository, mock_dispatcher):
    from microservices.membership_ledger_service.membership_ledger_service import MembershipLedgerService

    mock_event_bus = MagicMock()
    mock_event_bus.publish_event = AsyncMock(return_value=True)
    mock_event_bus.close = AsyncMock()

    return MembershipLedgerService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        notification_dispatcher=mock_dispatcher,
        clock=lambda: FIXED_NOW,
        store_retry_min_wait=0,
        store_retry_max_wait=0,
    )


@pytest.fixture
def client(ledger_service):
    """Create FastAPI test client with mocked dependencies"""
    from fastapi.testclient import TestClient

    with patch("microservices.membership_ledger_service.main.ledger_service", ledger_service), \
         patch("microservices.membership_ledger_service.main.event_bus", None):

        from microservices.membership_ledger_service.main import app

        app.dependency_overrides = {}

        # No context manager: the lifespan would connect to real infrastructure
        yield TestClient(app, raise_server_exceptions=False)


STAFF = {"X-Actor-Id": "staff_1", "X-Actor-Role": "staff"}
COACH = {"X-Actor-Id": "coach_1", "X-Actor-Role": "coach"}
ADMIN = {"X-Actor-Id": "admin_1", "X-Actor-Role": "admin"}


@pytest.fixture
def staff_headers() -> Dict[str, str]:
    return dict(STAFF)


@pytest.fixture
def coach_headers() -> Dict[str, str]:
    return dict(COACH)


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return dict(ADMIN)


@pytest.fixture
def assigned_membership(client, staff_headers) -> Dict[str, Any]:
    """Assign a 10 class pack to player_123 through the API"""
    response = client.post(
        "/api/v1/membership-ledger/memberships",
        json={"player_id": "player_123", "membership_type_id": "mt_10_class", "start_date": "2025-03-01"},
        headers=staff_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["membership"]
