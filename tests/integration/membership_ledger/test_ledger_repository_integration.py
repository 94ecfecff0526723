"""
Membership Ledger Repository Integration Tests

Exercises the PostgreSQL repository and the ledger service against a
real database: compare-and-swap updates, single ACTIVE membership per
player, atomic adjustment records and alert de-duplication.
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from microservices.membership_ledger_service.membership_ledger_service import MembershipLedgerService
from microservices.membership_ledger_service.models import (
    DeactivationReason,
    MembershipStatus,
)
from microservices.membership_ledger_service.events import MembershipLedgerEventHandlers
from microservices.membership_ledger_service.protocols import ConcurrencyConflict, DuplicateAdjustmentError

pytestmark = pytest.mark.integration


@pytest.fixture
def service(ledger_repository):
    return MembershipLedgerService(
        repository=ledger_repository,
        clock=lambda: datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc),
    )


async def assign(service, player_id="player_it", type_id="mt_10_class", **kwargs):
    kwargs.setdefault("start_date", date(2025, 3, 1))
    result = await service.assign(
        player_id=player_id,
        membership_type_id=type_id,
        actor_id="staff_it",
        actor_role="staff",
        **kwargs,
    )
    return result.membership


class TestMembershipPersistence:

    async def test_round_trip(self, service, ledger_repository):
        created = await assign(service)

        loaded = await ledger_repository.get_membership(created.id)

        assert loaded.player_id == "player_it"
        assert loaded.allocated_classes == 10
        assert loaded.remaining_classes == 10
        assert loaded.status == MembershipStatus.ACTIVE
        assert loaded.version == 1

    async def test_supersession_leaves_one_active(self, service, ledger_repository):
        first = await assign(service)
        second = await assign(service, type_id="mt_term", end_date=date(2025, 6, 30))

        previous = await ledger_repository.get_membership(first.id)
        active = await ledger_repository.list_memberships(
            player_id="player_it", status=MembershipStatus.ACTIVE
        )

        assert previous.deactivation_reason == DeactivationReason.SUPERSEDED
        assert [m.id for m in active] == [second.id]

    async def test_stale_version_rejected(self, service, ledger_repository):
        created = await assign(service)
        stale = await ledger_repository.get_membership(created.id)
        await service.adjust_usage(created.id, 1, "class", actor_id="s", actor_role="staff")

        with pytest.raises(ConcurrencyConflict):
            await ledger_repository.update_membership(
                stale.model_copy(update={"used_classes": 5, "remaining_classes": 5}),
                expected_version=stale.version,
            )


class TestAdjustmentsIntegration:

    async def test_adjustment_and_balance_commit_together(self, service, ledger_repository):
        created = await assign(service)

        await service.adjust_usage(created.id, 3, "class taken", actor_id="coach_it", actor_role="coach")
        history = await ledger_repository.list_adjustments(created.id)
        stored = await ledger_repository.get_membership(created.id)

        assert stored.used_classes == 3
        assert stored.version == 2
        assert [(r.delta, r.reason) for r in history] == [(3, "class taken")]

    async def test_concurrent_adjustments_are_serialized(self, service, ledger_repository):
        created = await assign(service)

        await asyncio.gather(*[
            service.adjust_usage(created.id, 1, f"class {i}", actor_id="s", actor_role="staff")
            for i in range(2)
        ])

        stored = await ledger_repository.get_membership(created.id)
        assert stored.used_classes == 2
        assert len(await ledger_repository.list_adjustments(created.id)) == 2

    async def test_exhaustion_audited(self, service, ledger_repository):
        created = await assign(service)

        await service.adjust_usage(created.id, 10, "bulk", actor_id="s", actor_role="staff")
        entries = await ledger_repository.list_audit_entries(created.id)

        assert {e.action.value for e in entries} >= {"assigned", "auto_deactivated"}

    async def test_repeated_source_ref_rolls_back(self, service, ledger_repository):
        created = await assign(service)
        await service.adjust_usage(created.id, 1, "class", actor_id="s", actor_role="system", source_ref="att_it_1")

        with pytest.raises(DuplicateAdjustmentError):
            await service.adjust_usage(created.id, 1, "class", actor_id="s", actor_role="system", source_ref="att_it_1")

        stored = await ledger_repository.get_membership(created.id)
        assert stored.used_classes == 1
        assert stored.version == 2
        assert [r.source_ref for r in await ledger_repository.list_adjustments(created.id)] == ["att_it_1"]

    async def test_concurrent_attendance_redelivery_charged_once(self, service, ledger_repository):
        created = await assign(service)
        handlers = MembershipLedgerEventHandlers(service)
        event = {"data": {"attendance_id": "att_it_2", "player_id": "player_it", "status": "present"}}

        await asyncio.gather(
            handlers.handle_attendance_recorded(event),
            handlers.handle_attendance_recorded(event),
        )

        stored = await ledger_repository.get_membership(created.id)
        assert stored.used_classes == 1
        assert len(await ledger_repository.list_adjustments(created.id)) == 1

    async def test_player_adjustments_span_memberships(self, service, ledger_repository):
        first = await assign(service)
        await service.adjust_usage(first.id, 1, "old", actor_id="s", actor_role="staff")
        second = await assign(service)
        await service.adjust_usage(second.id, 2, "new", actor_id="s", actor_role="staff")

        records = await ledger_repository.list_player_adjustments("player_it")

        assert {r.membership_id for r in records} == {first.id, second.id}
        assert len(await ledger_repository.list_player_adjustments("player_it", limit=1)) == 1


class TestAlertBookkeeping:

    async def test_mark_alert_sent_once(self, service, ledger_repository):
        created = await assign(service)

        assert await ledger_repository.mark_alert_sent(created.id, "REMAINING_3") is True
        assert await ledger_repository.mark_alert_sent(created.id, "REMAINING_3") is False
        assert await ledger_repository.has_alert_been_sent(created.id, "REMAINING_3") is True
