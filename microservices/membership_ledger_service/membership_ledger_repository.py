"""
Membership Ledger Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import asyncpg

from core.postgres_client import PostgresClientWrapper
from .models import (
    ActorRole,
    AdjustmentRecord,
    AllocationType,
    AuditAction,
    DeactivationReason,
    MembershipAuditEntry,
    MembershipStatus,
    MembershipType,
    PlayerMembership,
)
from .protocols import ConcurrencyConflict, DuplicateAdjustmentError, StoreUnavailable

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.TooManyConnectionsError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
)

SCHEMA_DDL = """
CREATE SCHEMA IF NOT EXISTS {schema};

CREATE TABLE IF NOT EXISTS {schema}.membership_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    allocation_type TEXT NOT NULL CHECK (allocation_type IN ('CLASS_COUNT', 'UNLIMITED', 'DATE_RANGE')),
    class_count INTEGER NOT NULL DEFAULT 0 CHECK (class_count >= 0),
    start_date_required BOOLEAN NOT NULL DEFAULT TRUE,
    end_date_required BOOLEAN NOT NULL DEFAULT FALSE,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    description TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS {schema}.player_memberships (
    id TEXT PRIMARY KEY,
    player_id TEXT NOT NULL,
    membership_type_id TEXT NOT NULL REFERENCES {schema}.membership_types(id),
    membership_type_name TEXT,
    allocation_type TEXT NOT NULL,
    start_date DATE,
    end_date DATE,
    override_class_count INTEGER CHECK (override_class_count >= 0),
    allocated_classes INTEGER,
    used_classes INTEGER NOT NULL DEFAULT 0 CHECK (used_classes >= 0),
    remaining_classes INTEGER,
    status TEXT NOT NULL CHECK (status IN ('ACTIVE', 'INACTIVE', 'PAUSED')),
    deactivation_reason TEXT,
    auto_deactivate_when_used_up BOOLEAN NOT NULL DEFAULT TRUE,
    manual_override_active BOOLEAN NOT NULL DEFAULT FALSE,
    notes TEXT,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (remaining_classes IS NULL OR remaining_classes = allocated_classes - used_classes)
);

CREATE UNIQUE INDEX IF NOT EXISTS player_memberships_one_active
    ON {schema}.player_memberships (player_id) WHERE status = 'ACTIVE';

CREATE TABLE IF NOT EXISTS {schema}.usage_adjustments (
    id TEXT PRIMARY KEY,
    membership_id TEXT NOT NULL REFERENCES {schema}.player_memberships(id),
    delta INTEGER NOT NULL CHECK (delta <> 0),
    reason TEXT NOT NULL CHECK (length(btrim(reason)) > 0),
    actor_id TEXT NOT NULL,
    actor_role TEXT,
    used_before INTEGER,
    used_after INTEGER,
    source_ref TEXT,
    created_at TIMESTAMPTZ NOT NULL
);

ALTER TABLE {schema}.usage_adjustments ADD COLUMN IF NOT EXISTS source_ref TEXT;

CREATE UNIQUE INDEX IF NOT EXISTS usage_adjustments_source_ref
    ON {schema}.usage_adjustments (membership_id, source_ref) WHERE source_ref IS NOT NULL;

CREATE INDEX IF NOT EXISTS usage_adjustments_membership
    ON {schema}.usage_adjustments (membership_id, created_at DESC);

CREATE TABLE IF NOT EXISTS {schema}.membership_audit (
    id TEXT PRIMARY KEY,
    membership_id TEXT NOT NULL REFERENCES {schema}.player_memberships(id),
    player_id TEXT NOT NULL,
    action TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT,
    details JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS {schema}.alerts_sent (
    membership_id TEXT NOT NULL REFERENCES {schema}.player_memberships(id),
    alert_code TEXT NOT NULL,
    sent_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (membership_id, alert_code)
);
"""


class MembershipLedgerRepository:
    """Membership ledger data repository - PostgreSQL (asyncpg)"""

    def __init__(self, db: PostgresClientWrapper, schema: str = "membership_ledger", create_schema: bool = True):
        self.db = db
        self.schema = schema
        self.create_schema = create_schema
        self.types_table = f"{schema}.membership_types"
        self.memberships_table = f"{schema}.player_memberships"
        self.adjustments_table = f"{schema}.usage_adjustments"
        self.audit_table = f"{schema}.membership_audit"
        self.alerts_table = f"{schema}.alerts_sent"

    async def initialize(self):
        """Initialize database pool and schema"""
        async with self._store_errors("initialize"):
            await self.db.connect()
            if self.create_schema:
                async with self.db.transaction() as conn:
                    await conn.execute(SCHEMA_DDL.format(schema=self.schema))
        logger.info("Membership ledger repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Membership ledger repository database connection closed")

    @asynccontextmanager
    async def _store_errors(self, operation: str):
        """Translate driver failures into ledger errors"""
        try:
            yield
        except asyncpg.UniqueViolationError as e:
            logger.warning(f"{operation}: unique constraint conflict: {e}")
            raise ConcurrencyConflict(f"Conflicting write during {operation}") from e
        except _TRANSIENT_ERRORS as e:
            logger.error(f"{operation}: store unavailable: {e}")
            raise StoreUnavailable(f"Store unavailable during {operation}") from e

    # ====================
    # Membership Types
    # ====================

    async def list_membership_types(self, active_only: bool = True) -> List[MembershipType]:
        """List membership types"""
        query = f"SELECT * FROM {self.types_table}"
        if active_only:
            query += " WHERE is_active = TRUE"
        query += " ORDER BY name"
        async with self._store_errors("list_membership_types"):
            rows = await self.db.query(query)
        return [self._row_to_type(r) for r in rows]

    async def get_membership_type(self, type_id: str) -> Optional[MembershipType]:
        """Get membership type by ID"""
        async with self._store_errors("get_membership_type"):
            row = await self.db.query_row(
                f"SELECT * FROM {self.types_table} WHERE id = $1", [type_id]
            )
        return self._row_to_type(row) if row else None

    async def upsert_membership_type(self, membership_type: MembershipType) -> MembershipType:
        """Create or replace a membership type (administrative seeding)"""
        query = f'''
            INSERT INTO {self.types_table} (
                id, name, allocation_type, class_count, start_date_required,
                end_date_required, is_active, description
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                allocation_type = EXCLUDED.allocation_type,
                class_count = EXCLUDED.class_count,
                start_date_required = EXCLUDED.start_date_required,
                end_date_required = EXCLUDED.end_date_required,
                is_active = EXCLUDED.is_active,
                description = EXCLUDED.description
            RETURNING *
        '''
        params = [
            membership_type.id,
            membership_type.name,
            membership_type.allocation_type.value,
            membership_type.class_count,
            membership_type.start_date_required,
            membership_type.end_date_required,
            membership_type.is_active,
            membership_type.description,
        ]
        async with self._store_errors("upsert_membership_type"):
            row = await self.db.query_row(query, params)
        return self._row_to_type(row)

    # ====================
    # Memberships
    # ====================

    async def get_membership(self, membership_id: str) -> Optional[PlayerMembership]:
        """Get membership by ID"""
        async with self._store_errors("get_membership"):
            row = await self.db.query_row(
                f"SELECT * FROM {self.memberships_table} WHERE id = $1", [membership_id]
            )
        return self._row_to_membership(row) if row else None

    async def get_active_membership(self, player_id: str) -> Optional[PlayerMembership]:
        """Get the player's ACTIVE membership"""
        async with self._store_errors("get_active_membership"):
            row = await self.db.query_row(
                f"SELECT * FROM {self.memberships_table} WHERE player_id = $1 AND status = $2",
                [player_id, MembershipStatus.ACTIVE.value],
            )
        return self._row_to_membership(row) if row else None

    async def get_latest_membership(self, player_id: str) -> Optional[PlayerMembership]:
        """Get the player's most recent membership"""
        async with self._store_errors("get_latest_membership"):
            row = await self.db.query_row(
                f'''SELECT * FROM {self.memberships_table}
                    WHERE player_id = $1
                    ORDER BY created_at DESC LIMIT 1''',
                [player_id],
            )
        return self._row_to_membership(row) if row else None

    async def list_memberships(
        self,
        player_id: Optional[str] = None,
        status: Optional[MembershipStatus] = None,
    ) -> List[PlayerMembership]:
        """List memberships with filters, newest first"""
        conditions = []
        params: List[Any] = []
        if player_id:
            params.append(player_id)
            conditions.append(f"player_id = ${len(params)}")
        if status:
            params.append(status.value)
            conditions.append(f"status = ${len(params)}")

        query = f"SELECT * FROM {self.memberships_table}"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC"

        async with self._store_errors("list_memberships"):
            rows = await self.db.query(query, params)
        return [self._row_to_membership(r) for r in rows]

    async def create_membership(
        self,
        membership: PlayerMembership,
        supersede: Optional[PlayerMembership] = None,
        audit_entries: Optional[List[MembershipAuditEntry]] = None,
    ) -> PlayerMembership:
        """Insert a membership, superseding the previous ACTIVE one atomically"""
        now = membership.created_at or datetime.now(timezone.utc)
        query = f'''
            INSERT INTO {self.memberships_table} (
                id, player_id, membership_type_id, membership_type_name, allocation_type,
                start_date, end_date, override_class_count, allocated_classes,
                used_classes, remaining_classes, status, deactivation_reason,
                auto_deactivate_when_used_up, manual_override_active, notes,
                version, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18, $19)
            RETURNING *
        '''
        params = [
            membership.id,
            membership.player_id,
            membership.membership_type_id,
            membership.membership_type_name,
            membership.allocation_type.value,
            membership.start_date,
            membership.end_date,
            membership.override_class_count,
            membership.allocated_classes,
            membership.used_classes,
            membership.remaining_classes,
            membership.status.value,
            membership.deactivation_reason.value if membership.deactivation_reason else None,
            membership.auto_deactivate_when_used_up,
            membership.manual_override_active,
            membership.notes,
            membership.version,
            now,
            now,
        ]

        async with self._store_errors("create_membership"):
            async with self.db.transaction() as conn:
                if supersede is not None:
                    await self._supersede(conn, supersede, now)
                row = await conn.fetchrow(query, *params)
                for entry in audit_entries or []:
                    await self._insert_audit(conn, entry)

        created = self._row_to_membership(dict(row))
        logger.info(f"Created membership {created.id} for player {created.player_id}")
        return created

    async def update_membership(
        self,
        membership: PlayerMembership,
        expected_version: int,
        adjustment: Optional[AdjustmentRecord] = None,
        audit_entries: Optional[List[MembershipAuditEntry]] = None,
        supersede: Optional[PlayerMembership] = None,
    ) -> PlayerMembership:
        """Compare-and-swap update of the mutable membership fields"""
        now = membership.updated_at or datetime.now(timezone.utc)
        query = f'''
            UPDATE {self.memberships_table}
            SET used_classes = $2,
                remaining_classes = $3,
                status = $4,
                deactivation_reason = $5,
                manual_override_active = $6,
                updated_at = $7,
                version = version + 1
            WHERE id = $1 AND version = $8
            RETURNING *
        '''
        params = [
            membership.id,
            membership.used_classes,
            membership.remaining_classes,
            membership.status.value,
            membership.deactivation_reason.value if membership.deactivation_reason else None,
            membership.manual_override_active,
            now,
            expected_version,
        ]

        async with self._store_errors("update_membership"):
            async with self.db.transaction() as conn:
                if supersede is not None:
                    await self._supersede(conn, supersede, now)
                row = await conn.fetchrow(query, *params)
                if row is None:
                    raise ConcurrencyConflict(
                        f"Membership {membership.id} changed since version {expected_version}",
                        membership_id=membership.id,
                        expected_version=expected_version,
                    )
                if adjustment is not None:
                    await self._insert_adjustment(conn, adjustment)
                for entry in audit_entries or []:
                    await self._insert_audit(conn, entry)

        return self._row_to_membership(dict(row))

    async def _supersede(self, conn: asyncpg.Connection, previous: PlayerMembership, now: datetime) -> None:
        row = await conn.fetchrow(
            f'''UPDATE {self.memberships_table}
                SET status = $2, deactivation_reason = $3, updated_at = $4, version = version + 1
                WHERE id = $1 AND version = $5 AND status = $6
                RETURNING id''',
            previous.id,
            MembershipStatus.INACTIVE.value,
            DeactivationReason.SUPERSEDED.value,
            now,
            previous.version,
            MembershipStatus.ACTIVE.value,
        )
        if row is None:
            raise ConcurrencyConflict(
                f"Active membership {previous.id} changed before it could be superseded",
                membership_id=previous.id,
                expected_version=previous.version,
            )

    # ====================
    # Adjustments
    # ====================

    async def _insert_adjustment(self, conn: asyncpg.Connection, record: AdjustmentRecord) -> None:
        try:
            await conn.execute(
                f'''INSERT INTO {self.adjustments_table} (
                        id, membership_id, delta, reason, actor_id, actor_role,
                        used_before, used_after, source_ref, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)''',
                record.id,
                record.membership_id,
                record.delta,
                record.reason,
                record.actor_id,
                record.actor_role.value if record.actor_role else None,
                record.used_before,
                record.used_after,
                record.source_ref,
                record.timestamp,
            )
        except asyncpg.UniqueViolationError as e:
            if e.constraint_name != "usage_adjustments_source_ref":
                raise
            raise DuplicateAdjustmentError(
                f"Adjustment {record.source_ref} already applied to membership {record.membership_id}",
                membership_id=record.membership_id,
                source_ref=record.source_ref or "",
            ) from e

    async def list_adjustments(self, membership_id: str) -> List[AdjustmentRecord]:
        """List adjustments, newest first"""
        async with self._store_errors("list_adjustments"):
            rows = await self.db.query(
                f'''SELECT * FROM {self.adjustments_table}
                    WHERE membership_id = $1
                    ORDER BY created_at DESC''',
                [membership_id],
            )
        return [self._row_to_adjustment(r) for r in rows]

    async def list_player_adjustments(self, player_id: str, limit: int = 50) -> List[AdjustmentRecord]:
        """List adjustments across all of a player's memberships, newest first"""
        async with self._store_errors("list_player_adjustments"):
            rows = await self.db.query(
                f'''SELECT a.* FROM {self.adjustments_table} a
                    JOIN {self.memberships_table} m ON m.id = a.membership_id
                    WHERE m.player_id = $1
                    ORDER BY a.created_at DESC
                    LIMIT $2''',
                [player_id, limit],
            )
        return [self._row_to_adjustment(r) for r in rows]

    # ====================
    # Audit Trail
    # ====================

    async def _insert_audit(self, conn: asyncpg.Connection, entry: MembershipAuditEntry) -> None:
        await conn.execute(
            f'''INSERT INTO {self.audit_table} (
                    id, membership_id, player_id, action, actor_id,
                    from_status, to_status, details, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9)''',
            entry.id,
            entry.membership_id,
            entry.player_id,
            entry.action.value,
            entry.actor_id,
            entry.from_status.value if entry.from_status else None,
            entry.to_status.value if entry.to_status else None,
            json.dumps(entry.details, default=str),
            entry.timestamp,
        )

    async def list_audit_entries(self, membership_id: str) -> List[MembershipAuditEntry]:
        """List audit entries, newest first"""
        async with self._store_errors("list_audit_entries"):
            rows = await self.db.query(
                f'''SELECT * FROM {self.audit_table}
                    WHERE membership_id = $1
                    ORDER BY created_at DESC''',
                [membership_id],
            )
        return [self._row_to_audit(r) for r in rows]

    # ====================
    # Alerts
    # ====================

    async def has_alert_been_sent(self, membership_id: str, alert_code: str) -> bool:
        async with self._store_errors("has_alert_been_sent"):
            row = await self.db.query_row(
                f"SELECT 1 AS sent FROM {self.alerts_table} WHERE membership_id = $1 AND alert_code = $2",
                [membership_id, alert_code],
            )
        return row is not None

    async def mark_alert_sent(self, membership_id: str, alert_code: str) -> bool:
        async with self._store_errors("mark_alert_sent"):
            status = await self.db.execute(
                f'''INSERT INTO {self.alerts_table} (membership_id, alert_code)
                    VALUES ($1, $2) ON CONFLICT DO NOTHING''',
                [membership_id, alert_code],
            )
        return status.endswith(" 1")

    # ====================
    # Row mapping
    # ====================

    def _row_to_type(self, row: Dict[str, Any]) -> MembershipType:
        """Convert database row to MembershipType model"""
        return MembershipType(
            id=row.get("id"),
            name=row.get("name"),
            allocation_type=AllocationType(row.get("allocation_type")),
            class_count=int(row.get("class_count") or 0),
            start_date_required=row.get("start_date_required", True),
            end_date_required=row.get("end_date_required", False),
            is_active=row.get("is_active", True),
            description=row.get("description"),
        )

    def _row_to_membership(self, row: Dict[str, Any]) -> PlayerMembership:
        """Convert database row to PlayerMembership model"""
        reason = row.get("deactivation_reason")
        return PlayerMembership(
            id=row.get("id"),
            player_id=row.get("player_id"),
            membership_type_id=row.get("membership_type_id"),
            membership_type_name=row.get("membership_type_name"),
            allocation_type=AllocationType(row.get("allocation_type")),
            start_date=row.get("start_date"),
            end_date=row.get("end_date"),
            override_class_count=row.get("override_class_count"),
            allocated_classes=row.get("allocated_classes"),
            used_classes=int(row.get("used_classes") or 0),
            remaining_classes=row.get("remaining_classes"),
            status=MembershipStatus(row.get("status")),
            deactivation_reason=DeactivationReason(reason) if reason else None,
            auto_deactivate_when_used_up=row.get("auto_deactivate_when_used_up", True),
            manual_override_active=row.get("manual_override_active", False),
            notes=row.get("notes"),
            version=int(row.get("version") or 1),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_adjustment(self, row: Dict[str, Any]) -> AdjustmentRecord:
        """Convert database row to AdjustmentRecord model"""
        role = row.get("actor_role")
        return AdjustmentRecord(
            id=row.get("id"),
            membership_id=row.get("membership_id"),
            delta=int(row.get("delta")),
            reason=row.get("reason"),
            actor_id=row.get("actor_id"),
            actor_role=ActorRole(role) if role else None,
            used_before=row.get("used_before"),
            used_after=row.get("used_after"),
            source_ref=row.get("source_ref"),
            timestamp=row.get("created_at"),
        )

    def _row_to_audit(self, row: Dict[str, Any]) -> MembershipAuditEntry:
        """Convert database row to MembershipAuditEntry model"""
        details = row.get("details") or {}
        if isinstance(details, str):
            details = json.loads(details)
        from_status = row.get("from_status")
        to_status = row.get("to_status")
        return MembershipAuditEntry(
            id=row.get("id"),
            membership_id=row.get("membership_id"),
            player_id=row.get("player_id"),
            action=AuditAction(row.get("action")),
            actor_id=row.get("actor_id"),
            from_status=MembershipStatus(from_status) if from_status else None,
            to_status=MembershipStatus(to_status) if to_status else None,
            details=details,
            timestamp=row.get("created_at"),
        )


__all__ = ["MembershipLedgerRepository", "SCHEMA_DDL"]
