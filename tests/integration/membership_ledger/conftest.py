"""
Membership Ledger Integration Test Fixtures

Repository fixtures against a real PostgreSQL. Each test gets its own
schema, dropped afterwards. Tests are skipped when the database is
unreachable.
"""

import os
import sys
import uuid
from typing import AsyncGenerator

import asyncpg
import pytest
import pytest_asyncio

# Add paths for imports
_current_dir = os.path.dirname(os.path.abspath(__file__))
_project_root = os.path.join(_current_dir, "../../..")
sys.path.insert(0, _project_root)

from core.postgres_client import PostgresClientWrapper
from microservices.membership_ledger_service.membership_ledger_repository import MembershipLedgerRepository
from microservices.membership_ledger_service.models import AllocationType, MembershipType
from microservices.membership_ledger_service.protocols import StoreUnavailable


@pytest_asyncio.fixture(scope="function")
async def ledger_repository(infra_config) -> AsyncGenerator[MembershipLedgerRepository, None]:
    """Repository bound to a throwaway schema"""
    schema = f"ledger_it_{uuid.uuid4().hex[:10]}"
    db = PostgresClientWrapper("membership_ledger_integration", config=infra_config)
    repository = MembershipLedgerRepository(db, schema=schema)

    try:
        await repository.initialize()
    except (StoreUnavailable, asyncpg.PostgresError) as e:
        await db.close()
        pytest.skip(f"PostgreSQL not available: {e}")

    await repository.upsert_membership_type(MembershipType(
        id="mt_10_class",
        name="10 Class Pack",
        allocation_type=AllocationType.CLASS_COUNT,
        class_count=10,
    ))
    await repository.upsert_membership_type(MembershipType(
        id="mt_term",
        name="Term Pass",
        allocation_type=AllocationType.DATE_RANGE,
    ))

    try:
        yield repository
    finally:
        async with db.transaction() as conn:
            await conn.execute(f"DROP SCHEMA IF EXISTS {schema} CASCADE")
        await repository.close()
