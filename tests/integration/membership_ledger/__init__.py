"""
Membership Ledger Integration Tests

Repository and service against a real PostgreSQL; skipped when the
database is unreachable.

Usage:
    pytest tests/integration/membership_ledger -m integration -v
"""
