"""
Membership Ledger Component Tests

HTTP endpoints through FastAPI TestClient with a mocked repository.

Usage:
    pytest tests/component/membership_ledger -v
"""
