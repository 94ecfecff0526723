"""
Membership Ledger Unit Tests

Ledger service logic against the in-memory repository in conftest.py.

Structure:
- test_ledger_assign.py: assignment and supersession
- test_ledger_adjust.py: usage adjustments, idempotent references, history
- test_ledger_status.py: status transitions and overrides
- test_ledger_alerts.py: threshold alerts and reminders
- test_ledger_events.py: attendance and player event handlers
- test_ledger_components.py: auditor, type registry, summary cache, thresholds
- test_summary_projector.py: derived summaries
- test_ledger_config.py, test_core_clients.py, test_notification_client.py

Usage:
    pytest tests/unit/membership_ledger -v
"""
