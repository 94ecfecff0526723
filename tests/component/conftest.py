"""
Component Test Layer Configuration

Component tests drive the FastAPI app through TestClient with the
repository, event bus and notification dispatcher replaced by mocks.

Usage:
    pytest tests/component -v
    pytest tests/component/membership_ledger -v
"""
import os
import sys

import pytest

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_collection_modifyitems(config, items):
    """Tag everything under tests/component with the component marker"""
    for item in items:
        if "/tests/component/" in str(item.fspath):
            item.add_marker(pytest.mark.component)
