"""
Unit Test Layer Configuration

Usage:
    pytest tests/unit -v                          # All unit tests
    pytest tests/unit/membership_ledger -v        # Ledger service only
"""
import os
import sys

import pytest

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_collection_modifyitems(config, items):
    """Tag everything under tests/unit with the unit marker"""
    for item in items:
        if "/tests/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
