"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - unit/       : Service logic against in-memory mocks (no I/O)
    - component/  : HTTP surface via FastAPI TestClient (mocked dependencies)
    - integration/: Repository against a real PostgreSQL
    - contracts/  : Pydantic data contracts and test data factories
"""
import os
import sys
from typing import Dict, List

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Assertion Helpers
# =============================================================================

class AssertionHelpers:
    """Custom assertion helpers for tests"""

    @staticmethod
    def assert_http_success(response, expected_status: int = 200):
        """Assert HTTP response is successful"""
        assert response.status_code == expected_status, \
            f"Expected {expected_status}, got {response.status_code}: {response.text}"

    @staticmethod
    def assert_has_fields(data: Dict, fields: List[str]):
        """Assert dict has required fields"""
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"


@pytest.fixture
def assertions() -> AssertionHelpers:
    """Provide assertion helpers"""
    return AssertionHelpers()


# =============================================================================
# Skip Markers Based on Environment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """Skip integration tests when the database is explicitly disabled"""
    skip_db = pytest.mark.skip(reason="PostgreSQL not available")

    for item in items:
        if "integration" in item.keywords and os.getenv("SKIP_DB_TESTS"):
            item.add_marker(skip_db)
