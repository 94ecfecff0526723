"""
Integration Test Configuration

Integration tests run against the PostgreSQL described by the
POSTGRES_* environment variables. Each test works in its own schema.

Usage:
    pytest tests/integration -v -m integration
    SKIP_DB_TESTS=1 pytest tests    # skip everything that needs a database
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))

from core.config import InfraConfig


@pytest.fixture(scope="session")
def infra_config() -> InfraConfig:
    """Infrastructure settings read from the environment"""
    return InfraConfig.from_env()
