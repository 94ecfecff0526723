#!/usr/bin/env python3
"""
Core Module for the Membership Ledger

Shared infrastructure components used by the ledger microservice.

COMPONENTS:
    - config/: Environment-driven configuration (infra, logging, ledger)
    - logger.py: Service logger setup
    - postgres_client.py: asyncpg connection pool wrapper
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger

    settings = get_settings()
    logger = setup_service_logger("membership_ledger_service")
"""

__version__ = "1.0.0"
