"""
Membership Ledger Service Factory

Factory for creating MembershipLedgerService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config import LedgerConfig, get_settings
from core.postgres_client import PostgresClientWrapper

from .clients import NotificationClient, NullNotificationDispatcher
from .membership_ledger_repository import MembershipLedgerRepository
from .membership_ledger_service import MembershipLedgerService
from .summary_cache import SummaryCache

logger = logging.getLogger(__name__)


def create_membership_ledger_service(
    config: Optional[LedgerConfig] = None,
    event_bus=None,
) -> MembershipLedgerService:
    """
    Create MembershipLedgerService with all real dependencies

    Args:
        config: Optional ledger config (uses global settings if not provided)
        event_bus: Optional event bus for event publishing

    Returns:
        MembershipLedgerService instance (call repository.initialize() before use)
    """
    if config is None:
        config = get_settings()

    # Create repository
    db = PostgresClientWrapper(config.service_name, config=config.infrastructure)
    repository = MembershipLedgerRepository(db)

    # Notification sink
    if config.notifications_enabled:
        dispatcher = NotificationClient(
            base_url=config.notification_service_url,
            timeout=config.notification_timeout_seconds,
        )
    else:
        dispatcher = NullNotificationDispatcher()

    logger.info("MembershipLedgerService created with real dependencies")

    return MembershipLedgerService(
        repository=repository,
        event_bus=event_bus,
        notification_dispatcher=dispatcher,
        summary_cache=SummaryCache(ttl_seconds=config.summary_cache_ttl_seconds),
        store_retry_attempts=config.store_retry_attempts,
        store_retry_min_wait=config.store_retry_min_wait_seconds,
        store_retry_max_wait=config.store_retry_max_wait_seconds,
    )


__all__ = ["create_membership_ledger_service"]
