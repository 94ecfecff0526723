#!/usr/bin/env python3
"""Membership ledger settings

Top-level settings object for the ledger service. Aggregates the
infrastructure and logging configs with the service's own knobs.
"""
import os
from dataclasses import dataclass, field

from .infra_config import InfraConfig
from .logging_config import LoggingConfig

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class LedgerConfig:
    """Membership ledger service configuration"""

    # Service identity
    service_name: str = "membership_ledger_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8260
    debug: bool = False
    log_level: str = "INFO"

    # Summary read cache (seconds)
    summary_cache_ttl_seconds: float = 300.0

    # Store retry policy
    store_retry_attempts: int = 3
    store_retry_min_wait_seconds: float = 0.1
    store_retry_max_wait_seconds: float = 2.0

    # Notification dispatch
    notification_service_url: str = "http://localhost:8208"
    notification_timeout_seconds: float = 5.0
    notifications_enabled: bool = True

    # Sub-configs
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'LedgerConfig':
        """Load ledger configuration from environment variables"""
        logging_config = LoggingConfig.from_env()
        return cls(
            service_name=os.getenv("SERVICE_NAME", "membership_ledger_service"),
            service_host=os.getenv("MEMBERSHIP_LEDGER_HOST", "0.0.0.0"),
            service_port=_int(os.getenv("MEMBERSHIP_LEDGER_PORT", "8260"), 8260),
            debug=_bool(os.getenv("DEBUG", "false")),
            log_level=logging_config.log_level,
            summary_cache_ttl_seconds=_float(os.getenv("SUMMARY_CACHE_TTL_SECONDS", "300"), 300.0),
            store_retry_attempts=_int(os.getenv("STORE_RETRY_ATTEMPTS", "3"), 3),
            store_retry_min_wait_seconds=_float(os.getenv("STORE_RETRY_MIN_WAIT_SECONDS", "0.1"), 0.1),
            store_retry_max_wait_seconds=_float(os.getenv("STORE_RETRY_MAX_WAIT_SECONDS", "2"), 2.0),
            notification_service_url=os.getenv("NOTIFICATION_SERVICE_URL", "http://localhost:8208"),
            notification_timeout_seconds=_float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"), 5.0),
            notifications_enabled=_bool(os.getenv("NOTIFICATIONS_ENABLED", "true")),
            infrastructure=InfraConfig.from_env(),
            logging=logging_config,
        )
