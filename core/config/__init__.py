#!/usr/bin/env python3
"""Modular configuration system for the membership ledger

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- logging_config: Logging configuration
- ledger_config: Ledger service settings (port, cache, retries, notifications)
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .ledger_config import LedgerConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = LedgerConfig.from_env()

def get_settings() -> LedgerConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> LedgerConfig:
    """Reload settings from environment"""
    global settings
    settings = LedgerConfig.from_env()
    return settings

__all__ = [
    'LedgerConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'LoggingConfig',
    'InfraConfig',
]
