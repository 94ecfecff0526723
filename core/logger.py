"""
Service logger setup

Configures the standard library logging tree for a microservice using the
values from LoggingConfig. Module loggers created with
``logging.getLogger(__name__)`` propagate to the handlers installed here.
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig, get_settings

_configured = False


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure root handlers (once) and return the logger for a service.

    Args:
        service_name: Logger name, usually the service package name
        level: Optional level override (e.g. "DEBUG")
        config: Optional LoggingConfig, defaults to the global settings

    Returns:
        The service logger
    """
    global _configured

    config = config or get_settings().logging
    resolved_level = (level or config.log_level).upper()

    root = logging.getLogger()
    if not _configured:
        formatter = logging.Formatter(config.log_format)

        if config.enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(formatter)
            root.addHandler(console)

        if config.log_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

        _configured = True

    root.setLevel(resolved_level)
    logger = logging.getLogger(service_name)
    logger.setLevel(resolved_level)
    return logger
