"""
Membership Ledger Client Module

Provides HTTP clients for communicating with other microservices.
"""

from .notification_client import NotificationClient, NullNotificationDispatcher

__all__ = [
    "NotificationClient",
    "NullNotificationDispatcher",
]
