"""
Notification Service HTTP Client

Async HTTP client that delivers membership alerts through notification_service.
Implements NotificationDispatcherProtocol for dependency injection.
"""

import httpx
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class NotificationClient:
    """Async HTTP client for notification_service"""

    def __init__(self, base_url: str = "http://localhost:8208", timeout: float = 5.0):
        """
        Initialize NotificationClient

        Args:
            base_url: Base URL for notification_service
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout)
        logger.info(f"NotificationClient initialized with base_url: {self.base_url}")

    async def send(
        self,
        player_id: str,
        alert_code: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send an in-app membership alert to a player.

        Args:
            player_id: Recipient player identifier
            alert_code: Alert code (e.g. REMAINING_1)
            context: Optional title, message, priority and membership fields

        Returns:
            True if notification_service accepted the notification
        """
        context = context or {}
        payload = {
            "type": "in_app",
            "recipient_id": player_id,
            "subject": context.get("title", alert_code),
            "content": context.get("message", ""),
            "priority": context.get("priority", "normal"),
            "metadata": {
                "notification_type": "membership_alert",
                "alert_code": alert_code,
                "entity_type": "membership",
                "entity_id": context.get("membership_id"),
                "membership_type": context.get("membership_type_name"),
            },
            "tags": ["membership", alert_code.lower()],
        }
        try:
            response = await self.client.post(
                f"{self.base_url}/api/v1/notifications/send",
                json=payload,
                headers={"X-Internal-Call": "true"}
            )
            response.raise_for_status()
            logger.debug(f"Sent {alert_code} notification to player {player_id}")
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error sending {alert_code} to player {player_id}: {e.response.status_code}")
            return False
        except httpx.RequestError as e:
            logger.error(f"Request error sending {alert_code} to player {player_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending {alert_code} to player {player_id}: {e}", exc_info=True)
            return False

    async def close(self):
        """Close the HTTP client connection"""
        await self.client.aclose()
        logger.info("NotificationClient connection closed")


class NullNotificationDispatcher:
    """Dispatcher used when notifications are disabled; drops every alert"""

    async def send(
        self,
        player_id: str,
        alert_code: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        logger.debug(f"Notifications disabled, dropping {alert_code} for player {player_id}")
        return False

    async def close(self):
        return None
